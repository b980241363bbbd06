"""
Inverse-probability-of-coarsening (IPC) corrections.

Observations may be coarsened (partially unobserved); the coarsening
indicator is 1 for fully observed rows. Influence curves computed on the
observed rows are mapped back to the full sample with either classical
inverse probability weighting ('ipw') or augmented inverse probability
weighting ('aipw'). Propensities are estimated by the caller and passed in as
weights; the AIPW augmentation term is obtained by regressing the observed
influence curve on the coarsening covariates with a Learner collaborator.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

import numpy as np
from sklearn.linear_model import LinearRegression

from .exceptions import (
    InvalidInputError,
    LengthMismatchError,
    MissingWeightsError,
    RegressionFailureError,
)
from .learners import Learner, SklearnLearner

logger = logging.getLogger(__name__)


class IPCType(str, Enum):
    """Type of coarsening correction."""

    IPW = "ipw"
    AIPW = "aipw"


def _as_indicator(coarsening) -> np.ndarray:
    C = np.asarray(coarsening, dtype=float).reshape(-1)
    if np.any((C != 0) & (C != 1)):
        raise InvalidInputError("coarsening indicator must be 0/1")
    return C


def _as_covariates(covariates, n: int) -> np.ndarray:
    Z = np.asarray(covariates, dtype=float)
    if Z.ndim == 1:
        Z = Z.reshape(-1, 1)
    if Z.ndim != 2 or Z.shape[0] != n:
        raise LengthMismatchError(
            f"coarsening covariates must have {n} rows, got shape {Z.shape}"
        )
    return Z


def is_fully_observed(coarsening) -> bool:
    """True when the coarsening indicator is absent or all ones."""
    if coarsening is None:
        return True
    return bool(np.all(_as_indicator(coarsening) == 1))


@dataclass(frozen=True, eq=False)
class IPCConfig:
    """
    Coarsening information for the missing-data correction path.

    Parameters
    ----------
    coarsening : array-like of shape (n_samples,), optional
        Indicator C (1 = observed, 0 = coarsened); all ones when omitted
    covariates : array-like of shape (n_samples,) or (n_samples, n_cov), optional
        Variables Z believed to drive the coarsening mechanism (required for
        'aipw' when coarsening is present)
    weights : array-like of shape (n_samples,), optional
        Inverse probability weights 1 / P(C = 1 | Z) (required when
        coarsening is present)
    est_type : {'ipw', 'aipw'}, default='aipw'
        Correction type
    learner : Learner, optional
        Regression of the influence curve on ``covariates`` for 'aipw';
        defaults to ordinary least squares
    """

    coarsening: Optional[np.ndarray] = None
    covariates: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    est_type: Union[str, IPCType] = IPCType.AIPW
    learner: Optional[Learner] = None

    def __post_init__(self):
        try:
            est_type = IPCType(self.est_type)
        except ValueError:
            raise ValueError(
                f"est_type must be 'ipw' or 'aipw', got {self.est_type!r}"
            ) from None
        object.__setattr__(self, 'est_type', est_type)

        if self.coarsening is not None:
            object.__setattr__(self, 'coarsening', _as_indicator(self.coarsening))
        if self.weights is not None:
            w = np.asarray(self.weights, dtype=float).reshape(-1)
            if np.any(w < 0) or not np.all(np.isfinite(w)):
                raise InvalidInputError("IPC weights must be finite and non-negative")
            object.__setattr__(self, 'weights', w)
        if self.covariates is not None:
            Z = np.asarray(self.covariates, dtype=float)
            object.__setattr__(self, 'covariates', Z.reshape(-1, 1) if Z.ndim == 1 else Z)

    @property
    def fully_observed(self) -> bool:
        return is_fully_observed(self.coarsening)

    def indicator(self, n: int) -> np.ndarray:
        """Coarsening indicator of length ``n`` (all ones when omitted)."""
        if self.coarsening is None:
            return np.ones(n)
        if self.coarsening.shape[0] != n:
            raise LengthMismatchError(
                f"coarsening indicator has length {self.coarsening.shape[0]}, "
                f"expected {n}"
            )
        return self.coarsening

    def validate(self, n: int) -> None:
        """Check lengths against ``n`` observations and required inputs."""
        C = self.indicator(n)
        if self.weights is not None and self.weights.shape[0] != n:
            raise LengthMismatchError(
                f"IPC weights have length {self.weights.shape[0]}, expected {n}"
            )
        if self.covariates is not None:
            _as_covariates(self.covariates, n)
        if np.all(C == 1):
            return
        if self.weights is None:
            raise MissingWeightsError(
                "coarsening indicator contains zeros but no IPC weights were supplied"
            )
        if self.est_type is IPCType.AIPW and self.covariates is None:
            raise MissingWeightsError(
                "AIPW correction requires coarsening covariates"
            )

    def subset(self, rows: np.ndarray) -> "IPCConfig":
        """Restrict every per-observation array to ``rows``."""
        return replace(
            self,
            coarsening=None if self.coarsening is None else self.coarsening[rows],
            covariates=None if self.covariates is None else self.covariates[rows],
            weights=None if self.weights is None else self.weights[rows]
        )

    def plugin_weights(self, n: int) -> Optional[np.ndarray]:
        """Weights for the plug-in estimate on observed rows (IPW only)."""
        C = self.indicator(n)
        if np.all(C == 1) or self.est_type is not IPCType.IPW:
            return None
        return self.weights[C == 1]


def ipc_correct(
    eif_observed: np.ndarray,
    coarsening,
    weights=None,
    est_type: Union[str, IPCType] = IPCType.AIPW,
    covariates=None,
    learner: Optional[Learner] = None
) -> np.ndarray:
    """
    Map an influence curve on the observed rows to a corrected full-sample curve.

    Parameters
    ----------
    eif_observed : np.ndarray of shape (n_observed,)
        Influence curve values on rows with ``coarsening == 1``, in row order
    coarsening : array-like of shape (n_samples,)
        Coarsening indicator (1 = observed)
    weights : array-like of shape (n_samples,), optional
        Inverse probability weights; required unless every row is observed
    est_type : {'ipw', 'aipw'}, default='aipw'
        Correction type
    covariates : array-like, optional
        Coarsening covariates; required for 'aipw' when coarsening is present
    learner : Learner, optional
        Regression of the influence curve on ``covariates`` ('aipw' only)

    Returns
    -------
    corrected : np.ndarray of shape (n_samples,)
        Identity when fully observed; ``C * w * phi`` for 'ipw';
        ``C * w * phi - (C * w - 1) * E[phi | Z]`` for 'aipw'

    Raises
    ------
    MissingWeightsError
        If coarsening is present and weights (or covariates for 'aipw') are missing
    RegressionFailureError
        If the projection learner fails
    """
    C = _as_indicator(coarsening)
    est_type = IPCType(est_type)
    observed = C == 1
    eif_observed = np.asarray(eif_observed, dtype=float).reshape(-1)
    if eif_observed.shape[0] != observed.sum():
        raise LengthMismatchError(
            f"influence curve has {eif_observed.shape[0]} values but "
            f"{int(observed.sum())} rows are observed"
        )

    if observed.all():
        return eif_observed.copy()

    if weights is None:
        raise MissingWeightsError(
            "coarsening indicator contains zeros but no IPC weights were supplied"
        )
    w = np.asarray(weights, dtype=float).reshape(-1)
    if w.shape[0] != C.shape[0]:
        raise LengthMismatchError(
            f"IPC weights have length {w.shape[0]}, expected {C.shape[0]}"
        )

    phi = np.zeros(C.shape[0])
    phi[observed] = eif_observed
    weighted_indicator = C * w

    if est_type is IPCType.IPW:
        return weighted_indicator * phi

    if covariates is None:
        raise MissingWeightsError("AIPW correction requires coarsening covariates")
    Z = _as_covariates(covariates, C.shape[0])
    if learner is None:
        learner = SklearnLearner(LinearRegression(), name='linear')

    logger.debug(
        "Projecting influence curve on %d coarsening covariate(s) using %d observed rows",
        Z.shape[1], int(observed.sum())
    )
    try:
        projection = np.asarray(learner(eif_observed, Z[observed], Z), dtype=float)
    except Exception as exc:
        raise RegressionFailureError(
            f"projection of the influence curve failed: {exc}"
        ) from exc
    projection = projection.reshape(-1)
    if projection.shape[0] != C.shape[0]:
        raise LengthMismatchError(
            f"projection learner returned {projection.shape[0]} values, "
            f"expected {C.shape[0]}"
        )
    return weighted_indicator * phi - (weighted_indicator - 1.0) * projection
