"""
One-fold (non cross-fitted) variable importance estimation.

Given fitted values from a full regression and from a reduced regression
that withholds the covariates of interest, importance is the difference of
the two predictiveness estimates. Each predictiveness estimate is a plug-in
value plus the mean of its (possibly coarsening-corrected) influence curve,
and the influence curve drives the standard error, the confidence interval
and the hypothesis test.
"""

import logging
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .estimate import ImportanceEstimate, canonical_feature_set
from .exceptions import InvalidInputError, InvalidScaleError, LengthMismatchError
from .folds import FoldAssignment
from .inference import (
    Scale,
    check_alpha,
    confidence_interval,
    p_value,
    resolve_scale,
    standard_error,
)
from .ipc import IPCConfig, ipc_correct
from .measures import Measure, MeasureType, TreatmentNuisance, get_measure

logger = logging.getLogger(__name__)


class PredictivenessEstimate(NamedTuple):
    """Plug-in and one-step predictiveness with its centered influence curve."""

    naive: float
    estimate: float
    influence_curve: np.ndarray


def _as_predictions(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr.reshape(-1)
    if arr.ndim not in (1, 2):
        raise InvalidInputError(f"{name} must be 1D or 2D, got shape {arr.shape}")
    return arr


def _row_has_nan(values: np.ndarray) -> np.ndarray:
    if values.ndim == 1:
        return np.isnan(values)
    return np.isnan(values).any(axis=1)


def missing_rows(
    y: np.ndarray,
    predictions: Sequence[np.ndarray],
    coarsening: np.ndarray
) -> np.ndarray:
    """Observed rows whose outcome or any fitted value is NaN."""
    missing = np.isnan(y)
    for preds in predictions:
        missing = missing | _row_has_nan(preds)
    return (coarsening == 1) & missing


def estimate_predictiveness(
    measure: Measure,
    fitted: np.ndarray,
    y: np.ndarray,
    ipc: Optional[IPCConfig] = None
) -> PredictivenessEstimate:
    """
    Estimate the predictiveness of one set of fitted values.

    Parameters
    ----------
    measure : Measure
        Predictiveness measure
    fitted : np.ndarray of shape (n_samples,) or (n_samples, n_classes)
        Fitted values; only rows with coarsening indicator 1 are used
    y : np.ndarray of shape (n_samples,)
        Outcome (may be NaN on coarsened rows)
    ipc : IPCConfig, optional
        Coarsening information; fully observed when omitted

    Returns
    -------
    PredictivenessEstimate
        ``naive`` plug-in value on the observed rows (IPC weighted for
        'ipw'), one-step ``estimate = naive + mean(update)`` and the
        centered influence curve of length n_samples
    """
    ipc = ipc if ipc is not None else IPCConfig()
    n = y.shape[0]
    coarsening = ipc.indicator(n)
    observed = np.flatnonzero(coarsening == 1)
    if observed.size == 0:
        raise InvalidInputError("no fully observed rows to estimate predictiveness")

    plugin = measure.restrict(observed).predictiveness(
        fitted[observed], y[observed], ipc.plugin_weights(n)
    )
    if observed.size == n:
        update = plugin.eif
    else:
        update = ipc_correct(
            plugin.eif,
            coarsening,
            weights=ipc.weights,
            est_type=ipc.est_type,
            covariates=ipc.covariates,
            learner=ipc.learner
        )

    correction = float(np.mean(update))
    return PredictivenessEstimate(
        naive=plugin.point_est,
        estimate=plugin.point_est + correction,
        influence_curve=update - correction
    )


def summarize_importance(
    feature_set: Tuple[int, ...],
    measure: Measure,
    full: PredictivenessEstimate,
    reduced: PredictivenessEstimate,
    influence_curve: np.ndarray,
    alpha: float,
    delta: float,
    scale: Scale,
    full_predictions,
    reduced_predictions,
    fold_assignment: Optional[FoldAssignment] = None,
    learner_name: Optional[str] = None
) -> ImportanceEstimate:
    """Standard error, interval and test for a full/reduced predictiveness pair."""
    if scale is Scale.LOGIT and not measure.bounded:
        raise InvalidScaleError(
            "logit scale requires a measure bounded in [0, 1]; "
            f"'{measure.measure_type.value}' is unbounded, use scale='identity'"
        )
    point_estimate = full.estimate - reduced.estimate
    naive_estimate = full.naive - reduced.naive
    se = standard_error(influence_curve)
    ci = confidence_interval(point_estimate, se, alpha=alpha, scale=scale)
    p = p_value(point_estimate, se, delta=delta, scale=scale)

    logger.debug(
        "Importance of %s (%s): est=%.4f naive=%.4f se=%.4f",
        list(feature_set), measure.measure_type.value, point_estimate,
        naive_estimate, se
    )
    return ImportanceEstimate(
        feature_set=feature_set,
        measure_type=measure.measure_type,
        point_estimate=point_estimate,
        naive_estimate=naive_estimate,
        influence_curve=influence_curve,
        standard_error=se,
        confidence_interval=ci,
        alpha=alpha,
        delta=delta,
        scale=scale,
        predictiveness_full=full.estimate,
        predictiveness_reduced=reduced.estimate,
        full_predictions=full_predictions,
        reduced_predictions=reduced_predictions,
        p_value=p,
        hypothesis_test=bool(p < alpha),
        fold_assignment=fold_assignment,
        learner_name=learner_name
    )


def estimate_one_fold(
    y: np.ndarray,
    full: np.ndarray,
    reduced: np.ndarray,
    feature_set: Union[int, Iterable[int]],
    measure: Union[str, MeasureType, Measure] = MeasureType.R_SQUARED,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: Union[str, Scale] = Scale.IDENTITY,
    na_rm: bool = False,
    ipc: Optional[IPCConfig] = None,
    nuisance: Optional[TreatmentNuisance] = None,
    n_features: Optional[int] = None
) -> ImportanceEstimate:
    """
    Estimate variable importance from externally supplied fitted values.

    Parameters
    ----------
    y : np.ndarray of shape (n_samples,)
        Outcome
    full : np.ndarray of shape (n_samples,) or (n_samples, n_classes)
        Fitted values of the regression on all covariates
    reduced : np.ndarray of shape (n_samples,) or (n_samples, n_classes)
        Fitted values of the regression withholding ``feature_set``
    feature_set : int or iterable of int
        0-based indices of the covariates of interest
    measure : str, MeasureType or Measure, default='r_squared'
        Predictiveness measure
    alpha : float, default=0.05
        Level of the (1 - alpha) confidence interval and of the test
    delta : float, default=0.0
        Null threshold: tests importance <= delta against importance > delta
    scale : {'identity', 'logit'}, default='identity'
        Scale of the confidence interval
    na_rm : bool, default=False
        Drop observed rows with a missing outcome or fitted value instead of
        raising :class:`InvalidInputError`
    ipc : IPCConfig, optional
        Coarsening indicator, covariates, weights and correction type
    nuisance : TreatmentNuisance, optional
        Required for ``measure='average_value'``
    n_features : int, optional
        Number of covariates, used to check that ``feature_set`` is a strict
        subset

    Returns
    -------
    ImportanceEstimate

    Examples
    --------
    >>> est = estimate_one_fold(y, full_fit, reduced_fit, feature_set=1)
    >>> est.point_estimate, est.confidence_interval
    """
    alpha = check_alpha(alpha)
    scale = resolve_scale(scale)
    feature_set = canonical_feature_set(feature_set, n_features)
    measure = get_measure(measure, nuisance)
    ipc = ipc if ipc is not None else IPCConfig()

    y = np.asarray(y, dtype=float).reshape(-1)
    full = _as_predictions(full, "full")
    reduced = _as_predictions(reduced, "reduced")
    n = y.shape[0]
    if full.shape[0] != n or reduced.shape[0] != n:
        raise LengthMismatchError(
            f"outcome has {n} rows, full fit {full.shape[0]}, "
            f"reduced fit {reduced.shape[0]}"
        )

    missing = missing_rows(y, [full, reduced], ipc.indicator(n))
    if missing.any():
        if not na_rm:
            raise InvalidInputError(
                f"{int(missing.sum())} observation(s) have a missing outcome or "
                "fitted value; set na_rm=True to drop them"
            )
        keep = np.flatnonzero(~missing)
        logger.info("Dropping %d observation(s) with missing values", int(missing.sum()))
        y, full, reduced = y[keep], full[keep], reduced[keep]
        ipc = ipc.subset(keep)
        measure = measure.restrict(keep)
    ipc.validate(y.shape[0])

    full_est = estimate_predictiveness(measure, full, y, ipc)
    reduced_est = estimate_predictiveness(measure, reduced, y, ipc)
    return summarize_importance(
        feature_set,
        measure,
        full_est,
        reduced_est,
        influence_curve=full_est.influence_curve - reduced_est.influence_curve,
        alpha=alpha,
        delta=delta,
        scale=scale,
        full_predictions=full,
        reduced_predictions=reduced
    )
