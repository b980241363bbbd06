"""
Predictiveness measures and their efficient influence functions.

Each measure maps fitted values and an outcome to a plug-in estimate of the
population predictiveness V(f, P) together with the per-observation values
of its efficient influence function. Variable importance is the difference
in predictiveness between the full and the reduced regression.

The measures implemented here are:
- R-squared: 1 - MSE(f) / Var(Y)
- Deviance: 1 - CE(f) / CE(marginal), a cross-entropy ratio
- Accuracy: P(Y == round(f))
- AUC: P(f(X1) > f(X0) | Y1 = 1, Y0 = 0)
- Average value: value of the treatment rule f under an AIPW representation
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Sequence, Union

import numpy as np

from .exceptions import DegenerateModelError, InvalidInputError, LengthMismatchError

# Probabilities are clipped away from 0 and 1 before taking logs
_PROB_EPS = 1e-15


class MeasureType(str, Enum):
    """Tag identifying a predictiveness measure."""

    R_SQUARED = "r_squared"
    DEVIANCE = "deviance"
    ACCURACY = "accuracy"
    AUC = "auc"
    AVERAGE_VALUE = "average_value"


class Predictiveness(NamedTuple):
    """Plug-in predictiveness and its per-observation influence function."""

    point_est: float
    eif: np.ndarray


class MeasureResult(NamedTuple):
    """Importance (full minus reduced predictiveness) and its influence curve."""

    estimate: float
    influence_curve: np.ndarray


def _as_vector(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr.reshape(-1)
    if arr.ndim != 1:
        raise InvalidInputError(f"{name} must be 1D, got shape {arr.shape}")
    return arr


def _as_weights(weights, n: int) -> np.ndarray:
    if weights is None:
        return np.ones(n)
    w = _as_vector(weights, "weights")
    if w.shape[0] != n:
        raise LengthMismatchError(
            f"weights has length {w.shape[0]}, expected {n}"
        )
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise InvalidInputError("weights must be finite and non-negative")
    if w.sum() <= 0:
        raise DegenerateModelError("weights sum to zero")
    return w


def _weighted_mean(values: np.ndarray, w: np.ndarray) -> float:
    return float(np.sum(w * values) / np.sum(w))


def _check_lengths(y: np.ndarray, fitted: np.ndarray) -> None:
    if fitted.shape[0] != y.shape[0]:
        raise LengthMismatchError(
            f"fitted values have {fitted.shape[0]} rows but outcome has "
            f"{y.shape[0]}"
        )


def _class_probabilities(fitted, y: np.ndarray) -> np.ndarray:
    """Return an (n, K) matrix of class probabilities from 1D or 2D fitted values."""
    probs = np.asarray(fitted, dtype=float)
    if probs.ndim == 2 and probs.shape[1] == 1:
        probs = probs.reshape(-1)
    if probs.ndim == 1:
        probs = np.column_stack([1.0 - probs, probs])
    if probs.ndim != 2:
        raise InvalidInputError(
            f"fitted probabilities must be 1D or 2D, got shape {probs.shape}"
        )
    _check_lengths(y, probs)
    return probs


def _one_hot(y: np.ndarray, n_classes: int) -> np.ndarray:
    labels = y.astype(int)
    if np.any(labels != y) or np.any(labels < 0) or np.any(labels >= n_classes):
        raise InvalidInputError(
            f"outcome must hold integer class labels in [0, {n_classes - 1}]"
        )
    return np.eye(n_classes)[labels]


class Measure(ABC):
    """
    Base class for predictiveness measures.

    Subclasses implement :meth:`predictiveness`; calling a measure with the
    outcome and both sets of fitted values returns the importance estimate and
    its influence curve.

    Attributes
    ----------
    measure_type : MeasureType
        Tag of the measure
    bounded : bool
        Whether predictiveness lies in [0, 1] (permits the logit scale)
    null_value : float
        Importance value corresponding to "no importance"
    """

    measure_type: MeasureType
    bounded: bool = True
    null_value: float = 0.0

    @abstractmethod
    def predictiveness(
        self,
        fitted: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None
    ) -> Predictiveness:
        """
        Compute the plug-in predictiveness of ``fitted`` and its influence function.

        Parameters
        ----------
        fitted : np.ndarray of shape (n_samples,) or (n_samples, n_classes)
            Fitted values evaluated on the observations in ``y``
        y : np.ndarray of shape (n_samples,)
            Outcome
        weights : np.ndarray of shape (n_samples,), optional
            Non-negative observation weights; weighted means are normalized
            by the total weight

        Returns
        -------
        Predictiveness
            Point estimate and influence function values (one per observation)
        """

    def restrict(self, rows: np.ndarray) -> "Measure":
        """Return the measure restricted to ``rows`` (a no-op for most measures)."""
        return self

    def __call__(
        self,
        y: np.ndarray,
        full: np.ndarray,
        reduced: np.ndarray,
        weights: Optional[np.ndarray] = None
    ) -> MeasureResult:
        full_pred = self.predictiveness(full, y, weights)
        reduced_pred = self.predictiveness(reduced, y, weights)
        return MeasureResult(
            estimate=full_pred.point_est - reduced_pred.point_est,
            influence_curve=full_pred.eif - reduced_pred.eif
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RSquared(Measure):
    """R-squared: one minus the mean squared error scaled by the outcome variance."""

    measure_type = MeasureType.R_SQUARED

    def predictiveness(self, fitted, y, weights=None) -> Predictiveness:
        y = _as_vector(y, "y")
        f = _as_vector(fitted, "fitted")
        _check_lengths(y, f)
        w = _as_weights(weights, y.shape[0])

        y_bar = _weighted_mean(y, w)
        sq_resid = (y - f) ** 2
        sq_dev = (y - y_bar) ** 2
        mse = _weighted_mean(sq_resid, w)
        var = _weighted_mean(sq_dev, w)
        if var <= 0:
            raise DegenerateModelError(
                "outcome has zero variance; R-squared is undefined"
            )

        # Delta method for the ratio MSE / Var
        eif = -(sq_resid - mse) / var + mse * (sq_dev - var) / var ** 2
        return Predictiveness(1.0 - mse / var, eif)


class Deviance(Measure):
    """
    Deviance: one minus the cross-entropy of ``fitted`` relative to the
    entropy of the marginal class proportions.

    Fitted values are probabilities of class 1 (binary outcome) or an
    (n_samples, n_classes) matrix of class probabilities.
    """

    measure_type = MeasureType.DEVIANCE

    def predictiveness(self, fitted, y, weights=None) -> Predictiveness:
        y = _as_vector(y, "y")
        probs = _class_probabilities(fitted, y)
        w = _as_weights(weights, y.shape[0])
        onehot = _one_hot(y, probs.shape[1])

        probs = np.clip(probs, _PROB_EPS, 1.0 - _PROB_EPS)
        loss = -np.sum(onehot * np.log(probs), axis=1)
        cross_entropy = _weighted_mean(loss, w)

        pi = np.sum(w[:, None] * onehot, axis=0) / np.sum(w)
        log_pi = np.log(np.where(pi > 0, pi, 1.0))
        denom = float(-np.sum(pi * log_pi))
        if denom <= 0:
            raise DegenerateModelError(
                "outcome takes a single class; deviance is undefined"
            )
        denom_eif = -(onehot - pi) @ log_pi

        eif = (
            -(loss - cross_entropy) / denom
            + cross_entropy * denom_eif / denom ** 2
        )
        return Predictiveness(1.0 - cross_entropy / denom, eif)


class Accuracy(Measure):
    """Classification accuracy of the rounded (or arg-max) fitted values."""

    measure_type = MeasureType.ACCURACY

    def predictiveness(self, fitted, y, weights=None) -> Predictiveness:
        y = _as_vector(y, "y")
        f = np.asarray(fitted, dtype=float)
        if f.ndim == 2 and f.shape[1] > 1:
            _check_lengths(y, f)
            y_hat = np.argmax(f, axis=1).astype(float)
        else:
            f = _as_vector(f, "fitted")
            _check_lengths(y, f)
            y_hat = (f >= 0.5).astype(float)
        w = _as_weights(weights, y.shape[0])

        correct = (y == y_hat).astype(float)
        accuracy = _weighted_mean(correct, w)
        return Predictiveness(accuracy, correct - accuracy)


class AUC(Measure):
    """Area under the ROC curve for a binary outcome; ties count one half."""

    measure_type = MeasureType.AUC

    def predictiveness(self, fitted, y, weights=None) -> Predictiveness:
        y = _as_vector(y, "y")
        f = np.asarray(fitted, dtype=float)
        if f.ndim == 2 and f.shape[1] == 2:
            f = f[:, 1]
        f = _as_vector(f, "fitted")
        _check_lengths(y, f)
        w = _as_weights(weights, y.shape[0])
        if np.any((y != 0) & (y != 1)):
            raise InvalidInputError("AUC requires a binary 0/1 outcome")

        cases = y == 1
        w1, w0 = w[cases], w[~cases]
        total1, total0 = w1.sum(), w0.sum()
        if total1 <= 0 or total0 <= 0:
            raise DegenerateModelError(
                "AUC requires both cases and controls"
            )
        p1 = total1 / w.sum()
        p0 = total0 / w.sum()

        f1, f0 = f[cases], f[~cases]

        # Weighted fraction of controls ranked below each case
        order0 = np.argsort(f0, kind="mergesort")
        sorted0 = f0[order0]
        cum0 = np.concatenate([[0.0], np.cumsum(w0[order0])])
        below = cum0[np.searchsorted(sorted0, f1, side="left")]
        at_or_below = cum0[np.searchsorted(sorted0, f1, side="right")]
        frac_controls_below = (below + 0.5 * (at_or_below - below)) / total0

        # Weighted fraction of cases ranked above each control
        order1 = np.argsort(f1, kind="mergesort")
        sorted1 = f1[order1]
        cum1 = np.concatenate([[0.0], np.cumsum(w1[order1])])
        above = total1 - cum1[np.searchsorted(sorted1, f0, side="right")]
        at_or_above = total1 - cum1[np.searchsorted(sorted1, f0, side="left")]
        frac_cases_above = (above + 0.5 * (at_or_above - above)) / total1

        auc = float(np.sum(w1 * frac_controls_below) / total1)

        eif = np.empty_like(f)
        eif[cases] = (frac_controls_below - auc) / p1
        eif[~cases] = (frac_cases_above - auc) / p0
        return Predictiveness(auc, eif)


@dataclass(frozen=True, eq=False)
class TreatmentNuisance:
    """
    Nuisance quantities for the average value of a treatment rule.

    Parameters
    ----------
    treatment : array-like of shape (n_samples,)
        Observed binary treatment A
    propensity : array-like of shape (n_samples,)
        Estimated P(A = 1 | X)
    mu1, mu0 : array-like of shape (n_samples,)
        Estimated outcome regressions E[Y | A = 1, X] and E[Y | A = 0, X]
    """

    treatment: np.ndarray
    propensity: np.ndarray
    mu1: np.ndarray
    mu0: np.ndarray

    def __post_init__(self):
        arrays = {}
        for name in ("treatment", "propensity", "mu1", "mu0"):
            arrays[name] = _as_vector(getattr(self, name), name)
            object.__setattr__(self, name, arrays[name])
        lengths = {arr.shape[0] for arr in arrays.values()}
        if len(lengths) != 1:
            raise LengthMismatchError(
                "treatment, propensity, mu1 and mu0 must have equal lengths"
            )
        if np.any((self.treatment != 0) & (self.treatment != 1)):
            raise InvalidInputError("treatment must be binary 0/1")

    def __len__(self) -> int:
        return self.treatment.shape[0]

    def subset(self, rows: np.ndarray) -> "TreatmentNuisance":
        return TreatmentNuisance(
            treatment=self.treatment[rows],
            propensity=self.propensity[rows],
            mu1=self.mu1[rows],
            mu0=self.mu0[rows]
        )


class AverageValue(Measure):
    """
    Average outcome under the treatment rule ``d(x) = 1{f(x) >= 0.5}``.

    The value is estimated with the augmented inverse-probability-weighted
    representation, which requires treatment propensities and outcome
    regressions supplied through a :class:`TreatmentNuisance`.
    """

    measure_type = MeasureType.AVERAGE_VALUE
    bounded = False

    def __init__(self, nuisance: TreatmentNuisance):
        if not isinstance(nuisance, TreatmentNuisance):
            raise InvalidInputError(
                "average value requires a TreatmentNuisance, "
                f"got {type(nuisance).__name__}"
            )
        self.nuisance = nuisance

    def restrict(self, rows: np.ndarray) -> "AverageValue":
        return AverageValue(self.nuisance.subset(rows))

    def predictiveness(self, fitted, y, weights=None) -> Predictiveness:
        y = _as_vector(y, "y")
        f = _as_vector(fitted, "fitted")
        _check_lengths(y, f)
        if len(self.nuisance) != y.shape[0]:
            raise LengthMismatchError(
                f"nuisance has length {len(self.nuisance)}, outcome has "
                f"{y.shape[0]}"
            )
        w = _as_weights(weights, y.shape[0])

        nu = self.nuisance
        rule = (f >= 0.5).astype(float)
        follows_rule = nu.treatment == rule
        prob_rule = np.where(rule == 1, nu.propensity, 1.0 - nu.propensity)
        if np.any(follows_rule & (prob_rule <= 0)):
            raise DegenerateModelError(
                "propensity of the recommended treatment is zero"
            )
        mu_observed = np.where(nu.treatment == 1, nu.mu1, nu.mu0)
        mu_rule = np.where(rule == 1, nu.mu1, nu.mu0)

        ratio = np.zeros_like(y)
        ratio[follows_rule] = 1.0 / prob_rule[follows_rule]
        terms = ratio * (y - mu_observed) + mu_rule
        value = _weighted_mean(terms, w)
        return Predictiveness(value, terms - value)

    def __repr__(self) -> str:
        return f"AverageValue(n={len(self.nuisance)})"


_MEASURES = {
    MeasureType.R_SQUARED: RSquared,
    MeasureType.DEVIANCE: Deviance,
    MeasureType.ACCURACY: Accuracy,
    MeasureType.AUC: AUC,
    MeasureType.AVERAGE_VALUE: AverageValue,
}


def get_measure(
    measure: Union[str, MeasureType, Measure],
    nuisance: Optional[TreatmentNuisance] = None
) -> Measure:
    """
    Resolve a measure name, tag or instance to a :class:`Measure`.

    Parameters
    ----------
    measure : str, MeasureType or Measure
        One of 'r_squared', 'deviance', 'accuracy', 'auc', 'average_value',
        the matching :class:`MeasureType`, or a measure instance (returned
        unchanged)
    nuisance : TreatmentNuisance, optional
        Required for 'average_value'

    Returns
    -------
    Measure
    """
    if isinstance(measure, Measure):
        return measure
    try:
        measure_type = MeasureType(measure)
    except ValueError:
        valid = ", ".join(repr(m.value) for m in MeasureType)
        raise ValueError(f"measure must be one of {valid}, got {measure!r}") from None

    if measure_type is MeasureType.AVERAGE_VALUE:
        return AverageValue(nuisance)
    return _MEASURES[measure_type]()


def available_measures() -> Sequence[str]:
    return [m.value for m in MeasureType]
