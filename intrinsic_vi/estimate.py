"""
The variable importance estimate returned by every estimator.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError
from .folds import FoldAssignment
from .inference import Scale
from .measures import MeasureType

Predictions = Union[np.ndarray, Tuple[np.ndarray, ...]]


def canonical_feature_set(
    feature_set: Union[int, Iterable[int]],
    n_features: Optional[int] = None
) -> Tuple[int, ...]:
    """
    Validate a set of 0-based covariate indices and sort it.

    Parameters
    ----------
    feature_set : int or iterable of int
        Covariate indices to assess
    n_features : int, optional
        Total number of covariates; when given, the set must be a strict
        subset of ``range(n_features)``

    Returns
    -------
    feature_set : tuple of int
        Unique indices in ascending order
    """
    if isinstance(feature_set, (int, np.integer)):
        feature_set = [feature_set]
    indices = list(feature_set)
    if len(indices) == 0:
        raise InvalidInputError("feature_set must not be empty")
    if any(not isinstance(i, (int, np.integer)) or isinstance(i, bool) for i in indices):
        raise InvalidInputError(f"feature_set must hold integer indices, got {indices}")
    if len(set(indices)) != len(indices):
        raise InvalidInputError(f"feature_set contains duplicates: {indices}")
    if min(indices) < 0:
        raise InvalidInputError(f"feature_set indices must be non-negative, got {indices}")
    if n_features is not None:
        if max(indices) >= n_features:
            raise InvalidInputError(
                f"feature_set {indices} out of range for {n_features} covariates"
            )
        if len(indices) >= n_features:
            raise InvalidInputError(
                "feature_set must be a strict subset of the covariates"
            )
    return tuple(sorted(int(i) for i in indices))


def _freeze(values) -> np.ndarray:
    arr = np.array(values, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


def _freeze_predictions(values) -> Predictions:
    if isinstance(values, (list, tuple)):
        return tuple(_freeze(v) for v in values)
    return _freeze(values)


@dataclass(frozen=True, eq=False)
class ImportanceEstimate:
    """
    Estimated importance of a set of covariates.

    Attributes
    ----------
    feature_set : tuple of int
        0-based indices of the covariates withheld from the reduced regression
    measure_type : MeasureType
        Predictiveness measure
    point_estimate : float
        One-step (influence-curve corrected) estimate of importance
    naive_estimate : float
        Plug-in estimate without the influence curve correction
    influence_curve : np.ndarray of shape (n_obs,)
        Centered per-observation influence curve
    standard_error : float
        ``sqrt(var(influence_curve) / n_obs)``
    confidence_interval : tuple of float
        (lower, upper) at level 1 - alpha on ``scale``
    p_value : float or None
        One-sided p-value for importance > delta
    hypothesis_test : bool or None
        True when the null hypothesis importance <= delta is rejected
    predictiveness_full, predictiveness_reduced : float
        Predictiveness estimates whose difference is ``point_estimate``
    full_predictions, reduced_predictions : np.ndarray or tuple of np.ndarray
        Fitted values used (one array per fold for cross-fitted estimates)
    fold_assignment : FoldAssignment or None
        Folds used by the cross-fitted estimator
    """

    feature_set: Tuple[int, ...]
    measure_type: MeasureType
    point_estimate: float
    naive_estimate: float
    influence_curve: np.ndarray
    standard_error: float
    confidence_interval: Tuple[float, float]
    alpha: float
    delta: float
    scale: Scale
    predictiveness_full: float
    predictiveness_reduced: float
    full_predictions: Predictions
    reduced_predictions: Predictions
    p_value: Optional[float] = None
    hypothesis_test: Optional[bool] = None
    fold_assignment: Optional[FoldAssignment] = None
    learner_name: Optional[str] = None
    n_obs: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'feature_set', canonical_feature_set(self.feature_set))
        object.__setattr__(self, 'influence_curve', _freeze(self.influence_curve))
        object.__setattr__(self, 'full_predictions', _freeze_predictions(self.full_predictions))
        object.__setattr__(self, 'reduced_predictions', _freeze_predictions(self.reduced_predictions))
        object.__setattr__(self, 'n_obs', int(self.influence_curve.shape[0]))

        if self.standard_error < 0:
            raise InvalidInputError("standard_error must be non-negative")
        lower, upper = self.confidence_interval
        if lower > upper:
            raise InvalidInputError("confidence interval bounds are out of order")
        object.__setattr__(self, 'confidence_interval', (float(lower), float(upper)))

    @property
    def label(self) -> str:
        """Comma-separated feature indices, e.g. '1,3'."""
        return ",".join(str(i) for i in self.feature_set)

    def to_dict(self) -> Dict[str, Any]:
        """Summary fields as plain Python values (arrays are omitted)."""
        return {
            's': self.label,
            'measure': self.measure_type.value,
            'est': self.point_estimate,
            'naive': self.naive_estimate,
            'se': self.standard_error,
            'cil': self.confidence_interval[0],
            'ciu': self.confidence_interval[1],
            'test': self.hypothesis_test,
            'p_value': self.p_value,
            'predictiveness_full': self.predictiveness_full,
            'predictiveness_reduced': self.predictiveness_reduced,
            'alpha': self.alpha,
            'delta': self.delta,
            'scale': self.scale.value,
            'n_obs': self.n_obs,
            'learner': self.learner_name,
        }

    def to_series(self) -> pd.Series:
        return pd.Series(self.to_dict(), name=self.label)

    def __repr__(self) -> str:
        lower, upper = self.confidence_interval
        return (
            f"ImportanceEstimate(s=[{self.label}], measure='{self.measure_type.value}', "
            f"est={self.point_estimate:.4f}, se={self.standard_error:.4f}, "
            f"ci=[{lower:.4f}, {upper:.4f}])"
        )

