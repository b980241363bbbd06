"""
Fold assignment for sample splitting and cross-fitting.

Observations are split into two outer halves (the full regression is
evaluated on half 1 and the reduced regression on half 2) and, within each
half, into V inner cross-fitting folds. Labels are dealt cyclically over a
random permutation, so fold sizes differ by at most one observation, both
within each half and when the halves are pooled.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from .exceptions import InvalidInputError, LengthMismatchError

logger = logging.getLogger(__name__)

RandomState = Union[None, int, np.random.Generator]

# Outcomes with more distinct values than this are treated as continuous
_MAX_STRATA = 10


def _as_labels(labels, name: str) -> np.ndarray:
    arr = np.asarray(labels)
    if arr.ndim != 1:
        raise InvalidInputError(f"{name} must be 1D, got shape {arr.shape}")
    as_int = arr.astype(int)
    if not np.array_equal(as_int, arr):
        raise InvalidInputError(f"{name} must contain integer labels")
    return as_int


@dataclass(frozen=True, eq=False)
class FoldAssignment:
    """
    Immutable partition of observations into outer halves and inner folds.

    Parameters
    ----------
    inner : array-like of shape (n_samples,)
        Cross-fitting fold labels in {1, ..., V}
    outer : array-like of shape (n_samples,), optional
        Sample-splitting labels in {1, 2}; all ones (no sample splitting)
        when omitted
    """

    inner: np.ndarray
    outer: Optional[np.ndarray] = None

    def __post_init__(self):
        inner = _as_labels(self.inner, "inner folds")
        outer = (
            np.ones_like(inner) if self.outer is None
            else _as_labels(self.outer, "outer folds")
        )
        if outer.shape != inner.shape:
            raise LengthMismatchError(
                f"outer folds have length {outer.shape[0]}, inner folds {inner.shape[0]}"
            )
        if not set(np.unique(outer)) <= {1, 2}:
            raise InvalidInputError("outer folds must be labelled 1 or 2")
        V = int(inner.max()) if inner.size else 0
        if inner.size == 0 or set(np.unique(inner)) != set(range(1, V + 1)):
            raise InvalidInputError("inner folds must use every label in 1..V")

        inner.setflags(write=False)
        outer.setflags(write=False)
        object.__setattr__(self, 'inner', inner)
        object.__setattr__(self, 'outer', outer)

    def __len__(self) -> int:
        return self.inner.shape[0]

    @property
    def n_folds(self) -> int:
        return int(self.inner.max())

    @property
    def sample_splitting(self) -> bool:
        return bool(np.any(self.outer == 2))

    def rows(self, half: int, fold: int) -> np.ndarray:
        """Row indices in outer ``half`` and inner ``fold``, in row order."""
        return np.flatnonzero((self.outer == half) & (self.inner == fold))

    def subset(self, rows: np.ndarray) -> "FoldAssignment":
        """Assignment restricted to ``rows``; every fold label must remain."""
        return FoldAssignment(inner=self.inner[rows], outer=self.outer[rows])

    def fold_sizes(self, half: Optional[int] = None) -> np.ndarray:
        """Number of observations in each inner fold (optionally within one half)."""
        labels = self.inner if half is None else self.inner[self.outer == half]
        return np.bincount(labels, minlength=self.n_folds + 1)[1:]


def make_folds(
    y: np.ndarray,
    V: int,
    random_state: RandomState = None,
    stratified: bool = False,
    offset: int = 0
) -> np.ndarray:
    """
    Randomly assign observations to V folds of (almost) equal size.

    Parameters
    ----------
    y : np.ndarray of shape (n_samples,)
        Outcome, used only for stratification
    V : int
        Number of folds
    random_state : int, np.random.Generator or None
        Source of randomness
    stratified : bool, default=False
        If True, deal folds separately within each outcome class so class
        proportions are preserved across folds
    offset : int, default=0
        Position at which the cyclic labelling starts; used to keep pooled
        fold sizes balanced when folds are drawn separately in several groups

    Returns
    -------
    folds : np.ndarray of shape (n_samples,)
        Labels in {1, ..., V}
    """
    rng = np.random.default_rng(random_state)
    y = np.asarray(y, dtype=float).reshape(-1)
    n = y.shape[0]

    if stratified:
        strata = np.where(np.isnan(y), np.inf, y)
        classes = np.unique(strata)
        if len(classes) > _MAX_STRATA:
            warnings.warn(
                f"outcome has {len(classes)} distinct values; "
                "drawing unstratified folds"
            )
            groups = [np.arange(n)]
        else:
            groups = [np.flatnonzero(strata == c) for c in classes]
    else:
        groups = [np.arange(n)]

    folds = np.empty(n, dtype=int)
    position = offset
    for idx in groups:
        shuffled = rng.permutation(idx)
        folds[shuffled] = (np.arange(len(idx)) + position) % V + 1
        position += len(idx)
    return folds


def make_fold_assignment(
    y: np.ndarray,
    V: int = 5,
    stratified: bool = False,
    sample_splitting: bool = True,
    random_state: RandomState = None
) -> FoldAssignment:
    """
    Draw outer sample-splitting halves and inner cross-fitting folds.

    Parameters
    ----------
    y : np.ndarray of shape (n_samples,)
        Outcome
    V : int, default=5
        Number of inner cross-fitting folds
    stratified : bool, default=False
        Stratify both splits by outcome class
    sample_splitting : bool, default=True
        If False, every observation is placed in outer half 1
    random_state : int, np.random.Generator or None
        Seed or generator; the same seed always yields the same assignment

    Returns
    -------
    FoldAssignment
    """
    if not isinstance(V, (int, np.integer)) or V < 2:
        raise ValueError(f"V must be an integer >= 2, got {V}")
    y = np.asarray(y, dtype=float).reshape(-1)
    n = y.shape[0]
    n_halves = 2 if sample_splitting else 1
    if n < n_halves * V:
        raise ValueError(
            f"need at least {n_halves * V} observations for V={V} "
            f"with {n_halves} outer half(s), got {n}"
        )

    rng = np.random.default_rng(random_state)
    if sample_splitting:
        outer = make_folds(y, 2, rng, stratified=stratified)
    else:
        outer = np.ones(n, dtype=int)

    inner = np.empty(n, dtype=int)
    offset = 0
    for half in range(1, n_halves + 1):
        rows = np.flatnonzero(outer == half)
        inner[rows] = make_folds(y[rows], V, rng, stratified=stratified, offset=offset)
        offset += len(rows)

    folds = FoldAssignment(inner=inner, outer=outer)
    logger.debug(
        "Drew %d inner folds (sizes %s), sample_splitting=%s",
        V, folds.fold_sizes().tolist(), sample_splitting
    )
    return folds
