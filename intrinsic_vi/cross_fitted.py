"""
Cross-fitted variable importance with sample splitting.

Observations are split into two outer halves and V inner folds. For every
inner fold v the full regression is trained on the half-1 rows outside fold
v and evaluated on the half-1 rows of fold v; the reduced regression
(covariates of interest withheld) is handled the same way on half 2. The
fold-level predictiveness estimates are pooled with weights proportional to
fold size, and the per-fold influence curves are assembled observation by
observation into a single curve for inference.

Without sample splitting both regressions are evaluated on every fold.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed

from .estimate import ImportanceEstimate, canonical_feature_set
from .exceptions import InvalidInputError, LengthMismatchError, RegressionFailureError
from .folds import FoldAssignment, RandomState, make_fold_assignment
from .inference import Scale, check_alpha, resolve_scale
from .ipc import IPCConfig
from .learners import Learner, learner_name, make_learner
from .measures import Measure, MeasureType, TreatmentNuisance, get_measure
from .one_fold import (
    PredictivenessEstimate,
    _as_predictions,
    estimate_predictiveness,
    missing_rows,
    summarize_importance,
)

logger = logging.getLogger(__name__)

_CLASSIFICATION_MEASURES = (MeasureType.DEVIANCE, MeasureType.ACCURACY, MeasureType.AUC)

FoldResult = Tuple[np.ndarray, PredictivenessEstimate]


def default_learner(measure: Measure) -> Learner:
    """Random forest matching the outcome type implied by ``measure``."""
    if measure.measure_type in _CLASSIFICATION_MEASURES:
        return make_learner('random_forest', task='classification')
    return make_learner('random_forest', task='regression')


def fit_fold(
    fold: int,
    y: np.ndarray,
    X: np.ndarray,
    folds: FoldAssignment,
    feature_set: Sequence[int],
    learner: Learner,
    reduced_learner: Optional[Learner] = None,
    observed: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fit the full and reduced regressions for one inner fold.

    Folds are independent of each other, so this function may be run
    concurrently across fold indices.

    Parameters
    ----------
    fold : int
        Inner fold label in {1, ..., V}
    y : np.ndarray of shape (n_samples,)
        Outcome
    X : np.ndarray of shape (n_samples, n_features)
        Covariates
    folds : FoldAssignment
        Outer halves and inner folds
    feature_set : sequence of int
        Covariates withheld from the reduced regression
    learner : Learner
        Learner for the full regression
    reduced_learner : Learner, optional
        Learner for the reduced regression; defaults to ``learner``
    observed : np.ndarray of shape (n_samples,), optional
        Boolean mask of rows usable for training (coarsened rows excluded)

    Returns
    -------
    full_pred : np.ndarray
        Full-regression predictions for the half-1 rows of ``fold``
    reduced_pred : np.ndarray
        Reduced-regression predictions for the half-2 rows of ``fold``
        (half 1 without sample splitting)

    Raises
    ------
    RegressionFailureError
        If either learner raises or returns the wrong number of predictions
    """
    reduced_learner = reduced_learner if reduced_learner is not None else learner
    if observed is None:
        observed = np.ones(y.shape[0], dtype=bool)
    reduced_half = 2 if folds.sample_splitting else 1

    full_train = np.flatnonzero((folds.outer == 1) & (folds.inner != fold) & observed)
    full_test = folds.rows(1, fold)
    reduced_train = np.flatnonzero(
        (folds.outer == reduced_half) & (folds.inner != fold) & observed
    )
    reduced_test = folds.rows(reduced_half, fold)
    X_reduced = np.delete(X, list(feature_set), axis=1)

    logger.debug(
        "Fold %d: training full on %d rows, reduced on %d rows",
        fold, len(full_train), len(reduced_train)
    )
    try:
        full_pred = learner(y[full_train], X[full_train], X[full_test])
        reduced_pred = reduced_learner(
            y[reduced_train], X_reduced[reduced_train], X_reduced[reduced_test]
        )
    except Exception as exc:
        raise RegressionFailureError(
            f"learner failed on fold {fold}: {exc}"
        ) from exc

    full_pred = np.asarray(full_pred, dtype=float)
    reduced_pred = np.asarray(reduced_pred, dtype=float)
    if full_pred.shape[0] != len(full_test) or reduced_pred.shape[0] != len(reduced_test):
        raise RegressionFailureError(
            f"learner returned the wrong number of predictions on fold {fold}"
        )
    return full_pred, reduced_pred


def _evaluate_fold(
    measure: Measure,
    y: np.ndarray,
    rows: np.ndarray,
    fits: List[np.ndarray],
    ipc: IPCConfig,
    na_rm: bool,
    label: str
) -> Tuple[np.ndarray, List[PredictivenessEstimate]]:
    """Predictiveness of each fit in ``fits`` on ``rows``, after NaN handling."""
    for preds in fits:
        if preds.shape[0] != rows.shape[0]:
            raise LengthMismatchError(
                f"{label}: {preds.shape[0]} fitted values for {rows.shape[0]} observations"
            )

    missing = missing_rows(y[rows], fits, ipc.subset(rows).indicator(len(rows)))
    if missing.any():
        if not na_rm:
            raise InvalidInputError(
                f"{label}: {int(missing.sum())} observation(s) have a missing outcome "
                "or fitted value; set na_rm=True to drop them"
            )
        keep = ~missing
        rows = rows[keep]
        fits = [preds[keep] for preds in fits]
    if rows.size == 0:
        raise InvalidInputError(f"{label} has no observations")

    fold_measure = measure.restrict(rows)
    fold_ipc = ipc.subset(rows)
    estimates = [
        estimate_predictiveness(fold_measure, preds, y[rows], fold_ipc)
        for preds in fits
    ]
    return rows, estimates


def _pool(results: Sequence[FoldResult]) -> Tuple[PredictivenessEstimate, int]:
    """Fold-size weighted average of fold-level predictiveness."""
    sizes = np.array([rows.shape[0] for rows, _ in results], dtype=float)
    naive = np.array([est.naive for _, est in results])
    onestep = np.array([est.estimate for _, est in results])
    total = int(sizes.sum())
    pooled = PredictivenessEstimate(
        naive=float(np.sum(sizes * naive) / total),
        estimate=float(np.sum(sizes * onestep) / total),
        influence_curve=np.concatenate([est.influence_curve for _, est in results])
    )
    return pooled, total


def aggregate_folds(
    n: int,
    full_results: Sequence[FoldResult],
    reduced_results: Sequence[FoldResult],
    sample_splitting: bool
) -> Tuple[PredictivenessEstimate, PredictivenessEstimate, np.ndarray]:
    """
    Pool fold-level estimates and assemble the overall influence curve.

    With sample splitting, half-1 rows carry ``(m / m1) * ic_full`` and half-2
    rows carry ``-(m / m2) * ic_reduced`` (m = m1 + m2 rows used), so that
    ``var(ic) / m`` equals ``var_full / m1 + var_reduced / m2``. Without
    sample splitting each row carries ``ic_full - ic_reduced``.

    Returns
    -------
    full, reduced : PredictivenessEstimate
        Pooled predictiveness estimates
    influence_curve : np.ndarray
        One value per observation used, in row order
    """
    full, n_full = _pool(full_results)
    reduced, n_reduced = _pool(reduced_results)

    ic = np.zeros(n)
    used = np.zeros(n, dtype=bool)
    if sample_splitting:
        total = n_full + n_reduced
        for rows, est in full_results:
            ic[rows] = (total / n_full) * est.influence_curve
            used[rows] = True
        for rows, est in reduced_results:
            ic[rows] = -(total / n_reduced) * est.influence_curve
            used[rows] = True
    else:
        for (rows, full_est), (_, reduced_est) in zip(full_results, reduced_results):
            ic[rows] = full_est.influence_curve - reduced_est.influence_curve
            used[rows] = True
    return full, reduced, ic[used]


def estimate_cross_fitted(
    y: np.ndarray,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    feature_set: Union[int, Iterable[int]] = 0,
    V: int = 5,
    measure: Union[str, MeasureType, Measure] = MeasureType.R_SQUARED,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    reduced_learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = False,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: Union[str, Scale] = Scale.IDENTITY,
    na_rm: bool = False,
    ipc: Optional[IPCConfig] = None,
    nuisance: Optional[TreatmentNuisance] = None,
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """
    Cross-fitted estimate of variable importance.

    Parameters
    ----------
    y : np.ndarray of shape (n_samples,)
        Outcome (NaN allowed on coarsened rows)
    X : np.ndarray of shape (n_samples, n_features), optional
        Covariates; required when ``run_regression=True``
    f1, f2 : sequence of np.ndarray, optional
        Precomputed fits, one array per inner fold: ``f1[v]`` holds full
        regression predictions for the half-1 rows of fold v + 1 (row order),
        ``f2[v]`` reduced predictions for the half-2 rows (half 1 without
        sample splitting). Used only when ``run_regression=False``
    feature_set : int or iterable of int, default=0
        0-based indices of the covariates of interest
    V : int, default=5
        Number of inner cross-fitting folds
    measure : str, MeasureType or Measure, default='r_squared'
        Predictiveness measure
    run_regression : bool, default=True
        Fit the regressions with ``learner`` (True) or use ``f1``/``f2``
    learner, reduced_learner : Learner, optional
        Learners for the full and reduced regressions; a random forest by
        default, the reduced learner defaults to ``learner``
    folds : FoldAssignment, optional
        Fold assignment; drawn from ``random_state`` when omitted (required
        with precomputed fits)
    stratified : bool, default=False
        Stratify generated folds by outcome class
    sample_splitting : bool, default=True
        Evaluate full and reduced regressions on separate halves
    alpha, delta, scale, na_rm, ipc, nuisance
        As in :func:`~intrinsic_vi.one_fold.estimate_one_fold`
    random_state : int, np.random.Generator or None
        Seed or generator for fold generation
    n_jobs : int or None, default=1
        Number of folds fitted in parallel (joblib semantics)

    Returns
    -------
    ImportanceEstimate

    Raises
    ------
    InvalidInputError
        If both or neither of covariates and precomputed fits are usable
    RegressionFailureError
        If the learner fails on any fold
    """
    alpha = check_alpha(alpha)
    scale = resolve_scale(scale)
    measure = get_measure(measure, nuisance)
    ipc = ipc if ipc is not None else IPCConfig()
    y = np.asarray(y, dtype=float).reshape(-1)
    n = y.shape[0]
    ipc.validate(n)

    supplied = f1 is not None or f2 is not None
    if run_regression and supplied:
        raise InvalidInputError(
            "fitted values were supplied with run_regression=True; "
            "pass either covariates or fitted values, not both"
        )
    if not run_regression and (f1 is None or f2 is None):
        raise InvalidInputError("run_regression=False requires both f1 and f2")
    if folds is not None and not isinstance(folds, FoldAssignment):
        folds = FoldAssignment(inner=np.asarray(folds))

    if X is not None:
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.shape[0] != n:
            raise LengthMismatchError(f"X has {X.shape[0]} rows, outcome has {n}")
    feature_set = canonical_feature_set(feature_set, None if X is None else X.shape[1])

    if run_regression:
        if X is None:
            raise InvalidInputError("run_regression=True requires covariates X")
        learner = learner if learner is not None else default_learner(measure)
        y, X, ipc, measure, folds = _drop_incomplete_rows(y, X, ipc, measure, folds, na_rm)
        n = y.shape[0]
        if folds is None:
            folds = make_fold_assignment(
                y, V=V, stratified=stratified,
                sample_splitting=sample_splitting, random_state=random_state
            )
        observed = ipc.indicator(n) == 1
        logger.info(
            "Cross-fitting %d folds for feature set %s with %s",
            folds.n_folds, list(feature_set), learner_name(learner)
        )
        fits = Parallel(n_jobs=n_jobs)(
            delayed(fit_fold)(
                v, y, X, folds, feature_set, learner, reduced_learner, observed
            )
            for v in range(1, folds.n_folds + 1)
        )
        f1 = [full_pred for full_pred, _ in fits]
        f2 = [reduced_pred for _, reduced_pred in fits]
        name = learner_name(learner)
    else:
        if folds is None:
            raise InvalidInputError("folds must be supplied with precomputed fits")
        name = None

    if len(folds) != n:
        raise LengthMismatchError(f"folds cover {len(folds)} rows, outcome has {n}")
    if len(f1) != folds.n_folds or len(f2) != folds.n_folds:
        raise LengthMismatchError(
            f"expected {folds.n_folds} fits per regression, "
            f"got {len(f1)} full and {len(f2)} reduced"
        )
    f1 = [_as_predictions(preds, "f1") for preds in f1]
    f2 = [_as_predictions(preds, "f2") for preds in f2]

    full_results, reduced_results = [], []
    for v in range(1, folds.n_folds + 1):
        if folds.sample_splitting:
            rows, (est,) = _evaluate_fold(
                measure, y, folds.rows(1, v), [f1[v - 1]], ipc, na_rm,
                f"fold {v} (half 1)"
            )
            full_results.append((rows, est))
            rows, (est,) = _evaluate_fold(
                measure, y, folds.rows(2, v), [f2[v - 1]], ipc, na_rm,
                f"fold {v} (half 2)"
            )
            reduced_results.append((rows, est))
        else:
            rows, (full_est, reduced_est) = _evaluate_fold(
                measure, y, folds.rows(1, v), [f1[v - 1], f2[v - 1]], ipc, na_rm,
                f"fold {v}"
            )
            full_results.append((rows, full_est))
            reduced_results.append((rows, reduced_est))

    full, reduced, influence_curve = aggregate_folds(
        n, full_results, reduced_results, folds.sample_splitting
    )
    return summarize_importance(
        feature_set,
        measure,
        full,
        reduced,
        influence_curve=influence_curve,
        alpha=alpha,
        delta=delta,
        scale=scale,
        full_predictions=tuple(f1),
        reduced_predictions=tuple(f2),
        fold_assignment=folds,
        learner_name=name
    )


def _drop_incomplete_rows(y, X, ipc, measure, folds, na_rm):
    """Remove observed rows with a missing outcome or covariate (when na_rm)."""
    coarsening = ipc.indicator(y.shape[0])
    missing = (coarsening == 1) & (np.isnan(y) | np.isnan(X).any(axis=1))
    if not missing.any():
        return y, X, ipc, measure, folds
    if not na_rm:
        raise InvalidInputError(
            f"{int(missing.sum())} observation(s) have a missing outcome or "
            "covariate; set na_rm=True to drop them"
        )
    keep = np.flatnonzero(~missing)
    logger.info("Dropping %d observation(s) with missing values", int(missing.sum()))
    return (
        y[keep],
        X[keep],
        ipc.subset(keep),
        measure.restrict(keep),
        None if folds is None else folds.subset(keep)
    )


class CrossFittedImportance:
    """
    Cross-fitted intrinsic variable importance estimator.

    Parameters
    ----------
    measure : {'r_squared', 'deviance', 'accuracy', 'auc', 'average_value'}, default='r_squared'
        Predictiveness measure
    V : int, default=5
        Number of inner cross-fitting folds
    learner : Learner, optional
        Learner for both regressions (random forest by default)
    reduced_learner : Learner, optional
        Learner for the reduced regression; defaults to ``learner``
    stratified : bool, default=False
        Stratify folds by outcome class
    sample_splitting : bool, default=True
        Evaluate full and reduced regressions on separate halves
    alpha : float, default=0.05
        Level of intervals and tests
    delta : float, default=0.0
        Null threshold for the hypothesis test
    scale : {'identity', 'logit'}, default='identity'
        Scale of the confidence interval
    na_rm : bool, default=False
        Drop rows with missing values instead of raising
    random_state : int, np.random.Generator or None
        Seed for fold generation
    n_jobs : int, default=1
        Folds fitted in parallel

    Attributes
    ----------
    estimate_ : ImportanceEstimate
        Result of the last call to fit()
    folds_ : FoldAssignment
        Folds used by the last call to fit() (after any rows with missing values
        were dropped)

    Examples
    --------
    >>> from intrinsic_vi.learners import make_learner
    >>> cfi = CrossFittedImportance(V=5, learner=make_learner('linear'), random_state=0)
    >>> est = cfi.fit(X, y, feature_set=[1])
    >>> est.point_estimate
    """

    def __init__(
        self,
        measure: Union[str, MeasureType] = MeasureType.R_SQUARED,
        V: int = 5,
        learner: Optional[Learner] = None,
        reduced_learner: Optional[Learner] = None,
        stratified: bool = False,
        sample_splitting: bool = True,
        alpha: float = 0.05,
        delta: float = 0.0,
        scale: Union[str, Scale] = Scale.IDENTITY,
        na_rm: bool = False,
        random_state: RandomState = None,
        n_jobs: Optional[int] = 1
    ):
        if not isinstance(V, (int, np.integer)) or V < 2:
            raise ValueError(f"V must be an integer >= 2, got {V}")

        self.measure = MeasureType(measure)
        self.V = V
        self.learner = learner
        self.reduced_learner = reduced_learner
        self.stratified = stratified
        self.sample_splitting = sample_splitting
        self.alpha = check_alpha(alpha)
        self.delta = delta
        self.scale = resolve_scale(scale)
        self.na_rm = na_rm
        self.random_state = random_state
        self.n_jobs = n_jobs

        # To be set during fit()
        self.estimate_ = None
        self.folds_ = None

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        feature_set: Union[int, Iterable[int]],
        folds: Optional[FoldAssignment] = None,
        ipc: Optional[IPCConfig] = None,
        nuisance: Optional[TreatmentNuisance] = None
    ) -> ImportanceEstimate:
        """
        Estimate the importance of ``feature_set``.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Covariates
        y : np.ndarray of shape (n_samples,)
            Outcome
        feature_set : int or iterable of int
            Covariates of interest
        folds : FoldAssignment, optional
            Folds to use; drawn from ``random_state`` when omitted
        ipc : IPCConfig, optional
            Coarsening correction inputs
        nuisance : TreatmentNuisance, optional
            Required for the average value measure

        Returns
        -------
        ImportanceEstimate
        """
        estimate = estimate_cross_fitted(
            y,
            X=X,
            feature_set=feature_set,
            V=self.V,
            measure=self.measure,
            run_regression=True,
            learner=self.learner,
            reduced_learner=self.reduced_learner,
            folds=folds,
            stratified=self.stratified,
            sample_splitting=self.sample_splitting,
            alpha=self.alpha,
            delta=self.delta,
            scale=self.scale,
            na_rm=self.na_rm,
            ipc=ipc,
            nuisance=nuisance,
            random_state=self.random_state,
            n_jobs=self.n_jobs
        )
        self.estimate_ = estimate
        self.folds_ = estimate.fold_assignment
        return estimate

    def fit_many(
        self,
        X: np.ndarray,
        y: np.ndarray,
        feature_sets: Sequence[Union[int, Iterable[int]]],
        ipc: Optional[IPCConfig] = None,
        nuisance: Optional[TreatmentNuisance] = None
    ):
        """
        Estimate several feature sets on shared folds and merge the results.

        The folds are drawn once on all rows of ``y``, so every feature set
        drops the same incomplete rows from the same assignment.

        Returns
        -------
        ComparisonTable
            One row per feature set, ordered by decreasing estimate
        """
        from .results import merge_estimates

        if len(feature_sets) == 0:
            raise ValueError("feature_sets must not be empty")

        folds = make_fold_assignment(
            y, V=self.V, stratified=self.stratified,
            sample_splitting=self.sample_splitting, random_state=self.random_state
        )
        estimates = [
            self.fit(X, y, feature_set, folds=folds, ipc=ipc, nuisance=nuisance)
            for feature_set in feature_sets
        ]
        return merge_estimates(*estimates)

    def __repr__(self) -> str:
        parts = [
            f"measure='{self.measure.value}'",
            f"V={self.V}",
            f"scale='{self.scale.value}'"
        ]
        if self.learner is not None:
            parts.append(f"learner={learner_name(self.learner)}")
        if self.random_state is not None:
            parts.append(f"random_state={self.random_state}")
        return f"CrossFittedImportance({', '.join(parts)})"
