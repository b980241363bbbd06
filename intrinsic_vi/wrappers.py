"""
Per-measure convenience functions.

Each function is a thin parameterization of
:func:`~intrinsic_vi.cross_fitted.estimate_cross_fitted` using the argument
names common in the variable importance literature: ``indx`` for the
covariates of interest, ``C``/``Z``/``ipc_weights`` for coarsening.
"""

from typing import Iterable, Optional, Sequence, Union

import numpy as np

from .cross_fitted import estimate_cross_fitted
from .estimate import ImportanceEstimate
from .folds import FoldAssignment, RandomState
from .ipc import IPCConfig, IPCType
from .learners import Learner
from .measures import MeasureType, TreatmentNuisance


def _ipc_config(C, Z, ipc_weights, ipc_est_type) -> IPCConfig:
    return IPCConfig(coarsening=C, covariates=Z, weights=ipc_weights, est_type=ipc_est_type)


def _vim(
    measure: MeasureType,
    Y,
    X,
    f1,
    f2,
    indx,
    V,
    run_regression,
    learner,
    folds,
    stratified,
    sample_splitting,
    alpha,
    delta,
    scale,
    na_rm,
    C,
    Z,
    ipc_weights,
    ipc_est_type,
    nuisance,
    random_state,
    n_jobs
) -> ImportanceEstimate:
    return estimate_cross_fitted(
        Y,
        X=X,
        f1=f1,
        f2=f2,
        feature_set=indx,
        V=V,
        measure=measure,
        run_regression=run_regression,
        learner=learner,
        folds=folds,
        stratified=stratified,
        sample_splitting=sample_splitting,
        alpha=alpha,
        delta=delta,
        scale=scale,
        na_rm=na_rm,
        ipc=_ipc_config(C, Z, ipc_weights, ipc_est_type),
        nuisance=nuisance,
        random_state=random_state,
        n_jobs=n_jobs
    )


def vim_r_squared(
    Y: np.ndarray,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    indx: Union[int, Iterable[int]] = 0,
    V: int = 5,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = False,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: str = 'identity',
    na_rm: bool = False,
    C: Optional[np.ndarray] = None,
    Z: Optional[np.ndarray] = None,
    ipc_weights: Optional[np.ndarray] = None,
    ipc_est_type: Union[str, IPCType] = 'aipw',
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """
    Importance measured by the difference in R-squared.

    Parameters
    ----------
    Y : np.ndarray of shape (n_samples,)
        Continuous outcome
    X : np.ndarray of shape (n_samples, n_features), optional
        Covariates (required when ``run_regression=True``)
    f1, f2 : sequence of np.ndarray, optional
        Per-fold full and reduced fitted values (``run_regression=False``)
    indx : int or iterable of int, default=0
        0-based indices of the covariates of interest
    C : np.ndarray, optional
        Coarsening indicator (1 = fully observed)
    Z : np.ndarray, optional
        Covariates of the coarsening mechanism
    ipc_weights : np.ndarray, optional
        Inverse probability of coarsening weights
    ipc_est_type : {'ipw', 'aipw'}, default='aipw'
        Coarsening correction

    The remaining arguments are passed to ``estimate_cross_fitted``.

    Returns
    -------
    ImportanceEstimate
    """
    return _vim(
        MeasureType.R_SQUARED, Y, X, f1, f2, indx, V, run_regression, learner,
        folds, stratified, sample_splitting, alpha, delta, scale, na_rm,
        C, Z, ipc_weights, ipc_est_type, None, random_state, n_jobs
    )


def vim_deviance(
    Y: np.ndarray,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    indx: Union[int, Iterable[int]] = 0,
    V: int = 5,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = True,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: str = 'identity',
    na_rm: bool = False,
    C: Optional[np.ndarray] = None,
    Z: Optional[np.ndarray] = None,
    ipc_weights: Optional[np.ndarray] = None,
    ipc_est_type: Union[str, IPCType] = 'aipw',
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """Importance measured by the difference in normalized deviance (see vim_r_squared)."""
    return _vim(
        MeasureType.DEVIANCE, Y, X, f1, f2, indx, V, run_regression, learner,
        folds, stratified, sample_splitting, alpha, delta, scale, na_rm,
        C, Z, ipc_weights, ipc_est_type, None, random_state, n_jobs
    )


def vim_accuracy(
    Y: np.ndarray,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    indx: Union[int, Iterable[int]] = 0,
    V: int = 5,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = True,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: str = 'identity',
    na_rm: bool = False,
    C: Optional[np.ndarray] = None,
    Z: Optional[np.ndarray] = None,
    ipc_weights: Optional[np.ndarray] = None,
    ipc_est_type: Union[str, IPCType] = 'aipw',
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """Importance measured by the difference in classification accuracy (see vim_r_squared)."""
    return _vim(
        MeasureType.ACCURACY, Y, X, f1, f2, indx, V, run_regression, learner,
        folds, stratified, sample_splitting, alpha, delta, scale, na_rm,
        C, Z, ipc_weights, ipc_est_type, None, random_state, n_jobs
    )


def vim_auc(
    Y: np.ndarray,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    indx: Union[int, Iterable[int]] = 0,
    V: int = 5,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = True,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: str = 'identity',
    na_rm: bool = False,
    C: Optional[np.ndarray] = None,
    Z: Optional[np.ndarray] = None,
    ipc_weights: Optional[np.ndarray] = None,
    ipc_est_type: Union[str, IPCType] = 'aipw',
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """Importance measured by the difference in AUC (see vim_r_squared)."""
    return _vim(
        MeasureType.AUC, Y, X, f1, f2, indx, V, run_regression, learner,
        folds, stratified, sample_splitting, alpha, delta, scale, na_rm,
        C, Z, ipc_weights, ipc_est_type, None, random_state, n_jobs
    )


def vim_average_value(
    Y: np.ndarray,
    nuisance: TreatmentNuisance,
    X: Optional[np.ndarray] = None,
    f1: Optional[Sequence[np.ndarray]] = None,
    f2: Optional[Sequence[np.ndarray]] = None,
    indx: Union[int, Iterable[int]] = 0,
    V: int = 5,
    run_regression: bool = True,
    learner: Optional[Learner] = None,
    folds: Optional[FoldAssignment] = None,
    stratified: bool = False,
    sample_splitting: bool = True,
    alpha: float = 0.05,
    delta: float = 0.0,
    scale: str = 'identity',
    na_rm: bool = False,
    C: Optional[np.ndarray] = None,
    Z: Optional[np.ndarray] = None,
    ipc_weights: Optional[np.ndarray] = None,
    ipc_est_type: Union[str, IPCType] = 'aipw',
    random_state: RandomState = None,
    n_jobs: Optional[int] = 1
) -> ImportanceEstimate:
    """
    Importance measured by the difference in average value of the
    treatment rules ``1{f(x) >= 0.5}`` implied by the fitted values.

    ``nuisance`` holds the observed treatment, its propensity and the two
    outcome regressions. The default learner regresses ``Y`` on ``X``; pass a
    learner (or precomputed fits) that predicts the probability that
    treatment is beneficial.
    """
    return _vim(
        MeasureType.AVERAGE_VALUE, Y, X, f1, f2, indx, V, run_regression, learner,
        folds, stratified, sample_splitting, alpha, delta, scale, na_rm,
        C, Z, ipc_weights, ipc_est_type, nuisance, random_state, n_jobs
    )
