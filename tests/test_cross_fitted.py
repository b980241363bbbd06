"""Tests for the cross-fitted estimator."""
import numpy as np
import pytest
from sklearn.linear_model import LinearRegression, LogisticRegression

from intrinsic_vi import (
    CrossFittedImportance,
    FoldAssignment,
    IPCConfig,
    SklearnLearner,
    estimate_cross_fitted,
    make_fold_assignment,
    make_learner,
    vim_accuracy,
    vim_auc,
    vim_average_value,
    vim_deviance,
    vim_r_squared,
)
from intrinsic_vi.cross_fitted import default_learner, fit_fold
from intrinsic_vi.exceptions import (
    InvalidInputError,
    InvalidScaleError,
    LengthMismatchError,
    RegressionFailureError,
)
from intrinsic_vi.measures import Deviance, MeasureType, RSquared, TreatmentNuisance


def _make_data(n: int = 103, d: int = 3, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, d))
    y = 2.0 * X[:, 0] + 0.5 * X[:, 1] + rng.normal(size=n)
    return X, y


def _make_binary(n: int = 300, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 2))
    p = 1.0 / (1.0 + np.exp(-(1.5 * X[:, 0] + 0.3 * X[:, 1])))
    y = (rng.random(n) < p).astype(float)
    return X, y


def _noisy_fits(X, rows, coef, rng):
    return X[rows] @ coef + rng.normal(scale=0.3, size=len(rows))


def _make_treatment(n: int = 120, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 2))
    a = (rng.random(n) < 0.5).astype(float)
    y = a * X[:, 0] + rng.normal(scale=0.5, size=n)
    nuisance = TreatmentNuisance(
        treatment=a, propensity=np.full(n, 0.5), mu1=X[:, 0], mu0=np.zeros(n)
    )
    return X, y, nuisance


def _aipw_value(y, f, nuisance):
    # Propensity is 0.5 for both arms
    rule = (f >= 0.5).astype(float)
    follows = nuisance.treatment == rule
    mu_a = np.where(nuisance.treatment == 1, nuisance.mu1, nuisance.mu0)
    mu_rule = np.where(rule == 1, nuisance.mu1, nuisance.mu0)
    return np.mean(follows / 0.5 * (y - mu_a) + mu_rule)


def test_aggregation_matches_fold_size_weighted_reference():
    X, y = _make_data(n=103)
    folds = make_fold_assignment(y, V=5, sample_splitting=False, random_state=0)
    rng = np.random.default_rng(1)
    f1 = [_noisy_fits(X, folds.rows(1, v), np.array([2.0, 0.5, 0.0]), rng) for v in range(1, 6)]
    f2 = [_noisy_fits(X, folds.rows(1, v), np.array([2.0, 0.0, 0.0]), rng) for v in range(1, 6)]

    est = estimate_cross_fitted(
        y, f1=f1, f2=f2, feature_set=1, folds=folds, run_regression=False
    )

    sizes = folds.fold_sizes()
    assert sizes.max() - sizes.min() <= 1
    measure = RSquared()
    full = [measure.predictiveness(f1[v], y[folds.rows(1, v + 1)]) for v in range(5)]
    reduced = [measure.predictiveness(f2[v], y[folds.rows(1, v + 1)]) for v in range(5)]
    expected = (
        np.sum(sizes * [r.point_est for r in full])
        - np.sum(sizes * [r.point_est for r in reduced])
    ) / sizes.sum()
    uniform = np.mean([a.point_est - b.point_est for a, b in zip(full, reduced)])
    assert np.isclose(est.point_estimate, expected)
    assert not np.isclose(est.point_estimate, uniform, rtol=0, atol=1e-12)

    ic = np.empty(103)
    for v in range(5):
        ic[folds.rows(1, v + 1)] = full[v].eif - reduced[v].eif
    assert np.isclose(est.standard_error, np.sqrt(np.var(ic) / 103))
    assert est.n_obs == 103
    assert est.fold_assignment is folds


def test_sample_splitting_standard_error():
    X, y = _make_data(n=200, seed=2)
    folds = make_fold_assignment(y, V=4, random_state=3)
    rng = np.random.default_rng(4)
    f1 = [_noisy_fits(X, folds.rows(1, v), np.array([2.0, 0.5, 0.0]), rng) for v in range(1, 5)]
    f2 = [_noisy_fits(X, folds.rows(2, v), np.array([2.0, 0.0, 0.0]), rng) for v in range(1, 5)]

    est = estimate_cross_fitted(
        y, f1=f1, f2=f2, feature_set=1, folds=folds, run_regression=False
    )

    measure = RSquared()
    full_ic, reduced_ic, full_vals, reduced_vals = [], [], [], []
    for v in range(1, 5):
        rows1, rows2 = folds.rows(1, v), folds.rows(2, v)
        full = measure.predictiveness(f1[v - 1], y[rows1])
        reduced = measure.predictiveness(f2[v - 1], y[rows2])
        full_ic.append(full.eif)
        reduced_ic.append(reduced.eif)
        full_vals.append((len(rows1), full.point_est))
        reduced_vals.append((len(rows2), reduced.point_est))
    full_ic = np.concatenate(full_ic)
    reduced_ic = np.concatenate(reduced_ic)
    n1, n2 = len(full_ic), len(reduced_ic)

    expected_se = np.sqrt(np.mean(full_ic ** 2) / n1 + np.mean(reduced_ic ** 2) / n2)
    assert np.isclose(est.standard_error, expected_se)
    expected = (
        sum(m * v for m, v in full_vals) / n1
        - sum(m * v for m, v in reduced_vals) / n2
    )
    assert np.isclose(est.point_estimate, expected)


def test_fits_and_regression_are_exclusive():
    X, y = _make_data()
    folds = make_fold_assignment(y, V=5, random_state=0)
    fits = [np.zeros(len(folds.rows(1, v))) for v in range(1, 6)]
    with pytest.raises(InvalidInputError):
        estimate_cross_fitted(y, X=X, f1=fits, f2=fits, folds=folds, run_regression=True)
    with pytest.raises(InvalidInputError):
        estimate_cross_fitted(y, f1=fits, run_regression=False, folds=folds)
    with pytest.raises(InvalidInputError, match="folds"):
        estimate_cross_fitted(y, f1=fits, f2=fits, run_regression=False)
    with pytest.raises(InvalidInputError, match="covariates"):
        estimate_cross_fitted(y, run_regression=True)


def test_wrong_number_of_fits():
    _, y = _make_data()
    folds = make_fold_assignment(y, V=5, random_state=0)
    fits = [np.zeros(len(folds.rows(1, v))) for v in range(1, 5)]
    with pytest.raises(LengthMismatchError):
        estimate_cross_fitted(y, f1=fits, f2=fits, folds=folds, run_regression=False)


def test_inner_labels_accepted_as_folds():
    X, y = _make_data(n=60)
    inner = np.tile(np.arange(1, 4), 20)
    fits = [X[inner == v] @ np.array([2.0, 0.5, 0.0]) for v in range(1, 4)]
    reduced = [X[inner == v] @ np.array([2.0, 0.0, 0.0]) for v in range(1, 4)]
    est = estimate_cross_fitted(y, f1=fits, f2=reduced, folds=inner, run_regression=False, feature_set=1)
    assert isinstance(est.fold_assignment, FoldAssignment)
    assert not est.fold_assignment.sample_splitting
    assert len(est.full_predictions) == 3


def test_failing_learner_raises():
    def broken(y_train, X_train, X_test):
        raise ValueError("cannot fit")

    X, y = _make_data()
    with pytest.raises(RegressionFailureError, match="fold"):
        estimate_cross_fitted(y, X=X, feature_set=1, learner=broken, random_state=0)


def test_fit_fold_predicts_held_out_rows():
    X, y = _make_data(n=100)
    folds = make_fold_assignment(y, V=5, random_state=0)
    full, reduced = fit_fold(2, y, X, folds, (1,), make_learner('linear'))
    assert full.shape == (len(folds.rows(1, 2)),)
    assert reduced.shape == (len(folds.rows(2, 2)),)


def test_linear_learner_recovers_importance():
    X, y = _make_data(n=600, seed=5)
    learner = SklearnLearner(LinearRegression(), name='ols')
    strong = estimate_cross_fitted(y, X=X, feature_set=0, learner=learner, random_state=1)
    noise = estimate_cross_fitted(y, X=X, feature_set=2, learner=learner, random_state=1)
    # Var(y) = 4 + 0.25 + 1, so dropping X0 costs 4 / 5.25 of R-squared
    assert abs(strong.point_estimate - 4 / 5.25) < 0.15
    assert strong.p_value < 0.05
    assert abs(noise.point_estimate) < 0.2
    assert strong.learner_name == 'ols'
    assert len(strong.full_predictions) == 5


def test_parallel_folds_match_sequential():
    X, y = _make_data(n=120, seed=6)
    learner = make_learner('linear')
    a = estimate_cross_fitted(y, X=X, feature_set=1, learner=learner, random_state=2, n_jobs=1)
    b = estimate_cross_fitted(y, X=X, feature_set=1, learner=learner, random_state=2, n_jobs=2)
    assert np.isclose(a.point_estimate, b.point_estimate)
    assert np.isclose(a.standard_error, b.standard_error)


def test_missing_covariates_require_na_rm():
    X, y = _make_data(n=100, seed=7)
    X = X.copy()
    X[5, 2] = np.nan
    learner = make_learner('linear')
    with pytest.raises(InvalidInputError, match="na_rm"):
        estimate_cross_fitted(y, X=X, feature_set=1, learner=learner, random_state=0)
    est = estimate_cross_fitted(y, X=X, feature_set=1, learner=learner, random_state=0, na_rm=True)
    assert est.n_obs == 99


def test_coarsened_outcome():
    X, y = _make_data(n=300, seed=8)
    rng = np.random.default_rng(9)
    prob = np.where(X[:, 2] > 0, 0.9, 0.7)
    C = (rng.random(300) < prob).astype(float)
    y = np.where(C == 1, y, np.nan)
    learner = make_learner('linear')
    for est_type in ('ipw', 'aipw'):
        ipc = IPCConfig(coarsening=C, covariates=X[:, 2], weights=1.0 / prob, est_type=est_type)
        est = estimate_cross_fitted(
            y, X=X, feature_set=0, learner=learner, ipc=ipc, random_state=0
        )
        assert np.isfinite(est.point_estimate)
        assert est.point_estimate > 0.3
        assert est.n_obs == 300


def test_classification_measures():
    X, y = _make_binary()
    learner = SklearnLearner(LogisticRegression(max_iter=1000), name='logistic')
    for wrapper in (vim_deviance, vim_auc):
        est = wrapper(y, X=X, indx=0, learner=learner, random_state=0)
        assert np.isfinite(est.point_estimate)
        assert est.standard_error > 0
        assert est.learner_name == 'logistic'


def test_default_learner_matches_outcome_type():
    assert default_learner(RSquared()).name == 'random_forest'
    assert type(default_learner(Deviance()).estimator).__name__ == 'RandomForestClassifier'
    assert type(default_learner(RSquared()).estimator).__name__ == 'RandomForestRegressor'


def test_estimator_class_shares_folds():
    X, y = _make_data(n=150, seed=10)
    cfi = CrossFittedImportance(V=3, learner=make_learner('linear'), random_state=0)
    table = cfi.fit_many(X, y, feature_sets=[0, 1, 2])
    assert len(table) == 3
    folds = {id(est.fold_assignment) for est in table}
    assert len(folds) == 1
    estimates = [est.point_estimate for est in table]
    assert estimates == sorted(estimates, reverse=True)
    assert table[0].feature_set == (0,)
    assert cfi.estimate_ is not None
    assert 'V=3' in repr(cfi)


def test_estimator_class_validation():
    with pytest.raises(ValueError, match="V must be"):
        CrossFittedImportance(V=1)
    with pytest.raises(ValueError, match="alpha"):
        CrossFittedImportance(alpha=0.0)


def test_wrapper_with_precomputed_fits():
    X, y = _make_data(n=100, seed=11)
    folds = make_fold_assignment(y, V=5, random_state=0)
    f1 = [X[folds.rows(1, v)] @ np.array([2.0, 0.5, 0.0]) for v in range(1, 6)]
    f2 = [X[folds.rows(2, v)] @ np.array([2.0, 0.0, 0.0]) for v in range(1, 6)]
    est = vim_r_squared(y, f1=f1, f2=f2, indx=1, folds=folds, run_regression=False)
    direct = estimate_cross_fitted(y, f1=f1, f2=f2, feature_set=1, folds=folds, run_regression=False)
    assert est.point_estimate == direct.point_estimate
    assert est.standard_error == direct.standard_error


def test_fit_many_drops_incomplete_rows_once():
    X, y = _make_data(n=120, seed=12)
    X = X.copy()
    X[7, 2] = np.nan
    cfi = CrossFittedImportance(
        V=3, learner=make_learner('linear'), na_rm=True, random_state=0
    )
    table = cfi.fit_many(X, y, feature_sets=[0, 1])
    assert len(table) == 2
    assert all(est.n_obs == 119 for est in table)
    first, second = (est.fold_assignment for est in table)
    assert len(first) == 119
    assert np.array_equal(first.inner, second.inner)
    assert np.array_equal(first.outer, second.outer)
    assert table[0].feature_set == (0,)


def test_estimator_class_uses_reduced_learner():
    def mean_only(y_train, X_train, X_test):
        return np.full(X_test.shape[0], y_train.mean())

    X, y = _make_data(n=120, seed=13)
    cfi = CrossFittedImportance(
        V=3, learner=make_learner('linear'), reduced_learner=mean_only, random_state=0
    )
    est = cfi.fit(X, y, feature_set=1)
    assert all(np.ptp(preds) == 0 for preds in est.reduced_predictions)
    assert all(np.ptp(preds) > 0 for preds in est.full_predictions)

    def broken(y_train, X_train, X_test):
        raise ValueError("cannot fit")

    cfi = CrossFittedImportance(
        V=3, learner=make_learner('linear'), reduced_learner=broken, random_state=0
    )
    with pytest.raises(RegressionFailureError, match="fold"):
        cfi.fit(X, y, feature_set=1)


def test_vim_accuracy():
    X, y = _make_binary(seed=14)
    learner = SklearnLearner(LogisticRegression(max_iter=1000), name='logistic')
    est = vim_accuracy(y, X=X, indx=0, V=2, learner=learner, random_state=0)
    assert est.measure_type is MeasureType.ACCURACY
    assert np.isfinite(est.point_estimate)
    assert 0.0 <= est.predictiveness_full <= 1.0
    assert 0.0 <= est.predictiveness_reduced <= 1.0
    assert est.point_estimate > 0
    assert est.standard_error > 0
    assert est.n_obs == 300


def test_vim_average_value_matches_aipw_reference():
    X, y, nuisance = _make_treatment(n=120, seed=15)
    folds = make_fold_assignment(y, V=3, random_state=0)
    # Full fits treat when X0 > 0, reduced fits always treat
    f1 = [(X[folds.rows(1, v), 0] > 0).astype(float) for v in range(1, 4)]
    f2 = [np.full(len(folds.rows(2, v)), 0.7) for v in range(1, 4)]

    est = vim_average_value(
        y, nuisance, f1=f1, f2=f2, indx=0, folds=folds, run_regression=False
    )

    full_sizes = folds.fold_sizes(half=1)
    reduced_sizes = folds.fold_sizes(half=2)
    full_values, reduced_values = [], []
    for v in range(1, 4):
        rows = folds.rows(1, v)
        full_values.append(_aipw_value(y[rows], f1[v - 1], nuisance.subset(rows)))
        rows = folds.rows(2, v)
        reduced_values.append(_aipw_value(y[rows], f2[v - 1], nuisance.subset(rows)))
    expected_full = np.sum(full_sizes * full_values) / full_sizes.sum()
    expected_reduced = np.sum(reduced_sizes * reduced_values) / reduced_sizes.sum()

    assert est.measure_type is MeasureType.AVERAGE_VALUE
    assert np.isclose(est.predictiveness_full, expected_full)
    assert np.isclose(est.predictiveness_reduced, expected_reduced)
    assert np.isclose(est.point_estimate, expected_full - expected_reduced)
    assert est.standard_error > 0
    assert est.n_obs == 120


def test_vim_average_value_cross_fitted():
    X, y, nuisance = _make_treatment(n=200, seed=16)
    est = vim_average_value(
        y, nuisance, X=X, indx=1, V=2, learner=make_learner('linear'), random_state=0
    )
    assert est.measure_type is MeasureType.AVERAGE_VALUE
    assert est.feature_set == (1,)
    assert np.isfinite(est.point_estimate)
    assert est.standard_error > 0
    with pytest.raises(InvalidScaleError):
        vim_average_value(
            y, nuisance, X=X, indx=1, V=2, learner=make_learner('linear'),
            random_state=0, scale='logit'
        )
