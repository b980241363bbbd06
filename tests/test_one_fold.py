"""Tests for the one-fold estimator and the ImportanceEstimate result."""
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from intrinsic_vi import ImportanceEstimate, estimate_one_fold
from intrinsic_vi.estimate import canonical_feature_set
from intrinsic_vi.exceptions import (
    InvalidInputError,
    InvalidScaleError,
    LengthMismatchError,
)
from intrinsic_vi.measures import (
    MeasureType,
    RSquared,
    TreatmentNuisance,
    available_measures,
    get_measure,
)


def _make_data(n: int = 100, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 2))
    y = X[:, 0] + 0.5 * X[:, 1] + rng.normal(scale=0.5, size=n)
    full = X[:, 0] + 0.5 * X[:, 1]
    reduced = X[:, 0]
    return X, y, full, reduced


def test_point_estimate_is_difference_of_r_squared():
    _, y, full, reduced = _make_data()
    est = estimate_one_fold(y, full, reduced, feature_set=1)
    expected = RSquared()(y, full, reduced).estimate
    assert np.isclose(est.point_estimate, expected)
    assert np.isclose(est.point_estimate, est.predictiveness_full - est.predictiveness_reduced)
    assert est.measure_type is MeasureType.R_SQUARED
    assert est.feature_set == (1,)
    assert est.n_obs == 100
    assert est.standard_error > 0
    assert est.confidence_interval[0] <= est.point_estimate <= est.confidence_interval[1]
    assert est.p_value < 0.05
    assert est.hypothesis_test


def test_idempotent():
    _, y, full, reduced = _make_data(seed=1)
    a = estimate_one_fold(y, full, reduced, feature_set=1)
    b = estimate_one_fold(y, full, reduced, feature_set=1)
    assert a.point_estimate == b.point_estimate
    assert a.standard_error == b.standard_error
    assert a.confidence_interval == b.confidence_interval
    assert np.array_equal(a.influence_curve, b.influence_curve)


def test_identical_fits_give_zero_importance():
    _, y, full, _ = _make_data(seed=2)
    for measure, outcome, fit in (
        ('r_squared', y, full),
        ('deviance', (y > 0).astype(float), 1.0 / (1.0 + np.exp(-full))),
    ):
        est = estimate_one_fold(outcome, fit, fit, feature_set=0, measure=measure)
        assert abs(est.point_estimate) < 1e-12
        assert abs(est.naive_estimate) < 1e-12
        assert est.standard_error == 0.0
        assert est.confidence_interval[0] <= est.point_estimate <= est.confidence_interval[1]
        assert est.p_value == 1.0


def test_logit_scale_at_zero_estimate():
    _, y, full, _ = _make_data(seed=3)
    with pytest.raises(InvalidScaleError):
        estimate_one_fold(y, full, full, feature_set=0, scale='logit')
    est = estimate_one_fold(y, full, full, feature_set=0, scale='identity')
    assert est.point_estimate == 0.0


def test_logit_scale_interval():
    _, y, full, reduced = _make_data(seed=4)
    est = estimate_one_fold(y, full, reduced, feature_set=1, scale='logit')
    lower, upper = est.confidence_interval
    assert 0 < lower < est.point_estimate < upper < 1


def test_missing_values():
    _, y, full, reduced = _make_data(seed=5)
    full = full.copy()
    full[3] = np.nan
    with pytest.raises(InvalidInputError, match="na_rm"):
        estimate_one_fold(y, full, reduced, feature_set=1)
    est = estimate_one_fold(y, full, reduced, feature_set=1, na_rm=True)
    assert est.n_obs == 99


def test_length_mismatch():
    _, y, full, reduced = _make_data(seed=6)
    with pytest.raises(LengthMismatchError):
        estimate_one_fold(y, full[:-1], reduced, feature_set=1)
    # LengthMismatchError is an InvalidInputError
    with pytest.raises(InvalidInputError):
        estimate_one_fold(y[:-1], full, reduced, feature_set=1)


def test_feature_set_validation():
    assert canonical_feature_set([2, 0]) == (0, 2)
    assert canonical_feature_set(np.int64(3)) == (3,)
    with pytest.raises(InvalidInputError):
        canonical_feature_set([])
    with pytest.raises(InvalidInputError):
        canonical_feature_set([1, 1])
    with pytest.raises(InvalidInputError):
        canonical_feature_set([-1])
    with pytest.raises(InvalidInputError):
        canonical_feature_set([0, 1], n_features=2)
    with pytest.raises(InvalidInputError):
        canonical_feature_set([5], n_features=2)


def test_estimate_is_immutable():
    _, y, full, reduced = _make_data(seed=7)
    est = estimate_one_fold(y, full, reduced, feature_set=[1])
    assert isinstance(est, ImportanceEstimate)
    with pytest.raises(FrozenInstanceError):
        est.point_estimate = 1.0
    with pytest.raises(ValueError):
        est.influence_curve[0] = 0.0
    with pytest.raises(ValueError):
        est.full_predictions[0] = 0.0


def test_summary_serialization():
    _, y, full, reduced = _make_data(seed=8)
    est = estimate_one_fold(y, full, reduced, feature_set=[1])
    summary = est.to_dict()
    assert summary['s'] == '1'
    assert summary['measure'] == 'r_squared'
    assert summary['est'] == est.point_estimate
    assert summary['cil'] == est.confidence_interval[0]
    series = est.to_series()
    assert series.name == '1'
    assert 'ImportanceEstimate(s=[1]' in repr(est)


def test_logit_scale_rejected_for_unbounded_measure():
    rng = np.random.default_rng(5)
    n = 80
    nuisance = TreatmentNuisance(
        treatment=(rng.random(n) < 0.5).astype(float),
        propensity=np.full(n, 0.5),
        mu1=rng.normal(size=n),
        mu0=rng.normal(size=n)
    )
    y = rng.normal(size=n)
    with pytest.raises(InvalidScaleError, match="unbounded"):
        estimate_one_fold(
            y, np.ones(n), np.zeros(n), feature_set=0,
            measure='average_value', nuisance=nuisance, scale='logit'
        )
    est = estimate_one_fold(
        y, np.ones(n), np.zeros(n), feature_set=0,
        measure='average_value', nuisance=nuisance, scale='identity'
    )
    assert np.isfinite(est.point_estimate)
    assert est.measure_type is MeasureType.AVERAGE_VALUE


def test_measures_report_bounds_and_null_value():
    nuisance = TreatmentNuisance(
        treatment=np.array([0.0, 1.0]),
        propensity=np.array([0.5, 0.5]),
        mu1=np.zeros(2),
        mu0=np.zeros(2)
    )
    for name in available_measures():
        measure = get_measure(name, nuisance)
        assert measure.null_value == 0.0
        assert measure.bounded == (name != 'average_value')
