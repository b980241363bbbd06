"""End-to-end checks against the binary model with known importance."""
import numpy as np
from sklearn.linear_model import LinearRegression

from intrinsic_vi import estimate_one_fold
from intrinsic_vi.benchmarks import (
    aggregate_results,
    generate_binary_data,
    run_coverage_simulation,
    true_r_squared_importance,
)


def test_true_importance_closed_form():
    assert np.isclose(true_r_squared_importance(1), 0.2 ** 2 / 3 / 0.25)
    assert np.isclose(true_r_squared_importance(0), 0.12)


def test_single_run_in_unit_interval():
    X, y, _, _ = generate_binary_data(n=100, random_state=0)
    full = LinearRegression().fit(X, y).predict(X)
    reduced = LinearRegression().fit(X[:, :1], y).predict(X[:, :1])

    est = estimate_one_fold(y, full, reduced, feature_set=1, alpha=0.05)

    # Nested least squares fits on the same sample cannot lose R-squared
    assert 0.0 <= est.point_estimate <= 1.0
    lower, upper = est.confidence_interval
    assert lower <= est.point_estimate <= upper


def test_average_estimate_close_to_truth():
    result = run_coverage_simulation(n=100, n_repetitions=200, feature=1, V=2)
    assert abs(result['mean_estimate'] - true_r_squared_importance(1)) < 0.015
    assert len(result['estimates']) == 200


def test_coverage_near_nominal():
    result = run_coverage_simulation(n=500, n_repetitions=100, feature=1)
    assert result['coverage'] >= 0.85
    assert 0.5 < result['mean_se'] / result['empirical_se'] < 2.0
    summary = aggregate_results([result])
    assert set(summary[500]) == {'bias', 'coverage', 'se_ratio'}
