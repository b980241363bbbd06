"""
Simulation benchmarks for the variable importance estimators.
"""

from .synthetic_suite import (
    generate_binary_data,
    true_r_squared_importance,
    run_coverage_simulation,
    aggregate_results,
    run_suite
)

__all__ = [
    'generate_binary_data',
    'true_r_squared_importance',
    'run_coverage_simulation',
    'aggregate_results',
    'run_suite'
]
