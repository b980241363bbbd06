"""
Intrinsic Variable Importance

Nonparametric, influence-curve based estimation of intrinsic variable
importance: the loss in population predictiveness (R-squared, deviance,
accuracy, AUC or average value) when a group of covariates is withheld from
the regression of the outcome on all covariates.

This package provides:
- estimate_one_fold: importance from precomputed full and reduced fits
- estimate_cross_fitted / CrossFittedImportance: cross-fitted estimation with
  sample splitting and valid inference under the zero-importance null
- vim_* wrappers: one function per predictiveness measure
- merge_estimates: comparison tables across covariate groups
"""

from .cross_fitted import CrossFittedImportance, estimate_cross_fitted, fit_fold
from .estimate import ImportanceEstimate
from .exceptions import (
    DegenerateModelError,
    InvalidInputError,
    InvalidScaleError,
    LengthMismatchError,
    MissingWeightsError,
    RegressionFailureError,
    VimError,
)
from .folds import FoldAssignment, make_fold_assignment, make_folds
from .inference import Scale, confidence_interval, p_value, standard_error
from .ipc import IPCConfig, IPCType, ipc_correct
from .learners import Learner, SklearnLearner, make_learner
from .measures import (
    MeasureType,
    TreatmentNuisance,
    available_measures,
    get_measure,
)
from .one_fold import estimate_one_fold
from .results import ComparisonTable, format_importance_table, merge_estimates
from .wrappers import (
    vim_accuracy,
    vim_auc,
    vim_average_value,
    vim_deviance,
    vim_r_squared,
)

__version__ = "1.0.0"

__all__ = [
    "CrossFittedImportance",
    "estimate_cross_fitted",
    "estimate_one_fold",
    "fit_fold",
    "ImportanceEstimate",
    "FoldAssignment",
    "make_fold_assignment",
    "make_folds",
    "IPCConfig",
    "IPCType",
    "ipc_correct",
    "Learner",
    "SklearnLearner",
    "make_learner",
    "MeasureType",
    "TreatmentNuisance",
    "available_measures",
    "get_measure",
    "Scale",
    "confidence_interval",
    "p_value",
    "standard_error",
    "ComparisonTable",
    "merge_estimates",
    "format_importance_table",
    "vim_r_squared",
    "vim_deviance",
    "vim_accuracy",
    "vim_auc",
    "vim_average_value",
    "VimError",
    "InvalidInputError",
    "LengthMismatchError",
    "DegenerateModelError",
    "MissingWeightsError",
    "InvalidScaleError",
    "RegressionFailureError",
]
