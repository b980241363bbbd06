"""
Exceptions raised by the variable importance estimators.

Every error is raised at the point of detection; estimators never return a
partially populated result.
"""


class VimError(Exception):
    """Base class for all variable importance errors."""


class InvalidInputError(VimError, ValueError):
    """Inputs have the wrong shape, contain NaN, or are otherwise invalid."""


class LengthMismatchError(InvalidInputError):
    """Outcome, predictions and weights cannot be aligned by position."""


class DegenerateModelError(VimError):
    """The denominator of a ratio measure is zero (e.g. a constant outcome)."""


class MissingWeightsError(VimError, ValueError):
    """Coarsening is present but no correction inputs were supplied."""


class InvalidScaleError(VimError, ValueError):
    """The requested scale is undefined at the estimate (e.g. logit of 0)."""


class RegressionFailureError(VimError, RuntimeError):
    """The learner failed while fitting one of the folds."""
