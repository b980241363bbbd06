"""
Standard errors, confidence intervals and hypothesis tests.

Intervals and tests use the normal approximation implied by the influence
curve. Intervals may be built on the identity scale or, for measures bounded
in [0, 1], on the logit scale with a delta-method standard error.
"""

from enum import Enum
from typing import Tuple, Union

import numpy as np
from scipy.special import expit, logit
from scipy.stats import norm

from .exceptions import InvalidInputError, InvalidScaleError


class Scale(str, Enum):
    """Scale on which a confidence interval is constructed."""

    IDENTITY = "identity"
    LOGIT = "logit"


def resolve_scale(scale: Union[str, Scale]) -> Scale:
    try:
        return Scale(scale)
    except ValueError:
        raise ValueError(
            f"scale must be 'identity' or 'logit', got {scale!r}"
        ) from None


def check_alpha(alpha: float) -> float:
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    return float(alpha)


def standard_error(influence_curve: np.ndarray) -> float:
    """
    Standard error of an asymptotically linear estimator.

    Parameters
    ----------
    influence_curve : np.ndarray of shape (n_samples,)
        Per-observation influence curve values

    Returns
    -------
    se : float
        ``sqrt(var(influence_curve) / n)``
    """
    ic = np.asarray(influence_curve, dtype=float).reshape(-1)
    if ic.shape[0] == 0:
        raise InvalidInputError("influence curve is empty")
    if not np.all(np.isfinite(ic)):
        raise InvalidInputError("influence curve contains non-finite values")
    return float(np.sqrt(np.var(ic) / ic.shape[0]))


def _logit_se(estimate: float, se: float) -> float:
    # Delta method: d/dx logit(x) = 1 / (x (1 - x))
    return se / (estimate * (1.0 - estimate))


def _check_logit_domain(estimate: float) -> None:
    if not 0 < estimate < 1:
        raise InvalidScaleError(
            f"logit scale requires an estimate in (0, 1), got {estimate}; "
            "use scale='identity'"
        )


def confidence_interval(
    estimate: float,
    se: float,
    alpha: float = 0.05,
    scale: Union[str, Scale] = Scale.IDENTITY
) -> Tuple[float, float]:
    """
    Two-sided (1 - alpha) confidence interval.

    Parameters
    ----------
    estimate : float
        Point estimate
    se : float
        Standard error (non-negative)
    alpha : float, default=0.05
        Level; the interval has nominal coverage 1 - alpha
    scale : {'identity', 'logit'}, default='identity'
        'identity' returns ``estimate ± z * se`` without truncation;
        'logit' builds the symmetric interval for ``logit(estimate)`` and
        maps it back, so the interval stays inside (0, 1)

    Returns
    -------
    (lower, upper) : tuple of float

    Raises
    ------
    InvalidScaleError
        If ``scale='logit'`` and the estimate is outside (0, 1)
    """
    alpha = check_alpha(alpha)
    scale = resolve_scale(scale)
    if se < 0 or not np.isfinite(se):
        raise InvalidInputError(f"se must be finite and non-negative, got {se}")
    z = norm.ppf(1 - alpha / 2)

    if scale is Scale.IDENTITY:
        return float(estimate - z * se), float(estimate + z * se)

    _check_logit_domain(estimate)
    center = logit(estimate)
    half_width = z * _logit_se(estimate, se)
    return float(expit(center - half_width)), float(expit(center + half_width))


def p_value(
    estimate: float,
    se: float,
    delta: float = 0.0,
    scale: Union[str, Scale] = Scale.IDENTITY
) -> float:
    """
    One-sided p-value for H0: importance <= delta against H1: importance > delta.

    Parameters
    ----------
    estimate : float
        Point estimate of importance
    se : float
        Standard error
    delta : float, default=0.0
        Null threshold
    scale : {'identity', 'logit'}, default='identity'
        On the logit scale with ``0 < delta < 1`` the test statistic is
        ``(logit(estimate) - logit(delta)) / se_logit``; otherwise the
        identity-scale statistic ``(estimate - delta) / se`` is used

    Returns
    -------
    p : float
        ``1 - Phi(z)``
    """
    scale = resolve_scale(scale)
    if se < 0 or not np.isfinite(se):
        raise InvalidInputError(f"se must be finite and non-negative, got {se}")

    if scale is Scale.LOGIT and 0 < delta < 1:
        _check_logit_domain(estimate)
        diff = logit(estimate) - logit(delta)
        se_scaled = _logit_se(estimate, se)
    else:
        diff = estimate - delta
        se_scaled = se

    if se_scaled == 0:
        return 0.0 if diff > 0 else 1.0
    return float(norm.sf(diff / se_scaled))
