"""
black_scholes.py - Tier rate calibration against Black-Scholes

The calculator's premium for an at-the-money option is

    premium = notional * vol_rate * isqrt(period) // 1e8

while a zero-rate Black-Scholes call with S == K costs

    premium = notional * (2 * N(sigma * sqrt(t) / 2) - 1)

with t in years of 365 days. A tier rate matching an annualised volatility
sigma is therefore that ratio * 1e8 / sqrt(period). For short periods the ratio
grows almost linearly in sqrt(period), so one rate fits every period from
1 day to 12 weeks within a fraction of a percent.

Used by PricingSettings.from_annual_vols to configure the calculator.
"""

import math
import numpy as np
from typing import Sequence, Tuple, Union
from scipy.special import erf as scipy_erf

from .core import IV_SCALE, ONE_WEEK


Numeric = Union[float, np.ndarray]

SECONDS_PER_YEAR = 365.0 * 86400.0
SQRT_2 = math.sqrt(2.0)


def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


def atm_premium_ratio(t_in_seconds: float, v: Numeric) -> Numeric:
    """
    ATM zero-rate call price per unit of notional.

    Raises:
        ValueError: If the period or a volatility is not positive and finite.
    """
    v_arr = np.asarray(v, dtype=float)
    if not math.isfinite(t_in_seconds) or t_in_seconds <= 0:
        raise ValueError("t_in_seconds must be positive and finite")
    if not np.all(np.isfinite(v_arr)) or np.any(v_arr <= 0):
        raise ValueError("volatility must be positive and finite")
    half_width = 0.5 * v_arr * math.sqrt(t_in_seconds / SECONDS_PER_YEAR)
    return 2.0 * normal_cdf(half_width) - 1.0


def vol_rate_for(annual_vol: float, period: int = ONE_WEEK) -> int:
    """
    Integer tier rate whose premium matches an ATM Black-Scholes premium.

    Args:
        annual_vol: Annualised volatility (0.8 == 80%)
        period: Reference option period in seconds

    Example:
        vol_rate_for(1.0)  # ~7104 for a one-week reference period
    """
    return calibrate_vol_rates([annual_vol], period)[0]


def calibrate_vol_rates(annual_vols: Sequence[float], period: int = ONE_WEEK) -> Tuple[int, ...]:
    """
    Convert annualised volatilities to integer tier rates in one vectorized pass.

    Raises:
        ValueError: If period is not positive or a volatility is not positive.
    """
    if period <= 0:
        raise ValueError("period must be positive")
    ratios = atm_premium_ratio(float(period), annual_vols)
    rates = np.rint(ratios * IV_SCALE / math.sqrt(period)).astype(np.int64)
    return tuple(int(r) for r in np.atleast_1d(rates))


def implied_annual_vol(vol_rate: int, period: int = ONE_WEEK) -> float:
    """
    Annualised volatility priced by an integer tier rate, by bisection.

    Raises:
        ValueError: If vol_rate or period is not positive.
    """
    if vol_rate <= 0 or period <= 0:
        raise ValueError("vol_rate and period must be positive")
    target = vol_rate * math.sqrt(period) / IV_SCALE
    low, high = 0.0001, 10.0
    for _ in range(50):
        mid = (low + high) / 2.0
        if atm_premium_ratio(float(period), mid) > target:
            high = mid
        else:
            low = mid
    return (low + high) / 2.0
