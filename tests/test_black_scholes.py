"""
test_black_scholes.py - Unit tests for black_scholes.py

Tests:
- Normal CDF
- ATM premium ratio with time in seconds
- Calibration of integer tier rates against the ATM premium
"""

import pytest
import math
import numpy as np

from optionpool.black_scholes import normal_cdf, atm_premium_ratio, SECONDS_PER_YEAR
from optionpool import (
    calibrate_vol_rates, vol_rate_for, implied_annual_vol,
    ONE_WEEK, ONE_DAY, MAX_PERIOD, IV_SCALE,
)


class TestNormalDistribution:

    def test_normal_cdf_zero(self):
        assert normal_cdf(0) == pytest.approx(0.5, abs=1e-10)

    def test_normal_cdf_positive(self):
        # N(1) = 0.8413
        assert normal_cdf(1.0) == pytest.approx(0.8413, abs=1e-3)

    def test_normal_cdf_symmetry(self):
        assert normal_cdf(-1.3) == pytest.approx(1.0 - normal_cdf(1.3), abs=1e-12)


class TestAtmPremiumRatio:
    """Zero-rate ATM call price per unit of notional."""

    def test_one_year(self):
        # 2N(0.1) - 1 for sigma=0.2, t=1
        assert atm_premium_ratio(SECONDS_PER_YEAR, 0.2) == pytest.approx(0.079656, abs=1e-5)

    def test_vectorized(self):
        ratios = atm_premium_ratio(float(ONE_WEEK), np.array([0.5, 1.0, 1.5]))
        assert ratios.shape == (3,)
        assert np.all(np.diff(ratios) > 0)

    @pytest.mark.parametrize("t, v", [
        (0.0, 0.2),
        (-1.0, 0.2),
        (float("inf"), 0.2),
        (1.0, 0.0),
        (1.0, float("nan")),
    ])
    def test_invalid_inputs(self, t, v):
        with pytest.raises(ValueError):
            atm_premium_ratio(t, v)


class TestCalibration:
    """Integer tier rates from annualised volatility."""

    def test_matches_small_time_approximation(self):
        # ATM call ≈ 0.3989 * σ * √t for small t
        expected = 0.3989 * math.sqrt(ONE_WEEK / SECONDS_PER_YEAR) * IV_SCALE / math.sqrt(ONE_WEEK)
        assert vol_rate_for(1.0) == pytest.approx(expected, rel=1e-2)

    def test_rates_are_ints_and_increasing(self):
        rates = calibrate_vol_rates([0.6, 0.9, 1.4])
        assert all(isinstance(r, int) for r in rates)
        assert rates[0] < rates[1] < rates[2]

    def test_default_rates_are_plausible_vols(self):
        # The default low tier prices roughly 127% annualised volatility
        assert implied_annual_vol(9000) == pytest.approx(1.27, abs=0.02)

    def test_round_trip_through_integer_rate(self):
        for vol in (0.5, 0.8, 1.2):
            assert implied_annual_vol(vol_rate_for(vol)) == pytest.approx(vol, abs=1e-3)

    def test_rate_holds_across_periods(self):
        # one rate prices 1 day and 12 weeks within 1% of Black-Scholes
        rate = vol_rate_for(0.8)
        for period in (ONE_DAY, MAX_PERIOD):
            integer_ratio = rate * math.isqrt(period) / IV_SCALE
            bs_ratio = float(atm_premium_ratio(float(period), 0.8))
            assert integer_ratio == pytest.approx(bs_ratio, rel=1e-2)

    def test_invalid_period(self):
        with pytest.raises(ValueError):
            calibrate_vol_rates([0.8], period=0)
        with pytest.raises(ValueError):
            implied_annual_vol(9000, period=0)
