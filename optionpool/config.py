"""
config.py - Protocol settings

Frozen settings objects with defaults taken from the constants in core.
Each validates itself on construction, so an invalid configuration is rejected
before any component is built from it.

Usage:
    settings = load_settings("protocol.json")
    pool = CollateralPool(ledger, "USDC", "usdc_pool", admin="deployer",
                          settings=settings.pool)
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence, Tuple, Union

from .black_scholes import calibrate_vol_rates
from .core import (
    DEFAULT_LOCKUP_PERIOD, MAX_LOCKUP_PERIOD, DEFAULT_HEDGE_FEE_RATE,
    DEFAULT_IMPLIED_VOL_RATES, DEFAULT_UTILIZATION_THRESHOLDS,
    DEFAULT_SETTLEMENT_FEE_PERCENT, BOOTSTRAP_WINDOW, UTILIZATION_SCALE,
    ONE_WEEK, InvalidParameter, LockupTooLong, require_uint,
)

FEE_MODEL_NAMES = ("notional", "reference")


def validate_vol_rates(rates: Any) -> Tuple[int, int, int]:
    """
    Validate a set of implied volatility tier rates.

    Raises:
        InvalidParameter: Unless rates holds exactly three positive ints.
    """
    rates = tuple(rates)
    if len(rates) != 3:
        raise InvalidParameter(f"Expected 3 implied volatility rates, got {len(rates)}")
    for rate in rates:
        if require_uint(rate, "implied volatility rate") == 0:
            raise InvalidParameter("Implied volatility rates must be positive")
    return rates


def validate_thresholds(low: Any, high: Any) -> Tuple[int, int]:
    """
    Raises:
        InvalidParameter: Unless 0 < low < high <= UTILIZATION_SCALE.
    """
    require_uint(low, "low threshold")
    require_uint(high, "high threshold")
    if not 0 < low < high <= UTILIZATION_SCALE:
        raise InvalidParameter(
            f"Utilization thresholds must satisfy 0 < low < high <= {UTILIZATION_SCALE}"
        )
    return low, high


@dataclass(frozen=True, slots=True)
class PoolSettings:
    """Liquidity pool parameters."""
    lockup_period: int = DEFAULT_LOCKUP_PERIOD
    hedge_fee_rate: int = DEFAULT_HEDGE_FEE_RATE

    def __post_init__(self):
        require_uint(self.lockup_period, "lockup_period")
        if self.lockup_period > MAX_LOCKUP_PERIOD:
            raise LockupTooLong("The lockup period is too long")
        require_uint(self.hedge_fee_rate, "hedge_fee_rate")
        if self.hedge_fee_rate > 100:
            raise InvalidParameter("hedge_fee_rate is a percentage in [0, 100]")


@dataclass(frozen=True, slots=True)
class PricingSettings:
    """
    Price calculator parameters.

    Attributes:
        implied_vol_rates: Tier rates for low, mid and high utilization.
        utilization_thresholds: Tier boundaries, scaled by 1e8.
        settlement_fee_percent: Settlement fee as a percentage of notional.
        fee_model: Name of the fee model, "notional" or "reference".
    """
    implied_vol_rates: Tuple[int, int, int] = DEFAULT_IMPLIED_VOL_RATES
    utilization_thresholds: Tuple[int, int] = DEFAULT_UTILIZATION_THRESHOLDS
    settlement_fee_percent: int = DEFAULT_SETTLEMENT_FEE_PERCENT
    fee_model: str = "notional"

    def __post_init__(self):
        object.__setattr__(self, "implied_vol_rates", validate_vol_rates(self.implied_vol_rates))
        object.__setattr__(
            self, "utilization_thresholds", validate_thresholds(*self.utilization_thresholds)
        )
        require_uint(self.settlement_fee_percent, "settlement_fee_percent")
        if self.settlement_fee_percent > 100:
            raise InvalidParameter("settlement_fee_percent is a percentage in [0, 100]")
        if self.fee_model not in FEE_MODEL_NAMES:
            raise InvalidParameter(f"fee_model must be one of {FEE_MODEL_NAMES}")

    @classmethod
    def from_annual_vols(
        cls, annual_vols: Sequence[float], period: int = ONE_WEEK, **kwargs: Any
    ) -> PricingSettings:
        """
        Settings whose tier rates price ATM options like Black-Scholes at the
        given low, mid and high annualised volatilities.

        Example:
            PricingSettings.from_annual_vols([0.8, 1.0, 1.5])

        Raises:
            InvalidParameter: If a volatility or the period is not positive.
        """
        try:
            rates = calibrate_vol_rates(annual_vols, period)
        except ValueError as exc:
            raise InvalidParameter(str(exc)) from exc
        return cls(implied_vol_rates=rates, **kwargs)


@dataclass(frozen=True, slots=True)
class ProtocolSettings:
    pool: PoolSettings = field(default_factory=PoolSettings)
    pricing: PricingSettings = field(default_factory=PricingSettings)
    bootstrap_window: int = BOOTSTRAP_WINDOW

    def __post_init__(self):
        require_uint(self.bootstrap_window, "bootstrap_window")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProtocolSettings:
        """
        Build settings from a nested mapping. Missing keys keep their defaults.

        Example:
            ProtocolSettings.from_mapping({
                "pool": {"lockup_period": 86400},
                "pricing": {"annual_vols": [0.8, 1.0, 1.5], "fee_model": "reference"},
            })

        Raises:
            InvalidParameter: On unknown keys or invalid values.
        """
        known = {"pool", "pricing", "bootstrap_window"}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameter(f"Unknown settings: {sorted(unknown)}")
        try:
            pool = PoolSettings(**data.get("pool", {}))
            pricing_data = dict(data.get("pricing", {}))
            for key in ("implied_vol_rates", "utilization_thresholds"):
                if key in pricing_data:
                    pricing_data[key] = tuple(pricing_data[key])
            if "annual_vols" in pricing_data:
                if "implied_vol_rates" in pricing_data:
                    raise InvalidParameter("Give either annual_vols or implied_vol_rates, not both")
                annual_vols = pricing_data.pop("annual_vols")
                period = pricing_data.pop("calibration_period", ONE_WEEK)
                pricing = PricingSettings.from_annual_vols(annual_vols, period, **pricing_data)
            else:
                pricing = PricingSettings(**pricing_data)
        except TypeError as exc:
            raise InvalidParameter(f"Invalid settings: {exc}") from exc
        return cls(
            pool=pool,
            pricing=pricing,
            bootstrap_window=data.get("bootstrap_window", BOOTSTRAP_WINDOW),
        )


def load_settings(path: Union[str, Path]) -> ProtocolSettings:
    """Load ProtocolSettings from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise InvalidParameter(f"Settings file {path} must contain a JSON object")
    return ProtocolSettings.from_mapping(data)
