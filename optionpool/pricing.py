"""
pricing.py - Utilization-tiered option premium calculator

Quotes (settlement_fee, premium) for at-the-money options. The premium scales
with the notional, the square root of the period and one of three implied
volatility rates chosen by the settlement pool's current utilization:

    utilization < low threshold   -> implied_vol_rates[0]
    utilization < high threshold  -> implied_vol_rates[1]
    otherwise                     -> implied_vol_rates[2]

How a tier rate turns into token amounts is a FeeModel:

    NotionalFeeModel   PUTs are quoted on the notional converted to stable
                       units, CALLs on the base amount; premiums round down.
    ReferenceFeeModel  Reproduces the reference deployment's quotes. CALL
                       premiums round up; the PUT fee is charged on
                       amount * price / 1e8 with no decimal conversion and the
                       PUT premium comes out in whole stable tokens.

All arithmetic is integer; results are in the settlement token's smallest unit.
"""

from __future__ import annotations
from math import isqrt
from typing import Dict, Optional, Protocol, Sequence, Tuple, TYPE_CHECKING

from .access import Role, RoleTable
from .config import PricingSettings, validate_thresholds, validate_vol_rates
from .core import (
    OptionType, Snapshottable,
    IV_SCALE, PRICE_SCALE, UTILIZATION_SCALE,
    EmptyPool, InvalidOptionType, StrikeNotATM,
    require_uint,
)
from .oracle import PriceOracle

if TYPE_CHECKING:
    from .pool import CollateralPool


def coerce_option_type(option_type) -> OptionType:
    """
    Raises:
        InvalidOptionType: If the value is not PUT (1) or CALL (2).
    """
    if isinstance(option_type, bool):
        raise InvalidOptionType("Wrong option type")
    try:
        return OptionType(option_type)
    except ValueError:
        raise InvalidOptionType("Wrong option type") from None


# ============================================================================
# FEE MODELS
# ============================================================================

class FeeModel(Protocol):
    """Turns a tier rate into (settlement_fee, premium) for one quote."""

    def quote(
        self,
        option_type: OptionType,
        amount: int,
        price: int,
        period_sqrt: int,
        vol_rate: int,
        fee_percent: int,
        base_decimals: int,
        stable_decimals: int,
    ) -> Tuple[int, int]:
        ...


class NotionalFeeModel:
    """Fee and premium on the option's notional in settlement-token units."""

    def quote(self, option_type, amount, price, period_sqrt, vol_rate, fee_percent,
              base_decimals, stable_decimals):
        if option_type == OptionType.CALL:
            notional = amount
            premium = amount * vol_rate * period_sqrt // IV_SCALE
        else:
            scale = 10 ** stable_decimals
            base = 10 ** base_decimals * PRICE_SCALE
            notional = amount * price * scale // base
            premium = amount * price * scale * vol_rate * period_sqrt // (base * IV_SCALE)
        return notional * fee_percent // 100, premium


class ReferenceFeeModel:
    """
    Quotes matching the reference deployment.

    For 100 base units over 7 days at 50000e8 with the default tiers:
        PUT  -> (50000, 0)
        CALL -> (1, 7)
    """

    def quote(self, option_type, amount, price, period_sqrt, vol_rate, fee_percent,
              base_decimals, stable_decimals):
        if option_type == OptionType.CALL:
            premium = -(-amount * vol_rate * period_sqrt // IV_SCALE)
            return amount * fee_percent // 100, premium
        value = amount * price // PRICE_SCALE
        premium = amount * price * vol_rate * period_sqrt // (
            PRICE_SCALE * IV_SCALE * 10 ** base_decimals
        )
        return value * fee_percent // 100, premium


FEE_MODELS: Dict[str, FeeModel] = {
    "notional": NotionalFeeModel(),
    "reference": ReferenceFeeModel(),
}


class PriceCalculator(Snapshottable):
    """
    Premium and settlement fee quotes for the options engine.

    Attributes:
        oracle: Source of the current price.
        base_pool: Pool backing CALLs (settles in the base asset).
        stable_pool: Pool backing PUTs (settles in the stable asset).
        fee_model: Turns the selected tier rate into token amounts.
    """

    _SNAPSHOT_FIELDS = ("implied_vol_rates", "utilization_thresholds", "base_pool", "stable_pool")
    _SNAPSHOT_CHILDREN = ("_roles",)

    def __init__(
        self,
        oracle: PriceOracle,
        base_pool: CollateralPool,
        stable_pool: CollateralPool,
        owner: str,
        settings: Optional[PricingSettings] = None,
        fee_model: Optional[FeeModel] = None,
    ):
        settings = settings or PricingSettings()
        self.oracle = oracle
        self.base_pool = base_pool
        self.stable_pool = stable_pool
        self.implied_vol_rates: Tuple[int, int, int] = settings.implied_vol_rates
        self.utilization_thresholds: Tuple[int, int] = settings.utilization_thresholds
        self.settlement_fee_percent = settings.settlement_fee_percent
        self.fee_model: FeeModel = fee_model or FEE_MODELS[settings.fee_model]
        self._roles = RoleTable(owner)

    def pool_for(self, option_type: OptionType) -> CollateralPool:
        return self.stable_pool if coerce_option_type(option_type) == OptionType.PUT else self.base_pool

    def bind_pools(self, stable_pool: CollateralPool, base_pool: CollateralPool) -> None:
        """Price against a new pair of pools. Called by the engine when its pools change."""
        self.stable_pool = stable_pool
        self.base_pool = base_pool

    # ========================================================================
    # QUOTES
    # ========================================================================

    def utilization(self, option_type: OptionType) -> int:
        """
        Locked share of the settlement pool, scaled by 1e8.

        Raises:
            EmptyPool: If the pool holds no liquidity.
        """
        pool = self.pool_for(option_type)
        if pool.total_balance == 0:
            raise EmptyPool("Pool has no liquidity to price against")
        return pool.locked_amount * UTILIZATION_SCALE // pool.total_balance

    def tier(self, option_type: OptionType) -> int:
        low, high = self.utilization_thresholds
        utilization = self.utilization(option_type)
        if utilization < low:
            return 0
        if utilization < high:
            return 1
        return 2

    def fees(self, period: int, amount: int, strike: int, option_type: OptionType) -> Tuple[int, int]:
        """
        Quote an at-the-money option.

        Args:
            period: Option lifetime in seconds
            amount: Underlying quantity in base-asset units
            strike: Strike price (8 decimals); must equal the oracle price
            option_type: PUT or CALL

        Returns:
            (settlement_fee, premium) in settlement-token units

        Raises:
            StrikeNotATM: If strike differs from the current price.
            EmptyPool: If the settlement pool holds no liquidity.
            InvalidOptionType: If option_type is not PUT or CALL.

        Example:
            # CALL on 1 WBTC for 7 days, low-utilization tier 9000
            fee, premium = calc.fees(604800, 10**8, price, OptionType.CALL)
            # fee == 1000000, premium == 10**8 * 9000 * 777 // 10**8 == 6993000
        """
        option_type = coerce_option_type(option_type)
        require_uint(period, "period")
        require_uint(amount, "amount")
        require_uint(strike, "strike")
        price = self.oracle.current_price()
        if strike != price:
            raise StrikeNotATM("Only ATM options are currently available")
        vol_rate = self.implied_vol_rates[self.tier(option_type)]
        return self.fee_model.quote(
            option_type, amount, price, isqrt(period), vol_rate, self.settlement_fee_percent,
            self.base_pool.decimals, self.stable_pool.decimals,
        )

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_implied_vol_rate(self, caller: str, rates: Sequence[int]) -> None:
        """
        Replace the three tier rates.

        Raises:
            MissingRole: If caller is not the owner.
            InvalidParameter: Unless rates holds exactly three positive ints.
        """
        self._roles.require(Role.ADMIN, caller)
        self.implied_vol_rates = validate_vol_rates(rates)

    def set_utilization_thresholds(self, caller: str, low: int, high: int) -> None:
        self._roles.require(Role.ADMIN, caller)
        self.utilization_thresholds = validate_thresholds(low, high)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._roles.grant(caller, Role.ADMIN, new_owner)
        self._roles.renounce(caller, Role.ADMIN)

    def is_owner(self, account: str) -> bool:
        return self._roles.has_role(Role.ADMIN, account)

    def __repr__(self):
        return f"PriceCalculator(rates={self.implied_vol_rates}, thresholds={self.utilization_thresholds})"
