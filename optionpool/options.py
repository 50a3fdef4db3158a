"""
options.py - Options engine

Sells at-the-money European PUTs and CALLs backed by the collateral pools.

Lifecycle:
    create_for: price via the calculator, collect settlement fee + premium from
                the buyer, forward the fee, lock collateral in the pool -> ACTIVE
    exercise:   before or at expiration, pay the intrinsic value to the holder
                out of the locked collateral -> EXERCISED
    unlock:     after expiration, release the collateral back to the pool -> EXPIRED

EXERCISED and EXPIRED are terminal; each option transitions out of ACTIVE once.

Payoffs:
    PUT  (stable units): amount * (strike - price) * 10**sd // (10**bd * 1e8)
    CALL (base units):   amount * (price - strike) // price
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .access import Role, RoleTable
from .config import ProtocolSettings
from .core import (
    Option, OptionState, OptionType, Event, Snapshottable,
    MIN_PERIOD, MAX_PERIOD, MAX_UINT256,
    PeriodTooShort, PeriodTooLong, AmountTooSmall, NotFound, NotApproved,
    NotOwner, Expired, WrongState, NotYetExpired, InvalidParameter,
    BootstrapWindowClosed, AlreadyMigrated,
    require_uint, require_address, to_stable,
)
from .ledger import Ledger
from .oracle import PriceOracle
from .pool import CollateralPool
from .pricing import PriceCalculator, coerce_option_type


class OptionsEngine(Snapshottable):
    """
    Issues options, settles exercises and expires options.

    The engine holds no liquidity of its own between calls: the buyer's
    payment passes through it to the fee recipient and the pool in the same
    atomic operation.

    Example:
        engine = OptionsEngine(ledger, oracle, calculator, stable_pool, base_pool,
                               stable_fee_recipient="staking_usdc",
                               base_fee_recipient="staking_wbtc",
                               owner="deployer", created_at=now)
        engine.transfer_pools_ownership("deployer", now)
        option_id = engine.create("alice", 14 * ONE_DAY, 10**8, 0, OptionType.PUT, now)
    """

    _SNAPSHOT_FIELDS = (
        "options", "price_calculator", "_pools", "_known_pools",
        "_fee_recipients", "_option_approvals", "_operators", "pools_migrated",
    )
    _SNAPSHOT_CHILDREN = ("_roles",)

    def __init__(
        self,
        ledger: Ledger,
        oracle: PriceOracle,
        price_calculator: PriceCalculator,
        stable_pool: CollateralPool,
        base_pool: CollateralPool,
        stable_fee_recipient: str,
        base_fee_recipient: str,
        owner: str,
        address: str = "options_engine",
        created_at: int = 0,
        settings: Optional[ProtocolSettings] = None,
    ):
        """
        Args:
            ledger: Ledger all payments settle through
            oracle: Price source for strikes and exercise
            price_calculator: Quotes settlement fees and premiums
            stable_pool: Pool backing PUTs
            base_pool: Pool backing CALLs
            stable_fee_recipient: Receives PUT settlement fees
            base_fee_recipient: Receives CALL settlement fees
            owner: Initial owner (admin functions)
            address: Account the engine transacts under
            created_at: Start of the pool-migration bootstrap window
            settings: Protocol settings (bootstrap window length)
        """
        settings = settings or ProtocolSettings()
        self.ledger = ledger
        self.oracle = oracle
        self.price_calculator = price_calculator
        self.address = require_address(address, "address")
        self.created_at = require_uint(created_at, "created_at")
        self.bootstrap_window = settings.bootstrap_window
        self._roles = RoleTable(owner)

        self.options: List[Option] = []
        self._pools: Dict[OptionType, CollateralPool] = {}
        self._known_pools: Dict[str, CollateralPool] = {}
        self._fee_recipients: Dict[OptionType, str] = {
            OptionType.PUT: require_address(stable_fee_recipient, "stable_fee_recipient"),
            OptionType.CALL: require_address(base_fee_recipient, "base_fee_recipient"),
        }
        self._option_approvals: Dict[int, str] = {}
        self._operators: Dict[Tuple[str, str], bool] = {}
        self.pools_migrated = False
        self._install_pools(stable_pool, base_pool)

    def _install_pools(self, stable_pool: CollateralPool, base_pool: CollateralPool) -> None:
        if stable_pool is None or base_pool is None:
            raise InvalidParameter("Both pools are required")
        self._pools = {OptionType.PUT: stable_pool, OptionType.CALL: base_pool}
        for pool in (stable_pool, base_pool):
            self._known_pools = {**self._known_pools, pool.address: pool}
            self.ledger.approve(self.address, pool.address, pool.token, MAX_UINT256)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def option(self, option_id: int) -> Option:
        """
        Raises:
            NotFound: If no option has this id.
        """
        if not isinstance(option_id, int) or not 0 <= option_id < len(self.options):
            raise NotFound(f"Option {option_id} does not exist")
        return self.options[option_id]

    def pool(self, option_type: OptionType) -> CollateralPool:
        return self._pools[coerce_option_type(option_type)]

    def token(self, option_type: OptionType) -> str:
        return self.pool(option_type).token

    def settlement_fee_recipient(self, option_type: OptionType) -> str:
        return self._fee_recipients[coerce_option_type(option_type)]

    def is_owner(self, account: str) -> bool:
        return self._roles.has_role(Role.ADMIN, account)

    def get_approved(self, option_id: int) -> Optional[str]:
        self.option(option_id)
        return self._option_approvals.get(option_id)

    def is_approved_for_all(self, holder: str, operator: str) -> bool:
        return self._operators.get((holder, operator), False)

    def profit_of(self, option_id: int) -> int:
        """Payout an exercise would make at the current price, capped at the locked collateral."""
        option = self.option(option_id)
        return min(self._payoff(option, self.oracle.current_price()), option.locked_amount)

    def active_options(self) -> List[Option]:
        return [o for o in self.options if o.state == OptionState.ACTIVE]

    def _payoff(self, option: Option, price: int) -> int:
        if option.option_type == OptionType.PUT:
            if price >= option.strike:
                return 0
            return to_stable(
                option.amount, option.strike - price, option.base_decimals, option.stable_decimals
            )
        if price <= option.strike:
            return 0
        return option.amount * (price - option.strike) // price

    def _decimals(self) -> Tuple[int, int]:
        return self._pools[OptionType.CALL].decimals, self._pools[OptionType.PUT].decimals

    def _is_approved_or_holder(self, caller: str, option: Option) -> bool:
        return (
            caller == option.holder
            or self._option_approvals.get(option.id) == caller
            or self.is_approved_for_all(option.holder, caller)
        )

    def _emit(self, name: str, *args) -> None:
        self.ledger.emit(Event(self.address, name, args))

    # ========================================================================
    # OPTION LIFECYCLE
    # ========================================================================

    def create(
        self,
        caller: str,
        period: int,
        amount: int,
        strike: int,
        option_type: OptionType,
        now: int,
    ) -> int:
        """Buy an option for the caller. See create_for()."""
        return self.create_for(caller, caller, period, amount, strike, option_type, now)

    def create_for(
        self,
        caller: str,
        holder: str,
        period: int,
        amount: int,
        strike: int,
        option_type: OptionType,
        now: int,
    ) -> int:
        """
        Buy an option on behalf of `holder`.

        The caller pays settlement_fee + premium in the settlement token and
        must have approved the engine for that amount.

        Args:
            caller: Payer
            holder: Owner of the new option
            period: Lifetime in seconds, 1 day to 12 weeks
            amount: Underlying quantity in base-asset units
            strike: Strike price (8 decimals); 0 means the current price
            option_type: PUT or CALL
            now: Creation time

        Returns:
            The new option id

        Raises:
            PeriodTooShort, PeriodTooLong, InvalidOptionType, AmountTooSmall, ZeroAddress
            StrikeNotATM, EmptyPool: From the price calculator.
            InsufficientCollateral: If the pool cannot lock the collateral.
            InsufficientAllowance, InsufficientBalance: If the caller cannot pay.
        """
        require_address(holder, "holder")
        require_uint(period, "period")
        require_uint(amount, "amount")
        require_uint(strike, "strike")
        require_uint(now, "now")
        if period < MIN_PERIOD:
            raise PeriodTooShort("Period is too short")
        if period > MAX_PERIOD:
            raise PeriodTooLong("Period is too long")
        option_type = coerce_option_type(option_type)
        if amount == 0:
            raise AmountTooSmall("Amount is too small")
        if strike == 0:
            strike = self.oracle.current_price()

        pool = self._pools[option_type]
        settlement_fee, premium = self.price_calculator.fees(period, amount, strike, option_type)
        base_decimals, stable_decimals = self._decimals()
        if option_type == OptionType.CALL:
            collateral = amount
        else:
            collateral = to_stable(amount, strike, base_decimals, stable_decimals)
        if collateral == 0:
            raise AmountTooSmall("Amount is too small to collateralize")

        option_id = len(self.options)
        locked_id = pool.next_locked_id
        with self.ledger.atomic(self, pool, label="create"):
            self.options.append(Option(
                id=option_id,
                state=OptionState.ACTIVE,
                holder=holder,
                strike=strike,
                amount=amount,
                locked_amount=collateral,
                premium=premium,
                expiration=now + period,
                option_type=option_type,
                locked_liquidity_id=locked_id,
                pool=pool.address,
                base_decimals=base_decimals,
                stable_decimals=stable_decimals,
            ))
            self.ledger.transfer_from(
                pool.token, self.address, caller, self.address, settlement_fee + premium
            )
            self.ledger.transfer(
                pool.token, self.address, self._fee_recipients[option_type], settlement_fee
            )
            pool.lock(self.address, locked_id, premium, collateral)
            self._emit("Create", option_id, holder, settlement_fee, premium)
        return option_id

    def exercise(self, caller: str, option_id: int, now: int) -> int:
        """
        Exercise an ACTIVE option and pay its intrinsic value to the holder.

        An out-of-the-money exercise is allowed and pays nothing.

        Returns:
            Tokens paid to the holder

        Raises:
            NotFound: If the option does not exist.
            NotApproved: If caller is not the holder, the approved account or an operator.
            Expired: If now > expiration.
            WrongState: If the option is not ACTIVE.
        """
        require_uint(now, "now")
        option = self.option(option_id)
        if not self._is_approved_or_holder(caller, option):
            raise NotApproved("The caller can't exercise this option")
        if now > option.expiration:
            raise Expired("Option has expired")
        if option.state != OptionState.ACTIVE:
            raise WrongState("Wrong state")

        profit = min(self._payoff(option, self.oracle.current_price()), option.locked_amount)
        pool = self._known_pools[option.pool]
        with self.ledger.atomic(self, pool, label="exercise"):
            self.options[option_id] = replace(option, state=OptionState.EXERCISED)
            self._option_approvals.pop(option_id, None)
            pool.send(self.address, option.locked_liquidity_id, option.holder, profit)
            self._emit("Exercise", option_id, profit)
        return profit

    def unlock(self, option_id: int, now: int) -> None:
        """
        Expire an option after its expiration and release its collateral. Callable by anyone.

        Raises:
            NotFound: If the option does not exist.
            NotYetExpired: If now <= expiration.
            WrongState: If the option is not ACTIVE.
        """
        require_uint(now, "now")
        option = self.option(option_id)
        if now <= option.expiration:
            raise NotYetExpired("Option has not expired yet")
        if option.state != OptionState.ACTIVE:
            raise WrongState("Option is not active")

        pool = self._known_pools[option.pool]
        with self.ledger.atomic(self, pool, label="unlock"):
            self.options[option_id] = replace(option, state=OptionState.EXPIRED)
            self._option_approvals.pop(option_id, None)
            pool.unlock(self.address, option.locked_liquidity_id)
            self._emit("Expire", option_id)

    def unlock_all(self, option_ids: Iterable[int], now: int) -> None:
        """Unlock several options. If any unlock fails, none is applied."""
        option_ids = list(option_ids)
        pools = list(self._known_pools.values())
        with self.ledger.atomic(self, *pools, label="unlock_all"):
            for option_id in option_ids:
                self.unlock(option_id, now)

    # ========================================================================
    # OWNERSHIP OF OPTIONS
    # ========================================================================

    def approve(self, caller: str, spender: Optional[str], option_id: int) -> None:
        """Let `spender` exercise or transfer one option. None clears the approval."""
        option = self.option(option_id)
        if caller != option.holder and not self.is_approved_for_all(option.holder, caller):
            raise NotOwner("The caller is not the option holder")
        if spender is None:
            self._option_approvals.pop(option_id, None)
        else:
            self._option_approvals[option_id] = require_address(spender, "spender")

    def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> None:
        require_address(operator, "operator")
        if operator == caller:
            raise InvalidParameter("Cannot approve yourself as operator")
        self._operators[(caller, operator)] = bool(approved)

    def transfer_option(self, caller: str, to: str, option_id: int) -> None:
        """Move an ACTIVE option to a new holder. Clears any per-option approval."""
        require_address(to, "to")
        option = self.option(option_id)
        if not self._is_approved_or_holder(caller, option):
            raise NotApproved("The caller can't transfer this option")
        if option.state != OptionState.ACTIVE:
            raise WrongState("Only active options can be transferred")
        self.options[option_id] = replace(option, holder=to)
        self._option_approvals.pop(option_id, None)

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_price_calculator(self, caller: str, calculator: PriceCalculator) -> None:
        self._roles.require(Role.ADMIN, caller)
        if calculator is None:
            raise InvalidParameter("Price calculator is required")
        with self.ledger.atomic(self, calculator, label="set_price_calculator"):
            self.price_calculator = calculator
            calculator.bind_pools(self._pools[OptionType.PUT], self._pools[OptionType.CALL])

    def set_pools(self, caller: str, stable_pool: CollateralPool, base_pool: CollateralPool) -> None:
        """
        Point new options and the price calculator at different pools.
        Existing options keep settling against the pool they were locked in.
        """
        self._roles.require(Role.ADMIN, caller)
        with self.ledger.atomic(self, self.price_calculator, label="set_pools"):
            self._install_pools(stable_pool, base_pool)
            self.price_calculator.bind_pools(stable_pool, base_pool)

    def set_settlement_fee_recipients(self, caller: str, stable_recipient: str, base_recipient: str) -> None:
        self._roles.require(Role.ADMIN, caller)
        self._fee_recipients = {
            OptionType.PUT: require_address(stable_recipient, "stable_recipient"),
            OptionType.CALL: require_address(base_recipient, "base_recipient"),
        }

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._roles.grant(caller, Role.ADMIN, new_owner)
        self._roles.renounce(caller, Role.ADMIN)

    def transfer_pools_ownership(self, caller: str, now: int) -> None:
        """
        Hand both pools to the engine. Allowed once, within the bootstrap window.

        The caller must be ADMIN on both pools. Afterwards the engine holds
        ADMIN and OPTIONS_ENGINE on each pool and the caller holds neither.

        Raises:
            AlreadyMigrated: If pools were already handed over.
            BootstrapWindowClosed: If now >= created_at + bootstrap window.
            MissingRole: If caller is not the engine owner or not a pool ADMIN.
        """
        self._roles.require(Role.ADMIN, caller)
        require_uint(now, "now")
        if self.pools_migrated:
            raise AlreadyMigrated("Pools ownership has already been transferred")
        if now >= self.created_at + self.bootstrap_window:
            raise BootstrapWindowClosed("The bootstrap window is closed")

        pools = list({id(p): p for p in self._pools.values()}.values())
        with self.ledger.atomic(self, *pools, label="transfer_pools_ownership"):
            for pool in pools:
                pool.grant_role(caller, Role.ADMIN, self.address)
                pool.grant_role(self.address, Role.OPTIONS_ENGINE, self.address)
                pool.renounce_role(caller, Role.ADMIN)
            self.pools_migrated = True

    def __repr__(self):
        return f"OptionsEngine({self.address}, {len(self.options)} options)"
