"""
pool.py - Collateral liquidity pool

Liquidity providers deposit a single token into tranches and receive shares.
The options engine locks pool collateral against each option it sells, and
later either releases it (expiry) or pays the option holder out of it
(exercise). Premiums accrue to the pool balance, so share value rises with
premium income and falls with payouts.

Premium split at lock time:
    hedged_portion  = premium * hedged_share // total_share_supply
    hedge_fee       = hedged_portion * hedge_fee_rate // 100   (sent to hedge_pool)
    hedge_premium   = hedged_portion - hedge_fee
    unhedge_premium = premium - hedged_portion

Invariants:
    - locked_amount * 10 <= total_balance * 8 after every lock
    - total_share_supply == hedged_share + unhedged_share
    - absent direct donations, the pool's token balance equals total_balance
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .access import Role, RoleTable
from .config import PoolSettings
from .core import (
    Tranche, TrancheState, LockedLiquidity, Event, Snapshottable,
    INITIAL_RATE, MAX_LOCKUP_PERIOD,
    UTILIZATION_CAP_NUMERATOR, UTILIZATION_CAP_DENOMINATOR,
    AmountTooSmall, MintLimitExceeded, EmptyPool, WrongLockId,
    InsufficientCollateral, InsufficientLiquidity, Locked,
    UnknownLock, AlreadyUnlocked, NotFound, AlreadyClosed, NotOwner,
    LockupTooLong, InvalidParameter,
    require_uint, require_address,
)
from .ledger import Ledger


class CollateralPool(Snapshottable):
    """
    Single-token liquidity pool with hedged and unhedged tranches.

    Every mutating method takes the acting account as `caller`. Roles:
        ADMIN: configuration and role management
        OPTIONS_ENGINE: lock, unlock and send

    Example:
        pool = CollateralPool(ledger, "USDC", "usdc_pool", admin="deployer")
        ledger.approve("alice", "usdc_pool", "USDC", MAX_UINT256)
        tranche_id = pool.provide("alice", "alice", 100_000, True, 0, now)
    """

    INITIAL_RATE = INITIAL_RATE

    _SNAPSHOT_FIELDS = (
        "tranches", "_locked_liquidity", "locked_amount",
        "hedged_share", "unhedged_share", "total_balance",
        "lockup_period", "hedge_fee_rate", "hedge_pool",
        "_tranche_approvals", "_operators",
    )
    _SNAPSHOT_CHILDREN = ("_roles",)

    def __init__(
        self,
        ledger: Ledger,
        token: str,
        address: str,
        admin: str,
        hedge_pool: Optional[str] = None,
        settings: Optional[PoolSettings] = None,
    ):
        """
        Create a pool.

        Args:
            ledger: Ledger holding the pool's token balance
            token: Symbol of the registered token the pool holds
            address: Account the pool holds its tokens under
            admin: Initial ADMIN member
            hedge_pool: Recipient of hedge fees (default: admin)
            settings: Lockup period and hedge fee rate
        """
        settings = settings or PoolSettings()
        ledger.get_token(token)
        self.ledger = ledger
        self.token = token
        self.address = require_address(address, "address")
        self.hedge_pool = require_address(hedge_pool or admin, "hedge_pool")
        self.lockup_period = settings.lockup_period
        self.hedge_fee_rate = settings.hedge_fee_rate
        self._roles = RoleTable(admin)

        self.tranches: List[Tranche] = []
        self._locked_liquidity: List[LockedLiquidity] = []
        self.locked_amount = 0
        self.hedged_share = 0
        self.unhedged_share = 0
        self.total_balance = 0
        self._tranche_approvals: Dict[int, str] = {}
        self._operators: Dict[Tuple[str, str], bool] = {}

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def decimals(self) -> int:
        return self.ledger.get_token(self.token).decimals

    @property
    def total_share_supply(self) -> int:
        return self.hedged_share + self.unhedged_share

    @property
    def hedged_balance(self) -> int:
        """Part of total_balance attributable to hedged shares."""
        supply = self.total_share_supply
        if supply == 0:
            return 0
        return self.total_balance * self.hedged_share // supply

    @property
    def unhedged_balance(self) -> int:
        return self.total_balance - self.hedged_balance

    @property
    def available_balance(self) -> int:
        """Liquidity not locked against live options."""
        return self.total_balance - self.locked_amount

    @property
    def next_locked_id(self) -> int:
        return len(self._locked_liquidity)

    def tranche(self, tranche_id: int) -> Tranche:
        """
        Raises:
            NotFound: If no tranche has this id.
        """
        if not isinstance(tranche_id, int) or not 0 <= tranche_id < len(self.tranches):
            raise NotFound(f"Tranche {tranche_id} does not exist")
        return self.tranches[tranche_id]

    def locked_liquidity(self, locked_id: int) -> LockedLiquidity:
        """
        Raises:
            UnknownLock: If no locked liquidity record has this id.
        """
        if not isinstance(locked_id, int) or not 0 <= locked_id < len(self._locked_liquidity):
            raise UnknownLock(f"LockedLiquidity {locked_id} does not exist")
        return self._locked_liquidity[locked_id]

    def share_value(self, tranche_id: int) -> int:
        """Tokens an OPEN tranche would withdraw right now. 0 once closed."""
        tranche = self.tranche(tranche_id)
        if tranche.state != TrancheState.OPEN:
            return 0
        return tranche.share * self.total_balance // self.total_share_supply

    def get_approved(self, tranche_id: int) -> Optional[str]:
        self.tranche(tranche_id)
        return self._tranche_approvals.get(tranche_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return self._operators.get((owner, operator), False)

    def has_role(self, role: Role, account: str) -> bool:
        return self._roles.has_role(role, account)

    def _is_approved_or_owner(self, caller: str, tranche: Tranche) -> bool:
        return (
            caller == tranche.owner
            or self._tranche_approvals.get(tranche.id) == caller
            or self.is_approved_for_all(tranche.owner, caller)
        )

    def _emit(self, name: str, *args) -> None:
        self.ledger.emit(Event(self.address, name, args))

    # ========================================================================
    # LIQUIDITY PROVIDERS
    # ========================================================================

    def provide(
        self,
        caller: str,
        depositor: str,
        amount: int,
        hedged: bool,
        min_share: int,
        now: int,
    ) -> int:
        """
        Deposit liquidity and open a tranche for `depositor`.

        The first deposit into an empty pool mints amount * INITIAL_RATE shares;
        later deposits mint amount * total_share_supply // total_balance.

        Args:
            caller: Account the tokens are pulled from (needs an allowance for the pool)
            depositor: Owner of the new tranche
            amount: Tokens to deposit
            hedged: Whether the tranche joins the hedged class
            min_share: Minimum shares the caller accepts
            now: Deposit time, start of the lockup period

        Returns:
            The new tranche id

        Raises:
            AmountTooSmall: If the deposit would mint zero shares.
            MintLimitExceeded: If fewer than min_share shares would be minted.
            InsufficientAllowance, InsufficientBalance: If the pull fails.
        """
        require_address(depositor, "depositor")
        require_uint(amount, "amount")
        require_uint(min_share, "min_share")
        require_uint(now, "now")
        share = self._mint_share(amount)
        if share == 0:
            raise AmountTooSmall("Pool Error: The amount is too small")
        if share < min_share:
            raise MintLimitExceeded("Pool Error: The mint limit is too large")

        tranche_id = len(self.tranches)
        with self.ledger.atomic(self, label="provide"):
            self.tranches.append(Tranche(
                id=tranche_id,
                owner=depositor,
                amount=amount,
                share=share,
                state=TrancheState.OPEN,
                hedged=bool(hedged),
                created_at=now,
            ))
            if hedged:
                self.hedged_share += share
            else:
                self.unhedged_share += share
            self.total_balance += amount
            self.ledger.transfer_from(self.token, self.address, caller, self.address, amount)
            self._emit("Provide", depositor, amount, share, bool(hedged))
        return tranche_id

    def _mint_share(self, amount: int) -> int:
        supply = self.total_share_supply
        if supply == 0:
            return amount * self.INITIAL_RATE
        if self.total_balance == 0:
            raise EmptyPool("Pool Error: Shares outstanding against an empty pool")
        return amount * supply // self.total_balance

    def withdraw(self, caller: str, tranche_id: int, now: int) -> int:
        """
        Close a tranche and pay its owner the tranche's share of the pool.

        A hedged tranche that is worth less than its deposit is made whole by
        the hedge pool, which must have approved this pool to pull the cover.
        Use withdraw_without_hedge() to exit without the cover.

        Returns:
            Tokens paid out, including any hedge cover

        Raises:
            NotFound: If the tranche does not exist.
            AlreadyClosed: If the tranche was already withdrawn.
            NotOwner: If caller is not the owner, the approved account or an operator.
            Locked: If now < created_at + lockup_period.
            InsufficientLiquidity: If the payout would leave locked collateral uncovered.
            InsufficientAllowance, InsufficientBalance: If the hedge pool cannot pay the cover.
        """
        tranche = self.tranche(tranche_id)
        with self.ledger.atomic(self, label="withdraw"):
            payout = self._close_tranche(caller, tranche_id, now)
            cover = tranche.amount - payout if tranche.hedged and payout < tranche.amount else 0
            if cover:
                self.ledger.transfer_from(
                    self.token, self.address, self.hedge_pool, tranche.owner, cover
                )
                self._emit("HedgeCover", tranche.owner, tranche_id, cover)
            self._emit("Withdraw", tranche.owner, tranche_id)
        return payout + cover

    def withdraw_without_hedge(self, caller: str, tranche_id: int, now: int) -> int:
        """
        Close a tranche for its share of the pool, without claiming hedge cover.

        Same guards as withdraw().

        Returns:
            Tokens paid out
        """
        tranche = self.tranche(tranche_id)
        with self.ledger.atomic(self, label="withdraw_without_hedge"):
            payout = self._close_tranche(caller, tranche_id, now)
            self._emit("Withdraw", tranche.owner, tranche_id)
        return payout

    def _close_tranche(self, caller: str, tranche_id: int, now: int) -> int:
        require_uint(now, "now")
        tranche = self.tranche(tranche_id)
        if tranche.state != TrancheState.OPEN:
            raise AlreadyClosed(f"Tranche {tranche_id} is already closed")
        if not self._is_approved_or_owner(caller, tranche):
            raise NotOwner("Pool Error: The caller is not approved")
        if now < tranche.created_at + self.lockup_period:
            raise Locked("Pool Error: The withdrawal is locked up")

        payout = tranche.share * self.total_balance // self.total_share_supply
        if self.locked_amount > self.total_balance - payout:
            raise InsufficientLiquidity("Pool Error: Not enough funds on the pool contract")

        self.tranches[tranche_id] = replace(tranche, state=TrancheState.CLOSED)
        self._tranche_approvals.pop(tranche_id, None)
        if tranche.hedged:
            self.hedged_share -= tranche.share
        else:
            self.unhedged_share -= tranche.share
        self.total_balance -= payout
        self.ledger.transfer(self.token, self.address, tranche.owner, payout)
        return payout

    def approve(self, caller: str, spender: Optional[str], tranche_id: int) -> None:
        """Let `spender` withdraw or transfer one tranche. None clears the approval."""
        tranche = self.tranche(tranche_id)
        if caller != tranche.owner and not self.is_approved_for_all(tranche.owner, caller):
            raise NotOwner("Pool Error: The caller is not the tranche owner")
        if spender is None:
            self._tranche_approvals.pop(tranche_id, None)
        else:
            self._tranche_approvals[tranche_id] = require_address(spender, "spender")

    def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> None:
        require_address(operator, "operator")
        if operator == caller:
            raise InvalidParameter("Cannot approve yourself as operator")
        self._operators[(caller, operator)] = bool(approved)

    def transfer_tranche(self, caller: str, to: str, tranche_id: int) -> None:
        """Move an OPEN tranche to a new owner. Clears any per-tranche approval."""
        require_address(to, "to")
        tranche = self.tranche(tranche_id)
        if tranche.state != TrancheState.OPEN:
            raise AlreadyClosed(f"Tranche {tranche_id} is already closed")
        if not self._is_approved_or_owner(caller, tranche):
            raise NotOwner("Pool Error: The caller is not approved")
        self.tranches[tranche_id] = replace(tranche, owner=to)
        self._tranche_approvals.pop(tranche_id, None)

    # ========================================================================
    # OPTIONS ENGINE
    # ========================================================================

    def lock(self, caller: str, locked_id: int, premium: int, amount: int) -> int:
        """
        Lock collateral against a new option and collect its premium.

        Args:
            caller: Options engine; the premium is pulled from it
            locked_id: Must equal next_locked_id
            premium: Premium paid into the pool
            amount: Collateral to lock

        Returns:
            locked_id

        Raises:
            MissingRole: If caller lacks OPTIONS_ENGINE.
            WrongLockId: If locked_id is not the next id.
            AmountTooSmall: If amount is zero.
            InsufficientCollateral: If utilization would exceed 80%.
        """
        self._roles.require(Role.OPTIONS_ENGINE, caller)
        require_uint(premium, "premium")
        require_uint(amount, "amount")
        if locked_id != self.next_locked_id:
            raise WrongLockId(f"Pool Error: Wrong id, expected {self.next_locked_id}")
        if amount == 0:
            raise AmountTooSmall("Pool Error: The amount is too small")
        if ((self.locked_amount + amount) * UTILIZATION_CAP_DENOMINATOR
                > self.total_balance * UTILIZATION_CAP_NUMERATOR):
            raise InsufficientCollateral("Pool Error: The amount is too large")

        supply = self.total_share_supply
        hedged_portion = premium * self.hedged_share // supply if supply else 0
        hedge_fee = hedged_portion * self.hedge_fee_rate // 100

        with self.ledger.atomic(self, label="lock"):
            self._locked_liquidity.append(LockedLiquidity(
                id=locked_id,
                amount=amount,
                hedge_premium=hedged_portion - hedge_fee,
                unhedge_premium=premium - hedged_portion,
                locked=True,
            ))
            self.locked_amount += amount
            self.total_balance += premium - hedge_fee
            self.ledger.transfer_from(self.token, self.address, caller, self.address, premium)
            self.ledger.transfer(self.token, self.address, self.hedge_pool, hedge_fee)
        return locked_id

    def unlock(self, caller: str, locked_id: int) -> None:
        """
        Release the collateral of an expired option. The premium stays in the pool.

        Raises:
            MissingRole: If caller lacks OPTIONS_ENGINE.
            UnknownLock: If the record does not exist.
            AlreadyUnlocked: If it was already released or paid out.
        """
        self._roles.require(Role.OPTIONS_ENGINE, caller)
        ll = self.locked_liquidity(locked_id)
        if not ll.locked:
            raise AlreadyUnlocked("LockedLiquidity with such id has already been unlocked")
        with self.ledger.atomic(self, label="unlock"):
            self._locked_liquidity[locked_id] = replace(ll, locked=False)
            self.locked_amount -= ll.amount
            self._emit("Profit", locked_id, 0, 0)

    def send(self, caller: str, locked_id: int, to: str, amount: int) -> int:
        """
        Pay an exercised option's holder out of its locked collateral.

        The payout is capped at the locked amount. Paying the whole lock is
        reported as a Loss; paying less reports the unspent collateral as Profit.

        Returns:
            Tokens paid to `to`
        """
        self._roles.require(Role.OPTIONS_ENGINE, caller)
        require_address(to, "to")
        require_uint(amount, "amount")
        ll = self.locked_liquidity(locked_id)
        if not ll.locked:
            raise AlreadyUnlocked("LockedLiquidity with such id has already been unlocked")
        payout = min(amount, ll.amount)

        with self.ledger.atomic(self, label="send"):
            self._locked_liquidity[locked_id] = replace(ll, locked=False)
            self.locked_amount -= ll.amount
            self.total_balance -= payout
            self.ledger.transfer(self.token, self.address, to, payout)
            if amount >= ll.amount:
                self._emit("Loss", locked_id, ll.amount, 0)
            else:
                self._emit("Profit", locked_id, ll.amount - amount, 0)
        return payout

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_lockup_period(self, caller: str, period: int) -> None:
        self._roles.require(Role.ADMIN, caller)
        require_uint(period, "period")
        if period > MAX_LOCKUP_PERIOD:
            raise LockupTooLong("Pool Error: The lockup period is too long")
        self.lockup_period = period

    def set_hedge_pool(self, caller: str, hedge_pool: str) -> None:
        self._roles.require(Role.ADMIN, caller)
        self.hedge_pool = require_address(hedge_pool, "hedge_pool")

    def set_hedge_fee_rate(self, caller: str, rate: int) -> None:
        self._roles.require(Role.ADMIN, caller)
        if require_uint(rate, "rate") > 100:
            raise InvalidParameter("Pool Error: The hedge fee rate is a percentage")
        self.hedge_fee_rate = rate

    def grant_role(self, caller: str, role: Role, account: str) -> None:
        self._roles.grant(caller, role, account)

    def revoke_role(self, caller: str, role: Role, account: str) -> None:
        self._roles.revoke(caller, role, account)

    def renounce_role(self, caller: str, role: Role) -> None:
        self._roles.renounce(caller, role)

    def __repr__(self):
        return (f"CollateralPool({self.address}, {self.token}, balance={self.total_balance}, "
                f"locked={self.locked_amount})")
