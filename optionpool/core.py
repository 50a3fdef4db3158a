"""
Core types and pure functions for the option pool protocol.

This module provides the foundational data structures shared by every component:
1. Constants: fixed-point scales, period bounds, sentinel addresses
2. Enums: option type, option state, tranche state
3. Immutable records: Token, Tranche, LockedLiquidity, Option, Event, Transfer
4. Exceptions: ProtocolError and its four rejection categories
5. Snapshottable: the state capture/restore protocol used for atomic execution
6. Integer helpers: range validation and decimal rescaling

All amounts are plain Python ints in the smallest unit of their token.
Records are frozen; components swap them with dataclasses.replace() when a
field changes, so a captured list of records is never mutated afterwards.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Tuple


# ============================================================================
# CONSTANTS
# ============================================================================

# Sentinel "no address". Transfers, recipients and holders may never be zero.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Largest value an on-chain unsigned amount can take. Used as "unlimited" allowance.
MAX_UINT256 = 2 ** 256 - 1

# Shares minted per token unit while a pool has no shares outstanding.
# The large multiplier keeps share math precise and makes the first-depositor
# share-price inflation attack uneconomic.
INITIAL_RATE = 10 ** 20

# Oracle prices carry 8 decimals (50000e8 == 50,000.00000000).
PRICE_DECIMALS = 8
PRICE_SCALE = 10 ** PRICE_DECIMALS

# Implied volatility rates and utilization ratios are scaled by 1e8.
IV_SCALE = 10 ** 8
UTILIZATION_SCALE = 10 ** 8

# Time, in seconds.
ONE_DAY = 86400
ONE_WEEK = 7 * ONE_DAY
MIN_PERIOD = ONE_DAY
MAX_PERIOD = 12 * ONE_WEEK

# Liquidity withdrawal cooldown.
DEFAULT_LOCKUP_PERIOD = 14 * ONE_DAY
MAX_LOCKUP_PERIOD = 60 * ONE_DAY

# Share of the hedged premium routed to the hedge pool, in percent.
DEFAULT_HEDGE_FEE_RATE = 80

# Locked collateral may never exceed 80% of the pool balance:
#   locked_amount * UTILIZATION_CAP_DENOMINATOR <= total_balance * UTILIZATION_CAP_NUMERATOR
UTILIZATION_CAP_NUMERATOR = 8
UTILIZATION_CAP_DENOMINATOR = 10

# Pricing defaults: three implied-volatility tiers selected by pool utilization.
DEFAULT_IMPLIED_VOL_RATES = (9000, 10000, 20000)
DEFAULT_UTILIZATION_THRESHOLDS = (40 * UTILIZATION_SCALE // 100, 70 * UTILIZATION_SCALE // 100)
DEFAULT_SETTLEMENT_FEE_PERCENT = 1

# Window after engine creation during which pool admin rights can be migrated.
BOOTSTRAP_WINDOW = 14 * ONE_DAY


# ============================================================================
# ENUMS
# ============================================================================

class OptionType(IntEnum):
    """Settlement side of an option. PUTs settle in the stable asset, CALLs in the base asset."""
    PUT = 1
    CALL = 2


class OptionState(IntEnum):
    """
    Option lifecycle.

    INACTIVE -> ACTIVE -> EXERCISED
                       -> EXPIRED
    EXERCISED and EXPIRED are terminal.
    """
    INACTIVE = 0
    ACTIVE = 1
    EXERCISED = 2
    EXPIRED = 3


class TrancheState(IntEnum):
    INVALID = 0
    OPEN = 1
    CLOSED = 2


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ProtocolError(Exception):
    """Base exception for every rejected operation."""
    code = "PROTOCOL_ERROR"


# --- Input validation -------------------------------------------------------

class InputValidationError(ProtocolError):
    """Raised when arguments are out of range. Checked before any state change."""
    code = "INPUT_VALIDATION"


class PeriodTooShort(InputValidationError):
    code = "PERIOD_TOO_SHORT"


class PeriodTooLong(InputValidationError):
    code = "PERIOD_TOO_LONG"


class InvalidOptionType(InputValidationError):
    code = "INVALID_OPTION_TYPE"


class AmountTooSmall(InputValidationError):
    code = "AMOUNT_TOO_SMALL"


class MintLimitExceeded(InputValidationError):
    """Raised when a deposit would mint fewer shares than the caller's minimum."""
    code = "MINT_LIMIT_EXCEEDED"


class StrikeNotATM(InputValidationError):
    """Raised when a quote is requested for a strike other than the current price."""
    code = "STRIKE_NOT_ATM"


class ZeroAddress(InputValidationError):
    code = "ZERO_ADDRESS"


class LockupTooLong(InputValidationError):
    code = "LOCKUP_TOO_LONG"


class InvalidParameter(InputValidationError):
    code = "INVALID_PARAMETER"


class TokenNotRegistered(InputValidationError):
    code = "TOKEN_NOT_REGISTERED"


# --- Authorization ----------------------------------------------------------

class AuthorizationError(ProtocolError):
    """Raised when the caller lacks the role or ownership an operation requires."""
    code = "AUTHORIZATION"


class MissingRole(AuthorizationError):
    code = "MISSING_ROLE"


class NotOwner(AuthorizationError):
    code = "NOT_OWNER"


class NotApproved(AuthorizationError):
    code = "NOT_APPROVED"


# --- Invariant violations ---------------------------------------------------

class InvariantViolation(ProtocolError):
    """Raised when an operation would break a pool or ledger invariant."""
    code = "INVARIANT_VIOLATION"


class InsufficientCollateral(InvariantViolation):
    """Raised when a lock would push utilization above the cap."""
    code = "INSUFFICIENT_COLLATERAL"


class InsufficientLiquidity(InvariantViolation):
    """Raised when a withdrawal would leave locked collateral uncovered."""
    code = "INSUFFICIENT_LIQUIDITY"


class Locked(InvariantViolation):
    """Raised when a tranche is withdrawn before its lockup period has elapsed."""
    code = "LOCKED"


class EmptyPool(InvariantViolation):
    code = "EMPTY_POOL"


class InsufficientBalance(InvariantViolation):
    code = "INSUFFICIENT_BALANCE"


class InsufficientAllowance(InvariantViolation):
    code = "INSUFFICIENT_ALLOWANCE"


class WrongLockId(InvariantViolation):
    code = "WRONG_LOCK_ID"


class BootstrapWindowClosed(InvariantViolation):
    code = "BOOTSTRAP_WINDOW_CLOSED"


class AlreadyMigrated(InvariantViolation):
    code = "ALREADY_MIGRATED"


class StalePrice(InvariantViolation):
    """Raised when an oracle has no observation at or before the requested time."""
    code = "STALE_PRICE"


# --- Stale state ------------------------------------------------------------

class StaleStateError(ProtocolError):
    """Raised when the target record is missing or no longer in the required state."""
    code = "STALE_STATE"


class NotFound(StaleStateError):
    code = "NOT_FOUND"


class UnknownLock(NotFound):
    code = "UNKNOWN_LOCK"


class WrongState(StaleStateError):
    code = "WRONG_STATE"


class AlreadyUnlocked(WrongState):
    code = "ALREADY_UNLOCKED"


class AlreadyClosed(WrongState):
    code = "ALREADY_CLOSED"


class Expired(WrongState):
    code = "EXPIRED"


class NotYetExpired(WrongState):
    code = "NOT_YET_EXPIRED"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Token:
    """
    Definition of a fungible token held in the ledger.

    Attributes:
        symbol: Short identifier (e.g., "WBTC", "USDC").
        name: Human-readable name.
        decimals: Number of decimals of the smallest unit (8 for WBTC, 6 for USDC).
    """
    symbol: str
    name: str
    decimals: int

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if not isinstance(self.decimals, int) or not 0 <= self.decimals <= 36:
            raise ValueError(f"Token decimals must be an int in [0, 36], got {self.decimals!r}")

    def units(self, whole: int) -> int:
        """Convert a whole-token amount to smallest units (parse_units)."""
        return whole * 10 ** self.decimals

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.decimals} decimals)"


@dataclass(frozen=True, slots=True)
class Tranche:
    """
    One liquidity deposit and its proportional claim on a pool.

    Attributes:
        id: Index in the pool's tranche list (monotonic, never reused).
        owner: Account entitled to withdraw.
        amount: Tokens deposited.
        share: Shares minted for the deposit.
        state: OPEN until withdrawn, then CLOSED.
        hedged: Whether the tranche participates in the hedged premium split.
        created_at: Deposit time (unix seconds), start of the lockup period.
    """
    id: int
    owner: str
    amount: int
    share: int
    state: TrancheState
    hedged: bool
    created_at: int


@dataclass(frozen=True, slots=True)
class LockedLiquidity:
    """
    Collateral earmarked against a single live option.

    hedge_premium is the hedged tranches' cut of the premium net of the hedge fee;
    unhedge_premium is the unhedged tranches' cut.
    """
    id: int
    amount: int
    hedge_premium: int
    unhedge_premium: int
    locked: bool

    @property
    def premium(self) -> int:
        """Premium retained by the pool for this lock."""
        return self.hedge_premium + self.unhedge_premium


@dataclass(frozen=True, slots=True)
class Option:
    """
    A purchased European option.

    Attributes:
        id: Index in the engine's option list.
        state: Lifecycle state.
        holder: Account that receives the payoff.
        strike: Strike price (8 decimals).
        amount: Underlying quantity in base-asset units.
        locked_amount: Collateral locked in the settlement pool.
        premium: Premium paid to the pool.
        expiration: Unix seconds after which the option can no longer be exercised.
        option_type: PUT or CALL.
        locked_liquidity_id: Id of the LockedLiquidity record backing this option.
        pool: Address of the settlement pool.
        base_decimals: Decimals of the base asset at purchase.
        stable_decimals: Decimals of the stable asset at purchase.
    """
    id: int
    state: OptionState
    holder: str
    strike: int
    amount: int
    locked_amount: int
    premium: int
    expiration: int
    option_type: OptionType
    locked_liquidity_id: int
    pool: str
    base_decimals: int
    stable_decimals: int


@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable record of something a component announced (Provide, Create, Loss, ...).

    Events are appended to the ledger's event log and rolled back with the
    operation that emitted them.
    """
    emitter: str
    name: str
    args: Tuple[Any, ...]

    def __repr__(self) -> str:
        args = ", ".join(repr(a) for a in self.args)
        return f"{self.name}({args}) @ {self.emitter}"


@dataclass(frozen=True, slots=True)
class Transfer:
    """A single token movement recorded by the ledger."""
    token: str
    source: str
    dest: str
    amount: int

    def __repr__(self) -> str:
        return f"Transfer({self.amount} {self.token}: {self.source}→{self.dest})"


# ============================================================================
# SNAPSHOTS
# ============================================================================

class Snapshottable:
    """
    Mixin for components whose state can be captured and restored.

    _SNAPSHOT_FIELDS names attributes holding plain data. Containers (list,
    dict, set) are shallow-copied; everything else is kept by reference, which
    is safe because records are frozen and numbers are immutable.
    _SNAPSHOT_CHILDREN names attributes holding owned Snapshottable objects.
    """

    _SNAPSHOT_FIELDS: Tuple[str, ...] = ()
    _SNAPSHOT_CHILDREN: Tuple[str, ...] = ()

    def snapshot(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {}
        for name in self._SNAPSHOT_FIELDS:
            value = getattr(self, name)
            state[name] = value.copy() if isinstance(value, (list, dict, set)) else value
        for name in self._SNAPSHOT_CHILDREN:
            state[name] = getattr(self, name).snapshot()
        return state

    def restore(self, state: Dict[str, Any]) -> None:
        for name in self._SNAPSHOT_FIELDS:
            setattr(self, name, state[name])
        for name in self._SNAPSHOT_CHILDREN:
            getattr(self, name).restore(state[name])


# ============================================================================
# INTEGER HELPERS
# ============================================================================

def require_uint(value: Any, name: str) -> int:
    """
    Validate that a value is an unsigned 256-bit integer.

    Raises:
        InvalidParameter: If value is not an int (bools rejected), is negative,
                          or exceeds MAX_UINT256.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise InvalidParameter(f"{name} must be non-negative, got {value}")
    if value > MAX_UINT256:
        raise InvalidParameter(f"{name} overflows uint256")
    return value


def require_address(address: Any, name: str) -> str:
    """
    Validate that an address is a non-empty string other than ZERO_ADDRESS.

    Raises:
        ZeroAddress: If the address is empty or the zero address.
    """
    if not isinstance(address, str) or not address.strip() or address == ZERO_ADDRESS:
        raise ZeroAddress(f"{name} cannot be the zero address")
    return address


def to_stable(amount: int, price: int, base_decimals: int, stable_decimals: int) -> int:
    """
    Value a base-asset quantity in stable-asset units.

    amount * price is divided once, so truncation happens a single time:
        amount * price * 10**stable_decimals // (10**base_decimals * PRICE_SCALE)

    Example:
        1 WBTC (1e8 units) at 50000e8 with USDC (6 decimals) -> 50000e6
    """
    return amount * price * 10 ** stable_decimals // (10 ** base_decimals * PRICE_SCALE)
