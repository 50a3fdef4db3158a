"""
optionpool - Pooled-liquidity options protocol

Liquidity providers deposit into collateral pools; buyers purchase at-the-money
European PUTs and CALLs priced by pool utilization; the options engine locks
collateral per option and settles exercises and expiries against the pools.

Usage:
    from optionpool import (
        Ledger, Token, CollateralPool, PriceCalculator, OptionsEngine,
        StaticPriceOracle, OptionType, MAX_UINT256, ONE_DAY,
    )

    ledger = Ledger("main")
    ledger.register_token(Token("WBTC", "Wrapped BTC", 8))
    ledger.register_token(Token("USDC", "USD Coin", 6))
    oracle = StaticPriceOracle(50000 * 10**8)

    base_pool = CollateralPool(ledger, "WBTC", "wbtc_pool", admin="deployer")
    stable_pool = CollateralPool(ledger, "USDC", "usdc_pool", admin="deployer")
    calculator = PriceCalculator(oracle, base_pool, stable_pool, owner="deployer")
    engine = OptionsEngine(ledger, oracle, calculator, stable_pool, base_pool,
                           "fees_usdc", "fees_wbtc", owner="deployer")
    engine.transfer_pools_ownership("deployer", now=0)

    ledger.mint("USDC", "lp", 1_000_000 * 10**6)
    ledger.approve("lp", "usdc_pool", "USDC", MAX_UINT256)
    stable_pool.provide("lp", "lp", 1_000_000 * 10**6, True, 0, now=0)

    ledger.mint("USDC", "alice", 10_000 * 10**6)
    ledger.approve("alice", engine.address, "USDC", MAX_UINT256)
    option_id = engine.create("alice", 14 * ONE_DAY, 10**8, 0, OptionType.PUT, now=0)
"""

from .core import (
    # Constants
    ZERO_ADDRESS,
    MAX_UINT256,
    INITIAL_RATE,
    PRICE_DECIMALS,
    PRICE_SCALE,
    IV_SCALE,
    UTILIZATION_SCALE,
    ONE_DAY,
    ONE_WEEK,
    MIN_PERIOD,
    MAX_PERIOD,
    DEFAULT_LOCKUP_PERIOD,
    MAX_LOCKUP_PERIOD,
    DEFAULT_HEDGE_FEE_RATE,
    DEFAULT_IMPLIED_VOL_RATES,
    DEFAULT_UTILIZATION_THRESHOLDS,
    BOOTSTRAP_WINDOW,
    # Enums
    OptionType,
    OptionState,
    TrancheState,
    # Records
    Token,
    Tranche,
    LockedLiquidity,
    Option,
    Event,
    Transfer,
    Snapshottable,
    # Exceptions
    ProtocolError,
    InputValidationError,
    PeriodTooShort,
    PeriodTooLong,
    InvalidOptionType,
    AmountTooSmall,
    MintLimitExceeded,
    StrikeNotATM,
    ZeroAddress,
    LockupTooLong,
    InvalidParameter,
    TokenNotRegistered,
    AuthorizationError,
    MissingRole,
    NotOwner,
    NotApproved,
    InvariantViolation,
    InsufficientCollateral,
    InsufficientLiquidity,
    Locked,
    EmptyPool,
    InsufficientBalance,
    InsufficientAllowance,
    WrongLockId,
    BootstrapWindowClosed,
    AlreadyMigrated,
    StalePrice,
    StaleStateError,
    NotFound,
    UnknownLock,
    WrongState,
    AlreadyUnlocked,
    AlreadyClosed,
    Expired,
    NotYetExpired,
    # Helpers
    require_uint,
    require_address,
    to_stable,
)

from .ledger import Ledger
from .access import Role, RoleTable
from .config import PoolSettings, PricingSettings, ProtocolSettings, load_settings
from .oracle import PriceOracle, StaticPriceOracle, TimeSeriesPriceOracle
from .pool import CollateralPool
from .pricing import PriceCalculator, FeeModel, NotionalFeeModel, ReferenceFeeModel
from .options import OptionsEngine
from .keeper import ExpiryKeeper
from .black_scholes import calibrate_vol_rates, vol_rate_for, implied_annual_vol

__version__ = "0.1.0"
