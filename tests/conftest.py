"""
conftest.py - Shared pytest fixtures for optionpool tests

Provides common fixtures used across unit and functional tests:
- Bare ledgers with WBTC and USDC registered
- Standalone pools where the deployer acts as the options engine
- Fully wired markets (pools, calculator, engine) with seeded liquidity
"""

import pytest

from optionpool import (
    Ledger, CollateralPool, Role,
)

from tests.market import (
    build_market, fund, Market,
    DEPLOYER, ALICE, HEDGE_POOL, WBTC, USDC,
)


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Empty ledger with WBTC and USDC registered."""
    ledger = Ledger("test", verbose=False)
    ledger.register_token(WBTC)
    ledger.register_token(USDC)
    return ledger


# =============================================================================
# POOL FIXTURES
# =============================================================================

@pytest.fixture
def pool(ledger):
    """
    WBTC pool where DEPLOYER holds ADMIN and OPTIONS_ENGINE.

    DEPLOYER holds 10**20 units and has approved the pool, so it can lock
    collateral with premiums directly.
    """
    pool = CollateralPool(ledger, "WBTC", "wbtc_pool", admin=DEPLOYER, hedge_pool=HEDGE_POOL)
    pool.grant_role(DEPLOYER, Role.OPTIONS_ENGINE, DEPLOYER)
    fund(ledger, DEPLOYER, "WBTC", 10 ** 20, pool.address)
    fund(ledger, ALICE, "WBTC", 10 ** 20, pool.address)
    return pool


@pytest.fixture
def funded_pool(pool):
    """The WBTC pool after ALICE provided 100000 units to a hedged tranche at t=0."""
    pool.provide(ALICE, ALICE, 100000, True, 0, 0)
    return pool


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market() -> Market:
    """Deployment with 1,000,000 USDC and 100 WBTC of unhedged liquidity."""
    return build_market()


@pytest.fixture
def hedged_market() -> Market:
    """Deployment whose liquidity sits entirely in hedged tranches."""
    return build_market(hedged=True)


@pytest.fixture
def empty_market() -> Market:
    """Deployment with no liquidity in either pool."""
    return build_market(stable_liquidity=0, base_liquidity=0)
