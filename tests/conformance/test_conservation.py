"""
Conservation Law Conformance Tests

INVARIANT: For every token u, at all times t:
    Σ_{accounts a} balance(a, u, t) = total_supply(u, t)

and for every pool p:
    balance(p.address, p.token) = p.total_balance
    p.locked_amount = Σ amount of p's locked records
    p.locked_amount <= p.total_balance

Premiums, fees, hedge fees and payouts redistribute tokens between buyers,
pools, fee recipients and holders. Only minting changes supply.

These tests use property-based testing over random protocol activity.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st

from optionpool import OptionType, TrancheState, ProtocolError, UTILIZATION_SCALE, ONE_WEEK

from tests.market import build_market, ALICE, NOW
from tests.scenarios import scenario, replay, BTC


def pool_invariants_hold(pool):
    locked = sum(ll.amount for ll in pool._locked_liquidity if ll.locked)
    open_shares = sum(t.share for t in pool.tranches if t.state == TrancheState.OPEN)
    return (
        pool.ledger.balance_of(pool.address, pool.token) == pool.total_balance
        and pool.locked_amount == locked
        and pool.locked_amount <= pool.total_balance
        and open_shares == pool.total_share_supply
    )


# =============================================================================
# CONSERVATION PROPERTY TESTS
# =============================================================================

class TestConservationProperties:
    """Property-based tests for conservation across the protocol."""

    @given(scenario())
    @settings(max_examples=50, deadline=None)
    def test_supply_matches_balances(self, actions):
        """
        PROPERTY: Token supply equals the sum of balances after every action.
        """
        market = build_market()

        def check(market, action, error):
            result = market.ledger.verify_conservation()
            assert result['valid'], result['discrepancies']

        rejected = replay(market, actions, check)
        note(f"Rejected: {len(rejected)} of {len(actions)}")

    @given(scenario())
    @settings(max_examples=50, deadline=None)
    def test_pool_books_match_ledger(self, actions):
        """
        PROPERTY: Each pool's accounting agrees with its token balance.
        """
        market = build_market(hedged=True)

        def check(market, action, error):
            assert pool_invariants_hold(market.base_pool), action
            assert pool_invariants_hold(market.stable_pool), action

        replay(market, actions, check)

    @given(scenario())
    @settings(max_examples=50, deadline=None)
    def test_supply_only_changes_by_minting(self, actions):
        """
        PROPERTY: Without new deposits, token supply never changes.
        """
        market = build_market()
        actions = [a for a in actions if a[0] != "provide"]
        before = {sym: market.ledger.total_supply(sym) for sym in ("WBTC", "USDC")}
        replay(market, actions)
        after = {sym: market.ledger.total_supply(sym) for sym in ("WBTC", "USDC")}
        assert before == after

    @given(
        st.lists(st.integers(min_value=1, max_value=30 * BTC), min_size=1, max_size=8),
        st.sampled_from([OptionType.PUT, OptionType.CALL]),
    )
    @settings(max_examples=50, deadline=None)
    def test_utilization_cap_after_every_lock(self, amounts, option_type):
        """
        PROPERTY: A successful purchase never pushes utilization above 80%.
        """
        market = build_market()
        pool = market.engine.pool(option_type)
        for amount in amounts:
            before = len(market.engine.options)
            try:
                market.engine.create(ALICE, ONE_WEEK, amount, 0, option_type, NOW)
            except ProtocolError:
                assert len(market.engine.options) == before
                continue
            assert pool.locked_amount * 10 <= pool.total_balance * 8
            assert market.calculator.utilization(option_type) <= 8 * UTILIZATION_SCALE // 10


class TestValueFlows:
    """Where a purchase's tokens end up."""

    @given(
        st.integers(min_value=1, max_value=10 * BTC),
        st.sampled_from([OptionType.PUT, OptionType.CALL]),
        st.booleans(),
    )
    @settings(max_examples=50, deadline=None)
    def test_purchase_payment_is_fully_accounted(self, amount, option_type, hedged):
        """
        PROPERTY: buyer outflow = settlement fee + hedge fee + pool inflow.
        """
        market = build_market(hedged=hedged)
        pool = market.engine.pool(option_type)
        token = pool.token
        recipient = market.engine.settlement_fee_recipient(option_type)
        buyer_before = market.ledger.balance_of(ALICE, token)
        pool_before = pool.total_balance

        option_id = market.engine.create(ALICE, ONE_WEEK, amount, 0, option_type, NOW)
        option = market.engine.option(option_id)

        paid = buyer_before - market.ledger.balance_of(ALICE, token)
        fee = market.ledger.balance_of(recipient, token)
        hedge_fee = market.ledger.balance_of(pool.hedge_pool, token)
        assert paid == fee + option.premium
        assert paid == fee + hedge_fee + (pool.total_balance - pool_before)
        assert market.ledger.balance_of(market.engine.address, token) == 0
