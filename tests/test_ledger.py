"""
test_ledger.py - Tests for the token Ledger

Covers:
- Token registration and minting
- transfer / transfer_from with allowances
- Event and transfer logs
- atomic(): rollback of ledger and participant state
- verify_conservation and clone
"""

import pytest

from optionpool import (
    Ledger, Token, Event, Transfer, MAX_UINT256, ZERO_ADDRESS,
    TokenNotRegistered, InsufficientBalance, InsufficientAllowance,
    ZeroAddress, InvalidParameter, ProtocolError,
)
from optionpool.core import Snapshottable


class Counter(Snapshottable):
    """Minimal participant for atomic() tests."""
    _SNAPSHOT_FIELDS = ("value", "history")

    def __init__(self):
        self.value = 0
        self.history = []


class TestRegistration:

    def test_register_token(self, ledger):
        assert ledger.get_token("WBTC").decimals == 8
        assert ledger.get_token("USDC").decimals == 6
        assert ledger.total_supply("USDC") == 0

    def test_duplicate_registration(self, ledger):
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_token(Token("USDC", "Another", 6))

    def test_unknown_token(self, ledger):
        with pytest.raises(TokenNotRegistered):
            ledger.balance_of("alice", "DAI")

    def test_verbose_registration_prints(self, capsys):
        ledger = Ledger("loud", verbose=True)
        ledger.register_token(Token("USDC", "USD Coin", 6))
        assert "Registered: USDC" in capsys.readouterr().out


class TestTransfers:

    def test_mint(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        assert ledger.balance_of("alice", "USDC") == 1000
        assert ledger.total_supply("USDC") == 1000

    def test_mint_to_zero_address(self, ledger):
        with pytest.raises(ZeroAddress):
            ledger.mint("USDC", ZERO_ADDRESS, 1)

    def test_transfer(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.transfer("USDC", "alice", "bob", 400)
        assert ledger.balance_of("alice", "USDC") == 600
        assert ledger.balance_of("bob", "USDC") == 400
        assert ledger.transfer_log == [Transfer("USDC", "alice", "bob", 400)]

    def test_transfer_insufficient_balance(self, ledger):
        ledger.mint("USDC", "alice", 10)
        with pytest.raises(InsufficientBalance):
            ledger.transfer("USDC", "alice", "bob", 11)

    def test_transfer_to_zero_address(self, ledger):
        ledger.mint("USDC", "alice", 10)
        with pytest.raises(ZeroAddress):
            ledger.transfer("USDC", "alice", ZERO_ADDRESS, 1)

    def test_zero_transfer_is_not_logged(self, ledger):
        ledger.transfer("USDC", "alice", "bob", 0)
        assert ledger.transfer_log == []

    def test_negative_amount_rejected(self, ledger):
        with pytest.raises(InvalidParameter):
            ledger.transfer("USDC", "alice", "bob", -1)

    def test_overflow_rejected(self, ledger):
        with pytest.raises(InvalidParameter):
            ledger.mint("USDC", "alice", MAX_UINT256 + 1)

    def test_transfer_from_consumes_allowance(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.approve("alice", "pool", "USDC", 500)
        ledger.transfer_from("USDC", "pool", "alice", "pool", 300)
        assert ledger.allowance("alice", "pool", "USDC") == 200
        assert ledger.balance_of("pool", "USDC") == 300

    def test_unlimited_allowance_not_consumed(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.approve("alice", "pool", "USDC", MAX_UINT256)
        ledger.transfer_from("USDC", "pool", "alice", "pool", 300)
        assert ledger.allowance("alice", "pool", "USDC") == MAX_UINT256

    def test_transfer_from_without_allowance(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        with pytest.raises(InsufficientAllowance):
            ledger.transfer_from("USDC", "pool", "alice", "pool", 1)

    def test_own_tokens_need_no_allowance(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.transfer_from("USDC", "alice", "alice", "bob", 1000)
        assert ledger.balance_of("bob", "USDC") == 1000


class TestEvents:

    def test_emit_and_filter(self, ledger):
        ledger.emit(Event("pool", "Provide", ("alice", 1, 2, True)))
        ledger.emit(Event("engine", "Create", (0, "alice", 1, 2)))
        assert [e.name for e in ledger.events] == ["Provide", "Create"]
        assert ledger.events_named("Create", emitter="engine")[0].args == (0, "alice", 1, 2)
        assert ledger.events_named("Create", emitter="pool") == []

    def test_event_repr(self):
        assert repr(Event("engine", "Expire", (3,))) == "Expire(3) @ engine"


class TestAtomic:

    def test_commit(self, ledger):
        counter = Counter()
        ledger.mint("USDC", "alice", 100)
        with ledger.atomic(counter):
            counter.value = 5
            counter.history.append("a")
            ledger.transfer("USDC", "alice", "bob", 40)
        assert counter.value == 5
        assert counter.history == ["a"]
        assert ledger.balance_of("bob", "USDC") == 40

    def test_rollback_restores_everything(self, ledger):
        counter = Counter()
        ledger.mint("USDC", "alice", 100)
        with pytest.raises(InsufficientBalance):
            with ledger.atomic(counter, label="test"):
                counter.value = 5
                counter.history.append("a")
                ledger.emit(Event("x", "Something", ()))
                ledger.transfer("USDC", "alice", "bob", 40)
                ledger.transfer("USDC", "alice", "bob", 100)
        assert counter.value == 0
        assert counter.history == []
        assert ledger.balance_of("alice", "USDC") == 100
        assert ledger.balance_of("bob", "USDC") == 0
        assert ledger.events == []
        assert ledger.transfer_log == []

    def test_rollback_on_any_exception(self, ledger):
        counter = Counter()
        with pytest.raises(RuntimeError):
            with ledger.atomic(counter):
                counter.value = 1
                raise RuntimeError("boom")
        assert counter.value == 0

    def test_nested_inner_failure_rolls_back_outer(self, ledger):
        counter = Counter()
        ledger.mint("USDC", "alice", 100)
        with pytest.raises(ProtocolError):
            with ledger.atomic(counter):
                ledger.transfer("USDC", "alice", "bob", 10)
                with ledger.atomic(counter):
                    counter.value = 2
                    ledger.transfer("USDC", "alice", "bob", 1000)
        assert ledger.balance_of("bob", "USDC") == 0
        assert counter.value == 0

    def test_snapshot_records_log_lengths(self, ledger):
        ledger.mint("USDC", "alice", 100)
        ledger.transfer("USDC", "alice", "bob", 10)
        ledger.emit(Event("x", "Something", ()))
        state = ledger.snapshot()
        assert state["events"] == 1
        assert state["transfer_log"] == 1
        ledger.emit(Event("x", "Later", ()))
        assert ledger.snapshot()["events"] == 2

    def test_rollback_truncates_logs_in_place(self, ledger):
        ledger.mint("USDC", "alice", 100)
        ledger.emit(Event("x", "Kept", ()))
        ledger.transfer("USDC", "alice", "bob", 10)
        events, transfers = ledger.events, ledger.transfer_log
        with pytest.raises(InsufficientBalance):
            with ledger.atomic():
                ledger.emit(Event("x", "Dropped", ()))
                ledger.transfer("USDC", "alice", "bob", 20)
                ledger.transfer("USDC", "alice", "bob", 1000)
        assert ledger.events is events
        assert ledger.transfer_log is transfers
        assert [e.name for e in ledger.events] == ["Kept"]
        assert ledger.transfer_log == [Transfer("USDC", "alice", "bob", 10)]

    def test_nested_rollback_keeps_outer_logs(self, ledger):
        ledger.mint("USDC", "alice", 100)
        with ledger.atomic():
            ledger.emit(Event("x", "Outer", ()))
            with pytest.raises(InsufficientBalance):
                with ledger.atomic():
                    ledger.emit(Event("x", "Inner", ()))
                    ledger.transfer("USDC", "alice", "bob", 1000)
        assert [e.name for e in ledger.events] == ["Outer"]

    def test_rejection_is_printed_when_verbose(self, capsys):
        ledger = Ledger("loud", verbose=True)
        ledger.register_token(Token("USDC", "USD Coin", 6))
        with pytest.raises(InsufficientBalance):
            with ledger.atomic(label="pay"):
                ledger.transfer("USDC", "alice", "bob", 1)
        assert "✗ REJECTED: pay:" in capsys.readouterr().out


class TestConservation:

    def test_conserved_after_transfers(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.mint("WBTC", "bob", 5)
        ledger.transfer("USDC", "alice", "bob", 300)
        result = ledger.verify_conservation()
        assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        assert result['supplies'] == {"WBTC": 5, "USDC": 1000}

    def test_detects_tampering(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        ledger.balances[("alice", "USDC")] += 1
        result = ledger.verify_conservation()
        assert not result['valid']
        assert result['discrepancies'][0]['difference'] == 1

    def test_clone_is_independent(self, ledger):
        ledger.mint("USDC", "alice", 1000)
        cloned = ledger.clone()
        cloned.transfer("USDC", "alice", "bob", 1000)
        assert ledger.balance_of("alice", "USDC") == 1000
        assert cloned.balance_of("bob", "USDC") == 1000
