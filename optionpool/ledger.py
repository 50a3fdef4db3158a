"""
ledger.py - Token Ledger with Atomic Execution

The Ledger is the shared state every protocol component settles through:
token balances, allowances, minted supplies, the event log and the transfer log.

Key responsibilities:
    - Holds fungible token balances keyed by (account, token)
    - Enforces ERC20-style allowances for pull transfers (transfer_from)
    - Records every token movement and every emitted event
    - Runs operations atomically: atomic() snapshots the ledger and every
      participating component, and restores all of them if the block raises
    - Verifies conservation: the sum of balances of a token equals its minted supply
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .core import (
    Token, Event, Transfer, Snapshottable,
    MAX_UINT256,
    InsufficientBalance, InsufficientAllowance, TokenNotRegistered,
    require_uint, require_address,
)


class Ledger(Snapshottable):
    """
    Token ledger with allowances, an event log and rollback.

    Accounts are plain strings. Any non-zero string can hold a balance; there
    is no registration step for accounts, only for tokens.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_token(Token("USDC", "USD Coin", 6))
        ledger.mint("USDC", "alice", 1_000_000)
        ledger.transfer("USDC", "alice", "bob", 250_000)
    """

    _SNAPSHOT_FIELDS = ("balances", "allowances", "supplies")
    # append-only; a snapshot records their length and restore truncates
    _LOG_FIELDS = ("events", "transfer_log")

    def __init__(self, name: str = "main", verbose: bool = False):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            verbose: Enable debug output (default: False)
        """
        self.name = name
        self.verbose = verbose
        self.tokens: Dict[str, Token] = {}
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.supplies: Dict[str, int] = {}
        self.events: List[Event] = []
        self.transfer_log: List[Transfer] = []

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    def get_token(self, symbol: str) -> Token:
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return self.tokens[symbol]

    def balance_of(self, account: str, symbol: str) -> int:
        self.get_token(symbol)
        return self.balances.get((account, symbol), 0)

    def allowance(self, owner: str, spender: str, symbol: str) -> int:
        self.get_token(symbol)
        return self.allowances.get((owner, spender, symbol), 0)

    def total_supply(self, symbol: str) -> int:
        """Total amount of a token ever minted."""
        self.get_token(symbol)
        return self.supplies.get(symbol, 0)

    def sum_balances(self, symbol: str) -> int:
        """Sum of every account's balance of a token."""
        self.get_token(symbol)
        return sum(qty for (_, sym), qty in self.balances.items() if sym == symbol)

    def events_named(self, name: str, emitter: Optional[str] = None) -> List[Event]:
        """All logged events with the given name, optionally filtered by emitter."""
        return [
            e for e in self.events
            if e.name == name and (emitter is None or e.emitter == emitter)
        ]

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that no token was created or destroyed outside mint().

        For every token, the sum of balances across all accounts must equal
        the minted supply exactly.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every token is conserved
            - 'supplies': Dict[str, int] - Minted supply per token
            - 'discrepancies': List[Dict] - token, expected, actual, difference

        Example:
            result = ledger.verify_conservation()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []
        for symbol in self.tokens:
            expected = self.total_supply(symbol)
            actual = self.sum_balances(symbol)
            supplies[symbol] = expected
            if actual != expected:
                discrepancies.append({
                    'token': symbol,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def register_token(self, token: Token) -> None:
        """
        Register a token definition.

        Raises:
            ValueError: If a token with the same symbol is already registered.
        """
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token
        self.supplies[token.symbol] = 0
        if self.verbose:
            print(f"📝 Registered: {token.symbol} ({token.name}) [{token.decimals} decimals]")

    def mint(self, symbol: str, to: str, amount: int) -> None:
        """Issue new tokens to an account. The only way supply grows."""
        self.get_token(symbol)
        require_address(to, "to")
        require_uint(amount, "amount")
        self.supplies[symbol] += amount
        self._credit(to, symbol, amount)

    def approve(self, owner: str, spender: str, symbol: str, amount: int) -> None:
        """Set the amount `spender` may pull from `owner`. MAX_UINT256 means unlimited."""
        self.get_token(symbol)
        require_address(owner, "owner")
        require_address(spender, "spender")
        require_uint(amount, "amount")
        self.allowances[(owner, spender, symbol)] = amount

    def transfer(self, symbol: str, source: str, dest: str, amount: int) -> None:
        """
        Move tokens from `source` (the caller) to `dest`.

        Raises:
            ZeroAddress: If dest is the zero address.
            InsufficientBalance: If source holds less than amount.
        """
        self.get_token(symbol)
        require_address(dest, "dest")
        require_uint(amount, "amount")
        if amount == 0:
            return
        balance = self.balances.get((source, symbol), 0)
        if balance < amount:
            raise InsufficientBalance(
                f"{source} holds {balance} {symbol}, needs {amount}"
            )
        self.balances[(source, symbol)] = balance - amount
        self._credit(dest, symbol, amount)
        self.transfer_log.append(Transfer(symbol, source, dest, amount))

    def transfer_from(self, symbol: str, spender: str, source: str, dest: str, amount: int) -> None:
        """
        Move tokens from `source` to `dest` on behalf of `spender`.

        The allowance is consumed unless it is MAX_UINT256. An account moving
        its own tokens needs no allowance.

        Raises:
            InsufficientAllowance: If spender may not pull amount from source.
            InsufficientBalance: If source holds less than amount.
        """
        self.get_token(symbol)
        require_uint(amount, "amount")
        if spender != source:
            key = (source, spender, symbol)
            allowed = self.allowances.get(key, 0)
            if allowed < amount:
                raise InsufficientAllowance(
                    f"{spender} may pull {allowed} {symbol} from {source}, needs {amount}"
                )
            if allowed != MAX_UINT256:
                self.allowances[key] = allowed - amount
        self.transfer(symbol, source, dest, amount)

    def emit(self, event: Event) -> None:
        self.events.append(event)
        if self.verbose:
            print(f"  ↳ {event!r}")

    def _credit(self, account: str, symbol: str, amount: int) -> None:
        self.balances[(account, symbol)] = self.balances.get((account, symbol), 0) + amount

    # ========================================================================
    # ATOMIC EXECUTION
    # ========================================================================

    def snapshot(self) -> Dict[str, Any]:
        state = super().snapshot()
        for name in self._LOG_FIELDS:
            state[name] = len(getattr(self, name))
        return state

    def restore(self, state: Dict[str, Any]) -> None:
        super().restore(state)
        for name in self._LOG_FIELDS:
            del getattr(self, name)[state[name]:]

    @contextmanager
    def atomic(self, *participants: Snapshottable, label: str = "") -> Iterator[None]:
        """
        Run a block all-or-nothing.

        Snapshots this ledger and every participant before the block. If the
        block raises, every snapshot is restored and the exception propagates.
        Blocks nest: an inner rollback restores the inner snapshot, then the
        outer block sees the exception and restores its own.

        Example:
            with ledger.atomic(pool, label="withdraw"):
                pool.total_balance -= payout
                ledger.transfer("USDC", pool.address, owner, payout)
        """
        saved_ledger = self.snapshot()
        saved = [(p, p.snapshot()) for p in participants]
        try:
            yield
        except Exception as exc:
            self.restore(saved_ledger)
            for participant, state in saved:
                participant.restore(state)
            if self.verbose:
                prefix = f"{label}: " if label else ""
                print(f"✗ REJECTED: {prefix}{exc}")
            raise

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger's balances and logs.

        Components bound to this ledger are not cloned.
        """
        cloned = Ledger(self.name, verbose=self.verbose)
        cloned.tokens = dict(self.tokens)
        cloned.balances = dict(self.balances)
        cloned.allowances = dict(self.allowances)
        cloned.supplies = dict(self.supplies)
        cloned.events = list(self.events)
        cloned.transfer_log = list(self.transfer_log)
        return cloned

    def __repr__(self) -> str:
        return f"Ledger({self.name!r}, {len(self.tokens)} tokens, {len(self.events)} events)"
