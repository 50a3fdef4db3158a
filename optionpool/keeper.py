"""
keeper.py - Expiry keeper

Walks a timeline and expires every ACTIVE option whose expiration has passed,
releasing its collateral back to the pool.

Execution order each step():
1. Advance the oracle cursor, if the oracle keeps one
2. Collect ACTIVE options with expiration < now
3. Unlock them in a single all-or-nothing batch
"""

from __future__ import annotations
from typing import Callable, List, Optional, Tuple

from .options import OptionsEngine


class ExpiryKeeper:
    """
    Periodic expiry of options.

    Unlocking is permissionless, so the keeper needs no role on the engine
    or the pools.
    """

    def __init__(self, engine: OptionsEngine, batch_size: Optional[int] = None):
        """
        Args:
            engine: Engine whose options are expired
            batch_size: Maximum options unlocked per step (default: no limit)
        """
        if batch_size is not None and batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.engine = engine
        self.batch_size = batch_size
        self.verbose = engine.ledger.verbose

    def expired_options(self, now: int) -> List[int]:
        """Ids of ACTIVE options that unlock() would accept at `now`, oldest first."""
        return [o.id for o in self.engine.active_options() if o.expiration < now]

    def step(self, now: int) -> List[int]:
        """
        Expire everything due at `now`.

        Returns:
            Ids of options expired in this step
        """
        advance = getattr(self.engine.oracle, "advance_to", None)
        if callable(advance):
            advance(now)
        due = self.expired_options(now)
        if self.batch_size is not None:
            due = due[:self.batch_size]
        if not due:
            return []
        if self.verbose:
            print(f"[KEEPER] Unlocking {len(due)} option(s) at {now}: {due}")
        self.engine.unlock_all(due, now)
        return due

    def run(
        self,
        timestamps: List[int],
        on_step: Optional[Callable[[int, List[int]], None]] = None,
    ) -> List[Tuple[int, List[int]]]:
        """
        Step through a timeline.

        Args:
            timestamps: Times to step at, in ascending order
            on_step: Optional callback invoked with (timestamp, expired ids)

        Returns:
            (timestamp, expired ids) for every step that expired something
        """
        history: List[Tuple[int, List[int]]] = []
        for now in sorted(timestamps):
            expired = self.step(now)
            if on_step is not None:
                on_step(now, expired)
            if expired:
                history.append((now, expired))
        return history
