"""
oracle.py - Price oracles for option pricing and settlement

Classes:
- PriceOracle: Protocol defining the oracle interface
- StaticPriceOracle: A single settable price
- TimeSeriesPriceOracle: Historical prices with a time cursor

Prices are ints with 8 decimals (50000e8 == 50,000 USD).
"""

from __future__ import annotations
from bisect import bisect_right
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from .core import StalePrice, InvalidParameter, require_uint


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    The price calculator and the options engine only read current_price().
    """

    def current_price(self) -> int:
        """Latest price of the base asset in the stable asset, 8 decimals."""
        ...


class StaticPriceOracle:
    """Oracle with a single price that only changes through set_price()."""

    def __init__(self, price: int):
        self._price = self._validate(price)

    @staticmethod
    def _validate(price: int) -> int:
        if require_uint(price, "price") == 0:
            raise InvalidParameter("Oracle price must be positive")
        return price

    def current_price(self) -> int:
        return self._price

    def set_price(self, price: int) -> None:
        self._price = self._validate(price)

    def __repr__(self):
        return f"StaticPriceOracle({self._price})"


class TimeSeriesPriceOracle:
    """
    Oracle backed by timestamped observations.

    current_price() returns the latest observation at or before the cursor
    set by advance_to(). Lookups use bisect, so observations may be added in
    any order.
    """

    def __init__(self, observations: Optional[List[Tuple[int, int]]] = None):
        """
        Args:
            observations: Optional (timestamp, price) pairs.
        """
        self._timestamps: List[int] = []
        self._prices: List[int] = []
        self._now: Optional[int] = None
        for timestamp, price in observations or []:
            self.add_price(timestamp, price)

    def add_price(self, timestamp: int, price: int) -> None:
        """Record a price. A second observation at the same timestamp replaces the first."""
        require_uint(timestamp, "timestamp")
        if require_uint(price, "price") == 0:
            raise InvalidParameter("Oracle price must be positive")
        idx = bisect_right(self._timestamps, timestamp)
        if idx > 0 and self._timestamps[idx - 1] == timestamp:
            self._prices[idx - 1] = price
            return
        self._timestamps.insert(idx, timestamp)
        self._prices.insert(idx, price)

    def price_at(self, timestamp: int) -> int:
        """
        Latest price at or before timestamp.

        Raises:
            StalePrice: If no observation exists at or before timestamp.
        """
        idx = bisect_right(self._timestamps, timestamp)
        if idx == 0:
            raise StalePrice(f"No price at or before {timestamp}")
        return self._prices[idx - 1]

    def advance_to(self, now: int) -> None:
        """Move the cursor used by current_price(). Time never goes backwards."""
        require_uint(now, "now")
        if self._now is not None and now < self._now:
            raise InvalidParameter(f"Cannot move oracle time backwards: {now} < {self._now}")
        self._now = now

    def current_price(self) -> int:
        if self._now is None:
            if not self._prices:
                raise StalePrice("Oracle has no observations")
            return self._prices[-1]
        return self.price_at(self._now)

    def __repr__(self):
        return f"TimeSeriesPriceOracle({len(self._timestamps)} observations, now={self._now})"
