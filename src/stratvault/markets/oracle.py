"""Price oracle facade - converts amounts between denominations."""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol

from ..errors import InvalidData, MissingOracle

PRICE_DECIMALS = 8


class PriceOracle(Protocol):
    """Boundary consumed by the core: convert amounts, report feed health."""

    def convert(self, base: str, amount: int, quote: str) -> int:
        ...

    def has_feed(self, token: str) -> bool:
        ...


@dataclass
class PriceFeed:
    """USD price of a token as last reported."""
    price: int  # USD price scaled by 10**PRICE_DECIMALS
    decimals: int  # Token decimals
    updated_at: float  # Clock time of the last update
    validity: float  # Seconds the price stays fresh


class StaticPriceOracle:
    """In-memory USD price feeds with staleness windows."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.feeds: Dict[str, PriceFeed] = {}

    def set_price(
        self,
        token: str,
        usd_price: float,
        decimals: int = 18,
        validity: float = 86_400.0
    ) -> None:
        """
        Publish a price.

        Args:
            token: Token symbol
            usd_price: Price of one whole token in USD
            decimals: Token decimals
            validity: Seconds before the price counts as stale
        """
        if usd_price <= 0:
            raise InvalidData(f"Price for {token} must be positive, got {usd_price}")
        self.feeds[token] = PriceFeed(
            price=int(round(usd_price * 10 ** PRICE_DECIMALS)),
            decimals=decimals,
            updated_at=self.clock(),
            validity=validity,
        )

    def has_feed(self, token: str) -> bool:
        feed = self.feeds.get(token)
        if feed is None:
            return False
        return self.clock() - feed.updated_at <= feed.validity

    def convert(self, base: str, amount: int, quote: str) -> int:
        """
        Convert `amount` of `base` into `quote` units, rounded down.

        Raises:
            MissingOracle: If either feed is missing or stale
        """
        if base == quote:
            return amount
        for token in (base, quote):
            if not self.has_feed(token):
                raise MissingOracle(f"No fresh price feed for {token}")
        b, q = self.feeds[base], self.feeds[quote]
        return amount * b.price * 10 ** q.decimals // (q.price * 10 ** b.decimals)
