from __future__ import annotations

"""Optional microstructure feeds consumed by the flow/cross-market heuristics.

Nothing in this package produces these values from the exchange today; they
are injection points. A heuristic whose feed is missing, or whose feed returns
``None`` for a symbol, skips that symbol.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol


@dataclass(frozen=True, slots=True)
class WhaleFlow:
    large_transactions: int
    whale_volume: float
    exchange_inflow: float
    exchange_outflow: float

    @property
    def flow_ratio(self) -> float:
        """(outflow - inflow) / (inflow + outflow); positive means net outflow."""
        total = self.exchange_inflow + self.exchange_outflow
        if total <= 0:
            return 0.0
        return (self.exchange_outflow - self.exchange_inflow) / total


@dataclass(frozen=True, slots=True)
class OrderbookDepth:
    bid_volume: float
    ask_volume: float
    spread_pct: float

    @property
    def bid_ask_ratio(self) -> float:
        return self.bid_volume / (self.ask_volume or 1.0)


@dataclass(frozen=True, slots=True)
class NewsSentiment:
    news_score: float  # 0..1
    sentiment: float  # -1..1


@dataclass(frozen=True, slots=True)
class CvdDelta:
    futures_delta: float
    spot_delta: float
    spot_volume_spike: bool = False


class MarketFeed(Protocol):
    def whale_flow(self, symbol: str) -> Optional[WhaleFlow]: ...

    def orderbook_depth(self, symbol: str) -> Optional[OrderbookDepth]: ...

    def venue_prices(self, symbol: str) -> Optional[Mapping[str, float]]: ...

    def news_sentiment(self, symbol: str) -> Optional[NewsSentiment]: ...

    def cvd_delta(self, symbol: str) -> Optional[CvdDelta]: ...


class StaticMarketFeed:
    """Dictionary-backed feed, for replaying recorded data or wiring tests."""

    def __init__(
        self,
        *,
        whale: Optional[Mapping[str, WhaleFlow]] = None,
        depth: Optional[Mapping[str, OrderbookDepth]] = None,
        venues: Optional[Mapping[str, Mapping[str, float]]] = None,
        news: Optional[Mapping[str, NewsSentiment]] = None,
        cvd: Optional[Mapping[str, CvdDelta]] = None,
    ) -> None:
        self._whale = dict(whale or {})
        self._depth = dict(depth or {})
        self._venues = dict(venues or {})
        self._news = dict(news or {})
        self._cvd = dict(cvd or {})

    def whale_flow(self, symbol: str) -> Optional[WhaleFlow]:
        return self._whale.get(symbol)

    def orderbook_depth(self, symbol: str) -> Optional[OrderbookDepth]:
        return self._depth.get(symbol)

    def venue_prices(self, symbol: str) -> Optional[Mapping[str, float]]:
        return self._venues.get(symbol)

    def news_sentiment(self, symbol: str) -> Optional[NewsSentiment]:
        return self._news.get(symbol)

    def cvd_delta(self, symbol: str) -> Optional[CvdDelta]:
        return self._cvd.get(symbol)


__all__ = [
    "CvdDelta",
    "MarketFeed",
    "NewsSentiment",
    "OrderbookDepth",
    "StaticMarketFeed",
    "WhaleFlow",
]
