from __future__ import annotations

"""Market snapshot value objects and parsing from Bybit ticker payloads."""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional


class SnapshotError(ValueError):
    """Raised when a ticker payload cannot form a valid snapshot."""


@dataclass(frozen=True, slots=True)
class LiquidationTotals:
    """Aggregated liquidation notional split by the side of the liquidated position."""

    buy_volume: float
    sell_volume: float

    @property
    def total(self) -> float:
        return self.buy_volume + self.sell_volume

    @property
    def imbalance(self) -> float:
        """Signed (sell - buy) / total, in [-1, 1]; 0 when empty."""
        total = self.total
        if total <= 0:
            return 0.0
        return (self.sell_volume - self.buy_volume) / total


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """One tick of market data for one symbol."""

    symbol: str
    price: float
    volume_24h: float
    change_24h: float
    funding_rate: float
    open_interest: float = 0.0  # contracts
    next_funding_time: Optional[datetime] = None
    change_1m: Optional[float] = None
    volume_1m: Optional[float] = None
    avg_volume_5m: Optional[float] = None
    liquidations: Optional[LiquidationTotals] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_valid(self) -> bool:
        if not self.symbol:
            return False
        if not _finite(self.price) or self.price <= 0:
            return False
        if not _finite(self.volume_24h) or self.volume_24h < 0:
            return False
        if self.volume_1m is not None and self.volume_1m < 0:
            return False
        if self.avg_volume_5m is not None and self.avg_volume_5m < 0:
            return False
        return True

    @property
    def volume_ratio(self) -> Optional[float]:
        """1m volume relative to the 5m average, or None when unavailable."""
        if self.volume_1m is None or self.avg_volume_5m is None:
            return None
        if self.avg_volume_5m <= 0:
            return None
        return self.volume_1m / self.avg_volume_5m

    def with_price(self, price: float, *, captured_at: Optional[datetime] = None) -> "MarketSnapshot":
        return replace(
            self,
            price=price,
            captured_at=captured_at or datetime.now(timezone.utc),
        )

    def with_liquidations(self, totals: Optional[LiquidationTotals]) -> "MarketSnapshot":
        return replace(self, liquidations=totals)


def _finite(value: float) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def _parse_timestamp(value: Any) -> Optional[datetime]:
    parsed = _to_float(value)
    if parsed is None or parsed <= 0:
        return None
    # bybit returns milliseconds
    if parsed > 1_000_000_000_000:
        parsed /= 1000.0
    return datetime.fromtimestamp(parsed, tz=timezone.utc)


def parse_ticker_snapshot(
    ticker: dict[str, Any],
    *,
    change_1m: Optional[float] = None,
    volume_1m: Optional[float] = None,
    avg_volume_5m: Optional[float] = None,
    liquidations: Optional[LiquidationTotals] = None,
    captured_at: Optional[datetime] = None,
) -> MarketSnapshot:
    """Build a snapshot from a v5 ``/market/tickers`` entry.

    ``price24hPcnt`` is a fraction on the wire and is stored as a percent.
    ``turnover24h`` (quote notional) is used as 24h volume.
    """
    symbol = str(ticker.get("symbol") or "").upper()
    if not symbol:
        raise SnapshotError("ticker payload missing symbol")
    price = _to_float(ticker.get("lastPrice"))
    if price is None or price <= 0:
        raise SnapshotError(f"{symbol}: invalid lastPrice {ticker.get('lastPrice')!r}")
    volume = _to_float(ticker.get("turnover24h"))
    if volume is None:
        volume = _to_float(ticker.get("volume24h"))
    if volume is None or volume < 0:
        raise SnapshotError(f"{symbol}: invalid 24h volume")
    change_fraction = _to_float(ticker.get("price24hPcnt"))
    if change_fraction is None:
        raise SnapshotError(f"{symbol}: missing price24hPcnt")
    funding_rate = _to_float(ticker.get("fundingRate"))
    if funding_rate is None:
        raise SnapshotError(f"{symbol}: missing fundingRate")
    open_interest = _to_float(ticker.get("openInterest"))
    if open_interest is None:
        notional = _to_float(ticker.get("openInterestValue"))
        open_interest = notional / price if notional is not None else 0.0
    return MarketSnapshot(
        symbol=symbol,
        price=price,
        volume_24h=volume,
        change_24h=change_fraction * 100.0,
        funding_rate=funding_rate,
        open_interest=max(0.0, open_interest),
        next_funding_time=_parse_timestamp(ticker.get("nextFundingTime")),
        change_1m=change_1m,
        volume_1m=volume_1m,
        avg_volume_5m=avg_volume_5m,
        liquidations=liquidations,
        captured_at=captured_at or datetime.now(timezone.utc),
    )


__all__ = [
    "LiquidationTotals",
    "MarketSnapshot",
    "SnapshotError",
    "parse_ticker_snapshot",
]
