"""Market snapshots and the feeds that build them."""

from .constants import (
    DEFAULT_CATEGORY,
    DEFAULT_KLINE_SYMBOLS,
    DEFAULT_LIQUIDATION_WINDOW,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_SETTLE_COIN,
    DEFAULT_SYMBOL_LIMIT,
)
from .liquidations import LiquidationAggregator
from .snapshots import LiquidationTotals, MarketSnapshot, SnapshotError, parse_ticker_snapshot

__all__ = [
    "DEFAULT_CATEGORY",
    "DEFAULT_KLINE_SYMBOLS",
    "DEFAULT_LIQUIDATION_WINDOW",
    "DEFAULT_SCAN_INTERVAL",
    "DEFAULT_SETTLE_COIN",
    "DEFAULT_SYMBOL_LIMIT",
    "LiquidationAggregator",
    "LiquidationTotals",
    "MarketSnapshot",
    "SnapshotError",
    "parse_ticker_snapshot",
]
