"""Closed-position analytics: trade history and performance summaries."""

from .models import TradeRecord
from .performance import PerformanceSummary, PerformanceTracker, compute_summary
from .trade_ledger import TradeLedger

__all__ = [
    "PerformanceSummary",
    "PerformanceTracker",
    "TradeLedger",
    "TradeRecord",
    "compute_summary",
]
