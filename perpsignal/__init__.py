"""perpSignal: perpetual futures signal scanner and position lifecycle engine."""

__version__ = "0.1.0"
