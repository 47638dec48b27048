"""Shared defaults for market snapshot acquisition."""

DEFAULT_CATEGORY = "linear"
DEFAULT_SETTLE_COIN = "USDT"
DEFAULT_SCAN_INTERVAL = 300.0
DEFAULT_SYMBOL_LIMIT = 60
DEFAULT_KLINE_SYMBOLS = 20
DEFAULT_LIQUIDATION_WINDOW = 24 * 60 * 60.0
