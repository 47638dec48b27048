"""Market data acquisition, wallet lookups and signal persistence."""

from .signal_store import SignalStore
from .wallet import WalletBalanceReader, WalletSnapshot, parse_wallet_response

__all__ = [
    "SignalStore",
    "WalletBalanceReader",
    "WalletSnapshot",
    "parse_wallet_response",
]
