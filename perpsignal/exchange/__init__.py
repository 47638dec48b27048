"""Bybit v5 connectivity: REST client, public stream and order gateways."""

from .bybit_v5 import BybitAPIError, BybitV5Client, EdgeProtectionError
from .bybit_ws import BybitPublicStream
from .gateway import BybitOrderGateway, PaperOrderGateway

__all__ = [
    "BybitAPIError",
    "BybitOrderGateway",
    "BybitPublicStream",
    "BybitV5Client",
    "EdgeProtectionError",
    "PaperOrderGateway",
]
