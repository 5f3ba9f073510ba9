"""
REST data access for the okxfeed client.

Historical candles and ticker snapshots used to seed charts before the
WebSocket stream takes over.
"""

from .history import Instrument, OKXAPIError, OKXHistoryClient

__all__ = ["OKXHistoryClient", "OKXAPIError", "Instrument"]
