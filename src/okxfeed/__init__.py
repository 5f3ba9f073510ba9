"""
okxfeed: real-time OKX market-data subscription client.
"""

from .config import Settings, get_settings
from .data import OKXAPIError, OKXHistoryClient
from .stream import (
    ChannelFamily,
    OKXStreamClient,
    StreamMessage,
    Subscription,
)

__version__ = "0.1.0"

__all__ = [
    "OKXStreamClient",
    "OKXHistoryClient",
    "OKXAPIError",
    "Subscription",
    "ChannelFamily",
    "StreamMessage",
    "Settings",
    "get_settings",
]
