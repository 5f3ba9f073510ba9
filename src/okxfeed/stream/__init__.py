"""
Real-time OKX market-data streaming.

This module multiplexes logical subscriptions over the OKX public and business
WebSocket connections, survives disconnects and normalizes wire payloads into
canonical events.
"""

from .channels import (
    connection_class_for,
    display_channel,
    family_of_channel,
    instrument_ids_equivalent,
    normalize_instrument_id,
    registry_key_from_arg,
    to_registry_key,
    to_wire_channel,
)
from .client import OKXStreamClient, resolve_keys
from .connection import ConnectionManager
from .errors import (
    DispatchError,
    ParseError,
    ProtocolError,
    StreamError,
    TransportError,
)
from .models import (
    BookLevel,
    BookSnapshot,
    Candle,
    CanonicalEvent,
    ChannelFamily,
    ConnectionClass,
    ConnectionState,
    RegistryKey,
    Side,
    StreamMessage,
    Subscription,
    TickerSnapshot,
    Trade,
)
from .normalizer import normalize, parse_frames
from .registry import SubscriptionRegistry

__all__ = [
    # Client
    "OKXStreamClient",
    "ConnectionManager",
    "SubscriptionRegistry",
    "resolve_keys",
    # Models
    "ChannelFamily",
    "ConnectionClass",
    "ConnectionState",
    "Subscription",
    "RegistryKey",
    "StreamMessage",
    "Candle",
    "Trade",
    "Side",
    "BookLevel",
    "BookSnapshot",
    "TickerSnapshot",
    "CanonicalEvent",
    # Channel mapping
    "to_wire_channel",
    "to_registry_key",
    "registry_key_from_arg",
    "normalize_instrument_id",
    "instrument_ids_equivalent",
    "family_of_channel",
    "connection_class_for",
    "display_channel",
    # Normalization
    "parse_frames",
    "normalize",
    # Errors
    "StreamError",
    "TransportError",
    "ProtocolError",
    "ParseError",
    "DispatchError",
]
