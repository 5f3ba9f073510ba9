"""
Mapping between logical subscriptions and OKX wire channels.

Everything here is a pure function. The same rules build keys from a caller's
Subscription and from the ``arg`` object the exchange echoes back in
acknowledgements and data pushes, so the two sides always reconcile to one
RegistryKey even when the instrument ids are spelled differently.
"""

from collections.abc import Callable, Mapping
from typing import Any

from okxfeed.config.constants import (
    BOOK_CHANNEL_PREFIXES,
    BOOK_DEPTH_CHANNELS,
    BOOKS_CHANNEL,
    BUSINESS_CHANNEL_PREFIXES,
    CANDLES_CHANNEL,
    DEFAULT_CANDLE_INTERVAL,
    DEFAULT_QUOTE_CURRENCY,
    INDEX_CANDLE_CHANNEL,
    INDEX_QUOTE_CURRENCY,
    INTERVAL_TO_BAR,
    MARK_PRICE_CANDLE_CHANNEL,
    TICKERS_ANY_TYPE,
    TICKERS_CHANNEL,
    TRADES_CHANNEL,
)
from okxfeed.utils import get_logger

from .models import ChannelFamily, ConnectionClass, RegistryKey, Subscription

logger = get_logger(__name__)

# Families whose channels only exist for USD-quoted indices
USD_INDEX_FAMILIES = frozenset({ChannelFamily.INDEX_CANDLE, ChannelFamily.MARK_PRICE_CANDLE})


# =============================================================================
# Instrument ids
# =============================================================================


def to_usd_quote(instrument_id: str) -> str:
    """Rewrite an instrument id onto its USD-quoted index form.

    ``BTC`` and ``BTC-USDT`` both become ``BTC-USD``; ids with any other quote
    are returned upper-cased but otherwise unchanged.
    """
    instrument_id = instrument_id.strip().upper()
    if "-" not in instrument_id:
        return f"{instrument_id}-{INDEX_QUOTE_CURRENCY}"
    suffix = f"-{DEFAULT_QUOTE_CURRENCY}"
    if instrument_id.endswith(suffix):
        return instrument_id[: -len(suffix)] + f"-{INDEX_QUOTE_CURRENCY}"
    return instrument_id


def normalize_instrument_id(instrument_id: str, family: ChannelFamily) -> str:
    """Canonical spelling of ``instrument_id`` for channels of ``family``."""
    if family in USD_INDEX_FAMILIES:
        return to_usd_quote(instrument_id)
    instrument_id = instrument_id.strip().upper()
    if "-" not in instrument_id:
        return f"{instrument_id}-{DEFAULT_QUOTE_CURRENCY}"
    return instrument_id


def instrument_ids_equivalent(a: str | None, b: str | None) -> bool:
    """True when two ids name the same instrument modulo USDT/USD quoting."""
    if not a or not b:
        return False
    return to_usd_quote(a) == to_usd_quote(b)


def normalize_interval(interval: str | None) -> str:
    """OKX bar name for ``interval``; dashboard names like ``1h`` are translated."""
    if not interval:
        return DEFAULT_CANDLE_INTERVAL
    return INTERVAL_TO_BAR.get(interval, interval)


# =============================================================================
# Subscription -> wire
# =============================================================================


def _candles_channel(subscription: Subscription) -> str:
    return f"{CANDLES_CHANNEL}:{normalize_interval(subscription.interval)}"


def _index_candle_channel(subscription: Subscription) -> str:
    return f"{INDEX_CANDLE_CHANNEL}{normalize_interval(subscription.interval)}"


def _mark_price_candle_channel(subscription: Subscription) -> str:
    return f"{MARK_PRICE_CANDLE_CHANNEL}{normalize_interval(subscription.interval)}"


def _book_channel(subscription: Subscription) -> str:
    # Unsupported depths fall back to the full book channel
    if subscription.depth is None:
        return BOOKS_CHANNEL
    return BOOK_DEPTH_CHANNELS.get(subscription.depth, BOOKS_CHANNEL)


_CHANNEL_BUILDERS: Mapping[ChannelFamily, Callable[[Subscription], str]] = {
    ChannelFamily.CANDLE: _candles_channel,
    ChannelFamily.INDEX_CANDLE: _index_candle_channel,
    ChannelFamily.MARK_PRICE_CANDLE: _mark_price_candle_channel,
    ChannelFamily.TRADE: lambda subscription: TRADES_CHANNEL,
    ChannelFamily.BOOK: _book_channel,
    ChannelFamily.TICKER: lambda subscription: TICKERS_CHANNEL,
}


def to_wire_channel(subscription: Subscription) -> str:
    """Vendor channel name for ``subscription``."""
    return _CHANNEL_BUILDERS[subscription.family](subscription)


def _ticker_key(
    instrument_id: str | None,
    instrument_type: str | None,
    instrument_family: str | None,
) -> RegistryKey:
    if instrument_id:
        return RegistryKey(
            TICKERS_CHANNEL,
            instrument_id=normalize_instrument_id(instrument_id, ChannelFamily.TICKER),
        )
    return RegistryKey(
        TICKERS_CHANNEL,
        instrument_type=(instrument_type or TICKERS_ANY_TYPE).upper(),
        instrument_family=instrument_family.upper() if instrument_family else None,
    )


def to_registry_key(subscription: Subscription) -> RegistryKey:
    """Registry key of ``subscription``; equal keys mean one wire channel."""
    if subscription.family is ChannelFamily.TICKER:
        return _ticker_key(
            subscription.instrument_id,
            subscription.instrument_type,
            subscription.instrument_family,
        )
    return RegistryKey(
        to_wire_channel(subscription),
        instrument_id=normalize_instrument_id(subscription.instrument_id, subscription.family),
    )


# =============================================================================
# Wire -> logical
# =============================================================================


def family_of_channel(channel: str) -> ChannelFamily | None:
    """Logical family of a wire channel name, or None if unrecognized."""
    if channel.startswith(INDEX_CANDLE_CHANNEL):
        return ChannelFamily.INDEX_CANDLE
    if channel.startswith(MARK_PRICE_CANDLE_CHANNEL):
        return ChannelFamily.MARK_PRICE_CANDLE
    if channel.startswith("candle"):
        return ChannelFamily.CANDLE
    if channel.startswith(TRADES_CHANNEL):
        return ChannelFamily.TRADE
    if channel.startswith(BOOK_CHANNEL_PREFIXES):
        return ChannelFamily.BOOK
    if channel == TICKERS_CHANNEL:
        return ChannelFamily.TICKER
    return None


def registry_key_from_arg(arg: Mapping[str, Any] | None) -> RegistryKey | None:
    """Rebuild the registry key of an inbound ``arg`` object.

    Returns None when the arg lacks the fields needed to identify a channel.
    """
    if not arg or not arg.get("channel"):
        logger.warning("channel_arg_invalid", arg=arg)
        return None

    channel = arg["channel"]
    if channel == TICKERS_CHANNEL:
        return _ticker_key(arg.get("instId"), arg.get("instType"), arg.get("instFamily"))

    instrument_id = arg.get("instId")
    if not instrument_id:
        logger.warning("channel_arg_missing_instrument", channel=channel)
        return None

    if family_of_channel(channel) in USD_INDEX_FAMILIES:
        instrument_id = to_usd_quote(instrument_id)
    return RegistryKey(channel, instrument_id=instrument_id)


def connection_class_for(channel: str) -> ConnectionClass:
    """Socket class serving ``channel``."""
    if channel.startswith(BUSINESS_CHANNEL_PREFIXES):
        return ConnectionClass.BUSINESS
    return ConnectionClass.PUBLIC


def display_channel(channel: str) -> str:
    """Channel name reported to callbacks; parameter suffixes are dropped
    for books and index/mark-price candles."""
    family = family_of_channel(channel)
    if family is ChannelFamily.BOOK:
        return BOOKS_CHANNEL
    if family is ChannelFamily.INDEX_CANDLE:
        return INDEX_CANDLE_CHANNEL
    if family is ChannelFamily.MARK_PRICE_CANDLE:
        return MARK_PRICE_CANDLE_CHANNEL
    return channel
