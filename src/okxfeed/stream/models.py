"""
Data model of the streaming client.

Logical subscriptions, their wire identity (RegistryKey), the canonical events
produced by the normalizer and the message envelope delivered to callbacks.
Prices and sizes are kept as decimal strings exactly as the exchange sent them.
"""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union

from okxfeed.config.constants import TICKERS_ANY_TYPE, TICKERS_CHANNEL


class ChannelFamily(Enum):
    """Logical kinds of market-data stream."""

    CANDLE = "candle"
    INDEX_CANDLE = "index_candle"
    MARK_PRICE_CANDLE = "mark_price_candle"
    TRADE = "trade"
    BOOK = "book"
    TICKER = "ticker"


class ConnectionClass(Enum):
    """Physical socket a channel is served on."""

    PUBLIC = "public"
    BUSINESS = "business"


class ConnectionState(Enum):
    """WebSocket connection states."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class Side(Enum):
    """Aggressor side of a trade."""

    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Subscription:
    """A caller's interest in one stream, independent of wire encoding.

    Attributes:
        family: Kind of stream
        instrument_id: Instrument such as ``BTC-USDT`` or bare ``BTC``;
            optional only for tickers
        interval: Candle interval (``1m``, ``1H``, ``1D``...), candles only
        depth: Requested order-book depth, books only
        instrument_type: ``SPOT``, ``SWAP``... for ticker wildcards
        instrument_family: Instrument family such as ``BTC-USD``, tickers only
    """

    family: ChannelFamily
    instrument_id: str | None = None
    interval: str | None = None
    depth: int | None = None
    instrument_type: str | None = None
    instrument_family: str | None = None

    def __post_init__(self) -> None:
        if self.family is not ChannelFamily.TICKER and not self.instrument_id:
            raise ValueError(f"instrument_id is required for {self.family.value} subscriptions")
        if self.depth is not None and self.depth <= 0:
            raise ValueError(f"depth must be positive, got {self.depth}")

    @classmethod
    def candles(cls, instrument_id: str, interval: str | None = None) -> "Subscription":
        return cls(ChannelFamily.CANDLE, instrument_id=instrument_id, interval=interval)

    @classmethod
    def index_candles(cls, instrument_id: str, interval: str | None = None) -> "Subscription":
        return cls(ChannelFamily.INDEX_CANDLE, instrument_id=instrument_id, interval=interval)

    @classmethod
    def mark_price_candles(cls, instrument_id: str, interval: str | None = None) -> "Subscription":
        return cls(ChannelFamily.MARK_PRICE_CANDLE, instrument_id=instrument_id, interval=interval)

    @classmethod
    def trades(cls, instrument_id: str) -> "Subscription":
        return cls(ChannelFamily.TRADE, instrument_id=instrument_id)

    @classmethod
    def book(cls, instrument_id: str, depth: int | None = None) -> "Subscription":
        return cls(ChannelFamily.BOOK, instrument_id=instrument_id, depth=depth)

    @classmethod
    def ticker(
        cls,
        instrument_id: str | None = None,
        instrument_type: str | None = None,
        instrument_family: str | None = None,
    ) -> "Subscription":
        return cls(
            ChannelFamily.TICKER,
            instrument_id=instrument_id,
            instrument_type=instrument_type,
            instrument_family=instrument_family,
        )


@dataclass(frozen=True)
class RegistryKey:
    """Wire identity of a subscription.

    Two subscriptions the exchange treats as the same channel produce equal
    keys. ``str(key)`` is the canonical text form used in logs, e.g.
    ``candles:1H:BTC-USDT`` or ``tickers:SPOT``.
    """

    channel: str
    instrument_id: str | None = None
    instrument_type: str | None = None
    instrument_family: str | None = None

    def __str__(self) -> str:
        if self.channel == TICKERS_CHANNEL and self.instrument_id is None:
            parts = [self.channel, self.instrument_type or TICKERS_ANY_TYPE]
            if self.instrument_family:
                parts.append(self.instrument_family)
            return ":".join(parts)
        return f"{self.channel}:{self.instrument_id}"

    @property
    def is_wildcard(self) -> bool:
        """True for ticker keys selecting by instrument type rather than id."""
        return self.instrument_id is None

    def to_arg(self) -> dict[str, str]:
        """Build the ``args`` element of a subscribe/unsubscribe frame."""
        arg = {"channel": self.channel}
        if self.instrument_id is not None:
            arg["instId"] = self.instrument_id
        if self.instrument_type is not None:
            arg["instType"] = self.instrument_type
        if self.instrument_family is not None:
            arg["instFamily"] = self.instrument_family
        return arg


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar; ``time`` is the bar open in epoch seconds."""

    time: int
    open: str
    high: str
    low: str
    close: str
    volume: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Trade:
    """One public trade."""

    instrument_id: str
    id: str
    price: str
    size: str
    side: Side
    time: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        return data


@dataclass(frozen=True)
class BookLevel:
    """Aggregated price level; order-count metadata is discarded."""

    price: str
    size: str


@dataclass(frozen=True)
class BookSnapshot:
    """Order book levels, best price first on each side."""

    instrument_id: str
    bids: tuple[BookLevel, ...]
    asks: tuple[BookLevel, ...]
    time: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TickerSnapshot:
    """Best bid/ask, last trade and rolling 24h statistics for one instrument."""

    instrument_id: str
    last: str
    bid: str
    ask: str
    time: int
    last_size: str = "0"
    bid_size: str = "0"
    ask_size: str = "0"
    open_24h: str = "0"
    high_24h: str = "0"
    low_24h: str = "0"
    volume_24h: str = "0"
    volume_ccy_24h: str = "0"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


CanonicalEvent = Union[Candle, Trade, BookSnapshot, TickerSnapshot]


@dataclass(frozen=True)
class StreamMessage:
    """Envelope handed to subscriber callbacks.

    Attributes:
        channel: Display channel (``candles:1H``, ``books``, ``tickers``...) or
            a side channel (``notice``, ``subscribed``)
        data: Canonical events, or raw dicts for side channels
        is_snapshot: True when the exchange marked the push as a full snapshot
    """

    channel: str
    data: list[Any] = field(default_factory=list)
    is_snapshot: bool = False


MessageCallback = Callable[[StreamMessage], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]
ConnectionCallback = Callable[[], Union[None, Awaitable[None]]]
