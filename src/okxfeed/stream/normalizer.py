"""
Inbound frame classification and payload normalization.

``parse_frames`` turns a raw text frame into typed frames:

- AckFrame: subscribe/unsubscribe confirmation (or rejection)
- ErrorFrame: wire-level error event
- NoticeFrame: out-of-band notice, e.g. scheduled service upgrades
- DataFrame: ``{arg, data}`` push carrying market data

``normalize`` converts the ``data`` list of a DataFrame into canonical events
using the normalizer registered for the channel's family. Numeric fields are
checked with ``decimal.Decimal`` but kept as the exchange's own strings so no
precision is lost.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import partial
import time
from typing import Any, Union

import orjson

from okxfeed.utils import get_logger

from .channels import family_of_channel
from .errors import ParseError
from .models import (
    BookLevel,
    BookSnapshot,
    CanonicalEvent,
    Candle,
    ChannelFamily,
    Side,
    TickerSnapshot,
    Trade,
)

logger = get_logger(__name__)

SUCCESS_CODE = "0"

SIDE_ALIASES: dict[str, Side] = {
    "buy": Side.BUY,
    "b": Side.BUY,
    "bid": Side.BUY,
    "sell": Side.SELL,
    "s": Side.SELL,
    "ask": Side.SELL,
    "a": Side.SELL,
}


# =============================================================================
# Frames
# =============================================================================


@dataclass(frozen=True)
class AckFrame:
    """Confirmation (or rejection, when ``code`` is non-zero) of a request."""

    event: str
    arg: dict[str, Any] | None = None
    code: str | None = None
    msg: str | None = None

    @property
    def ok(self) -> bool:
        return not self.code or self.code == SUCCESS_CODE


@dataclass(frozen=True)
class ErrorFrame:
    code: str | None
    msg: str | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoticeFrame:
    payload: dict[str, Any]


@dataclass(frozen=True)
class DataFrame:
    arg: dict[str, Any]
    data: list[Any]
    action: str | None = None

    @property
    def channel(self) -> str:
        return self.arg.get("channel", "")

    @property
    def instrument_id(self) -> str | None:
        return self.arg.get("instId")

    @property
    def is_snapshot(self) -> bool:
        return self.action == "snapshot"


Frame = Union[AckFrame, ErrorFrame, NoticeFrame, DataFrame]


def _ack(payload: Mapping[str, Any]) -> AckFrame:
    arg = payload.get("arg")
    if arg is not None and not isinstance(arg, dict):
        raise ParseError("acknowledgement arg is not an object", payload)
    code = payload.get("code")
    return AckFrame(
        event=payload["event"],
        arg=arg,
        code=str(code) if code is not None else None,
        msg=payload.get("msg"),
    )


def _error(payload: Mapping[str, Any]) -> ErrorFrame:
    code = payload.get("code")
    return ErrorFrame(
        code=str(code) if code is not None else None,
        msg=payload.get("msg"),
        payload=dict(payload),
    )


_EVENT_CLASSIFIERS: dict[str, Callable[[Mapping[str, Any]], Frame]] = {
    "subscribe": _ack,
    "unsubscribe": _ack,
    "error": _error,
    "notice": lambda payload: NoticeFrame(payload=dict(payload)),
}


def classify_frame(payload: Any) -> Frame | None:
    """Classify one decoded JSON object.

    Returns None for events with no meaning to subscribers (connection
    counters, login replies).

    Raises:
        ParseError: If the object is neither an event nor a data push
    """
    if not isinstance(payload, dict):
        raise ParseError("frame is not a JSON object", payload)

    event = payload.get("event")
    if event is not None:
        classifier = _EVENT_CLASSIFIERS.get(event)
        if classifier is None:
            logger.debug("frame_event_ignored", event_name=event)
            return None
        return classifier(payload)

    if isinstance(payload.get("arg"), dict) and "data" in payload:
        data = payload["data"]
        if not isinstance(data, list):
            raise ParseError("data push without a data list", payload)
        return DataFrame(arg=payload["arg"], data=data, action=payload.get("action"))

    raise ParseError("unrecognized frame shape", payload)


def parse_frames(raw: str | bytes) -> list[Frame]:
    """Decode a raw text frame; a JSON array yields one frame per element.

    Raises:
        ParseError: If the payload is not JSON or has an unknown shape
    """
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"frame is not valid JSON: {e}", raw) from e

    items = payload if isinstance(payload, list) else [payload]
    frames = []
    for item in items:
        frame = classify_frame(item)
        if frame is not None:
            frames.append(frame)
    return frames


# =============================================================================
# Field helpers
# =============================================================================


def _now_seconds() -> int:
    return int(time.time())


def to_seconds(value: Any) -> int:
    """Floor a millisecond timestamp (string or int) to epoch seconds."""
    try:
        return int(str(value)) // 1000
    except (TypeError, ValueError) as e:
        raise ParseError(f"invalid millisecond timestamp {value!r}", value) from e


def to_decimal_str(value: Any) -> str:
    """Validate a numeric field and return it as a string; blanks become "0"."""
    if value is None or value == "":
        return "0"
    text = str(value)
    try:
        Decimal(text)
    except InvalidOperation as e:
        raise ParseError(f"invalid decimal value {value!r}", value) from e
    return text


def normalize_side(value: Any) -> Side:
    """Map any spelling of a trade side onto Side."""
    side = SIDE_ALIASES.get(str(value).strip().lower()) if value is not None else None
    if side is None:
        raise ParseError(f"unknown trade side {value!r}", value)
    return side


# =============================================================================
# Per-family normalizers
# =============================================================================


def normalize_candle_row(row: Any, has_volume: bool = True) -> Candle:
    """Convert ``[ts, o, h, l, c, vol, ...]`` into a Candle.

    Index and mark-price candles carry ``[ts, o, h, l, c, confirm]`` and no
    volume; pass ``has_volume=False`` so volume is reported as "0".
    """
    if not isinstance(row, (list, tuple)) or len(row) < 5:
        raise ParseError("candle row must have at least 5 fields", row)
    volume = to_decimal_str(row[5]) if has_volume and len(row) > 5 else "0"
    return Candle(
        time=to_seconds(row[0]),
        open=to_decimal_str(row[1]),
        high=to_decimal_str(row[2]),
        low=to_decimal_str(row[3]),
        close=to_decimal_str(row[4]),
        volume=volume,
    )


def _normalize_candles(
    data: Sequence[Any], instrument_id: str | None, has_volume: bool
) -> list[CanonicalEvent]:
    return [normalize_candle_row(row, has_volume=has_volume) for row in data]


def _trade(item: Any, instrument_id: str | None) -> Trade:
    if isinstance(item, dict):
        trade_instrument = item.get("instId") or instrument_id or ""
        trade_id = item.get("tradeId")
        price, size, side, ts = item.get("px"), item.get("sz"), item.get("side"), item.get("ts")
    elif isinstance(item, (list, tuple)) and len(item) >= 5:
        # [tradeId, px, sz, side, ts, count]
        trade_instrument = instrument_id or ""
        trade_id, price, size, side, ts = item[:5]
    else:
        raise ParseError("unexpected trade record shape", item)

    return Trade(
        instrument_id=trade_instrument,
        id=str(trade_id or ""),
        price=to_decimal_str(price),
        size=to_decimal_str(size),
        side=normalize_side(side),
        time=to_seconds(ts or 0),
    )


def _normalize_trades(data: Sequence[Any], instrument_id: str | None) -> list[CanonicalEvent]:
    return [_trade(item, instrument_id) for item in data]


def _levels(raw_levels: Any) -> tuple[BookLevel, ...]:
    if not isinstance(raw_levels, list):
        return ()
    levels = []
    for level in raw_levels:
        if not isinstance(level, (list, tuple)) or len(level) < 2:
            raise ParseError("book level must be [price, size, ...]", level)
        levels.append(BookLevel(price=to_decimal_str(level[0]), size=to_decimal_str(level[1])))
    return tuple(levels)


def _book_snapshot(item: Any, instrument_id: str | None) -> BookSnapshot:
    if isinstance(item, dict) and ("bids" in item or "asks" in item):
        bids, asks, ts = item.get("bids"), item.get("asks"), item.get("ts")
        book_instrument = instrument_id or item.get("instId") or ""
    elif isinstance(item, (list, tuple)) and len(item) >= 2:
        # [bids, asks, ts, checksum]
        bids, asks = item[0], item[1]
        ts = item[2] if len(item) > 2 else None
        book_instrument = instrument_id or ""
    else:
        raise ParseError("unexpected order book shape", item)

    return BookSnapshot(
        instrument_id=book_instrument,
        bids=_levels(bids),
        asks=_levels(asks),
        time=to_seconds(ts) if ts else _now_seconds(),
    )


def _normalize_books(data: Sequence[Any], instrument_id: str | None) -> list[CanonicalEvent]:
    if not data:
        raise ParseError("empty order book payload", data)
    return [_book_snapshot(item, instrument_id) for item in data]


def ticker_from_record(item: Any, instrument_id: str | None = None) -> TickerSnapshot:
    """Build a TickerSnapshot from an OKX ticker object (WebSocket or REST)."""
    if not isinstance(item, dict):
        raise ParseError("ticker record must be an object", item)
    ts = item.get("ts")
    return TickerSnapshot(
        instrument_id=item.get("instId") or instrument_id or "",
        last=to_decimal_str(item.get("last")),
        bid=to_decimal_str(item.get("bidPx")),
        ask=to_decimal_str(item.get("askPx")),
        time=to_seconds(ts) if ts else _now_seconds(),
        last_size=to_decimal_str(item.get("lastSz")),
        bid_size=to_decimal_str(item.get("bidSz")),
        ask_size=to_decimal_str(item.get("askSz")),
        open_24h=to_decimal_str(item.get("open24h")),
        high_24h=to_decimal_str(item.get("high24h")),
        low_24h=to_decimal_str(item.get("low24h")),
        volume_24h=to_decimal_str(item.get("vol24h")),
        volume_ccy_24h=to_decimal_str(item.get("volCcy24h")),
    )


def _normalize_tickers(data: Sequence[Any], instrument_id: str | None) -> list[CanonicalEvent]:
    return [ticker_from_record(item, instrument_id) for item in data]


Normalizer = Callable[[Sequence[Any], Union[str, None]], list[CanonicalEvent]]

_NORMALIZERS: dict[ChannelFamily, Normalizer] = {
    ChannelFamily.CANDLE: partial(_normalize_candles, has_volume=True),
    ChannelFamily.INDEX_CANDLE: partial(_normalize_candles, has_volume=False),
    ChannelFamily.MARK_PRICE_CANDLE: partial(_normalize_candles, has_volume=False),
    ChannelFamily.TRADE: _normalize_trades,
    ChannelFamily.BOOK: _normalize_books,
    ChannelFamily.TICKER: _normalize_tickers,
}


def normalize(
    channel: str, data: Sequence[Any], instrument_id: str | None = None
) -> list[CanonicalEvent]:
    """Convert the ``data`` list of a push on ``channel`` into canonical events.

    Args:
        channel: Wire channel from the push ``arg``
        data: The push ``data`` list
        instrument_id: ``arg.instId``, used where records omit the instrument

    Raises:
        ParseError: If the channel is unknown or a record is malformed
    """
    family = family_of_channel(channel)
    if family is None:
        raise ParseError(f"no normalizer for channel {channel!r}", data)
    return _NORMALIZERS[family](data, instrument_id)
