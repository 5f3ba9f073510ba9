"""
Protocol constants for the OKX v5 market-data API.

Endpoints, channel names and the defaults of the connection policy. All
constants are immutable (Final).
"""

from typing import Final


# =============================================================================
# Endpoints
# =============================================================================

OKX_WS_PUBLIC_URL: Final[str] = "wss://ws.okx.com:8443/ws/v5/public"
"""Socket for generic public channels: candles, trades, books, tickers."""

OKX_WS_BUSINESS_URL: Final[str] = "wss://ws.okx.com:8443/ws/v5/business"
"""Socket for derived channels: index candles and mark-price candles."""

OKX_REST_BASE_URL: Final[str] = "https://www.okx.com"


# =============================================================================
# Channel names
# =============================================================================

CANDLES_CHANNEL: Final[str] = "candles"
INDEX_CANDLE_CHANNEL: Final[str] = "index-candle"
MARK_PRICE_CANDLE_CHANNEL: Final[str] = "mark-price-candle"
TRADES_CHANNEL: Final[str] = "trades"
BOOKS_CHANNEL: Final[str] = "books"
TICKERS_CHANNEL: Final[str] = "tickers"

BUSINESS_CHANNEL_PREFIXES: Final[tuple[str, ...]] = (
    INDEX_CANDLE_CHANNEL,
    MARK_PRICE_CANDLE_CHANNEL,
)
"""Channels served by the business socket rather than the public one."""

BOOK_DEPTH_CHANNELS: Final[dict[int, str]] = {
    1: "bbo-tbt",
    5: "books5",
}
"""Depth variants with a dedicated channel; every other depth uses BOOKS_CHANNEL."""

BOOK_CHANNEL_PREFIXES: Final[tuple[str, ...]] = ("books", "bbo-tbt")

NOTICE_CHANNEL: Final[str] = "notice"
SUBSCRIBED_CHANNEL: Final[str] = "subscribed"

TICKERS_ANY_TYPE: Final[str] = "ANY"
"""Instrument-type placeholder for a tickers subscription with no filter."""


# =============================================================================
# Instruments
# =============================================================================

DEFAULT_CANDLE_INTERVAL: Final[str] = "1H"
DEFAULT_QUOTE_CURRENCY: Final[str] = "USDT"
INDEX_QUOTE_CURRENCY: Final[str] = "USD"
DEFAULT_INSTRUMENT_TYPE: Final[str] = "SPOT"


# =============================================================================
# Connection policy
# =============================================================================

DEFAULT_MAX_RECONNECT_ATTEMPTS: Final[int] = 5
DEFAULT_RECONNECT_BASE_DELAY: Final[float] = 1.0
DEFAULT_RECONNECT_MAX_DELAY: Final[float] = 30.0

DEFAULT_HEARTBEAT_INTERVAL: Final[float] = 25.0
"""Idle seconds before a liveness ping; OKX drops sockets silent for 30s."""

DEFAULT_HEARTBEAT_GRACE: Final[float] = 5.0

PING_FRAME: Final[str] = "ping"
PONG_FRAME: Final[str] = "pong"


# =============================================================================
# REST
# =============================================================================

REST_CANDLES_PATH: Final[str] = "/api/v5/market/candles"
REST_TICKER_PATH: Final[str] = "/api/v5/market/ticker"
REST_TICKERS_PATH: Final[str] = "/api/v5/market/tickers"
REST_INSTRUMENTS_PATH: Final[str] = "/api/v5/public/instruments"
REST_MAX_CANDLES: Final[int] = 100
REST_SUCCESS_CODE: Final[str] = "0"

INTERVAL_TO_BAR: Final[dict[str, str]] = {
    "1min": "1m",
    "5min": "5m",
    "1h": "1H",
    "4h": "4H",
    "1d": "1D",
    "3d": "3D",
    "1w": "1W",
}
"""Dashboard interval names mapped onto OKX bar sizes."""
