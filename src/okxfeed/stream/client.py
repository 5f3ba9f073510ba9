"""
OKX streaming client facade.

OKXStreamClient is the only entry point subscribers use. It owns one
ConnectionManager per connection class (public and business), routes each
subscription to the right socket, reference-counts subscriptions so that the
exchange sees a single subscribe per wire channel, and dispatches normalized
messages to callbacks.

Example:
    ```python
    client = OKXStreamClient()

    async def on_candle(message: StreamMessage) -> None:
        for candle in message.data:
            print(candle.time, candle.close)

    unsubscribe = await client.subscribe(Subscription.candles("BTC", "1H"), on_candle)
    ...
    unsubscribe()
    await client.disconnect()
    ```
"""

import asyncio
from collections.abc import Callable, Coroutine, Mapping
from functools import partial
from typing import Any

from okxfeed.config import Settings, get_settings
from okxfeed.config.constants import (
    DEFAULT_INSTRUMENT_TYPE,
    NOTICE_CHANNEL,
    SUBSCRIBED_CHANNEL,
    TICKERS_ANY_TYPE,
    TICKERS_CHANNEL,
)
from okxfeed.utils import get_logger

from .channels import (
    connection_class_for,
    display_channel,
    family_of_channel,
    instrument_ids_equivalent,
    registry_key_from_arg,
    to_registry_key,
)
from .connection import ConnectionManager, SocketFactory
from .errors import DispatchError, ParseError, ProtocolError, StreamError
from .models import (
    ChannelFamily,
    ConnectionCallback,
    ConnectionClass,
    ErrorCallback,
    MessageCallback,
    RegistryKey,
    StreamMessage,
    Subscription,
)
from .normalizer import AckFrame, DataFrame, ErrorFrame, Frame, NoticeFrame, normalize, parse_frames
from .registry import SubscriptionRegistry

logger = get_logger(__name__)

Registry = SubscriptionRegistry[RegistryKey, MessageCallback]


# =============================================================================
# Dispatch resolution
# =============================================================================


def _exact_keys(registry: Registry, arg: Mapping[str, Any]) -> list[RegistryKey]:
    key = registry_key_from_arg(arg)
    if key is not None and key in registry:
        return [key]
    return []


def _wildcard_keys(registry: Registry, arg: Mapping[str, Any]) -> list[RegistryKey]:
    """Ticker pushes also reach subscribers of their type+family, type or ANY."""
    if arg.get("channel") != TICKERS_CHANNEL:
        return []

    instrument_type = (arg.get("instType") or "").upper() or None
    instrument_family = (arg.get("instFamily") or "").upper() or None

    candidates = []
    if instrument_type and instrument_family:
        candidates.append(
            RegistryKey(
                TICKERS_CHANNEL,
                instrument_type=instrument_type,
                instrument_family=instrument_family,
            )
        )
    if instrument_type:
        candidates.append(RegistryKey(TICKERS_CHANNEL, instrument_type=instrument_type))
    candidates.append(RegistryKey(TICKERS_CHANNEL, instrument_type=TICKERS_ANY_TYPE))

    return [key for key in dict.fromkeys(candidates) if key in registry]


def _aliased_keys(registry: Registry, arg: Mapping[str, Any]) -> list[RegistryKey]:
    """Keys of the same channel whose instrument differs only by USDT/USD quote.

    Order-book depth variants (books, books5, bbo-tbt) count as one channel.
    """
    channel = arg.get("channel")
    instrument_id = arg.get("instId")
    if not channel or not instrument_id:
        return []
    family = family_of_channel(channel)
    if family is None or family is ChannelFamily.TICKER:
        return []

    matches = []
    for key in registry.keys():
        if key.instrument_id is None or family_of_channel(key.channel) is not family:
            continue
        if family is not ChannelFamily.BOOK and key.channel != channel:
            continue
        if instrument_ids_equivalent(key.instrument_id, instrument_id):
            matches.append(key)
    return matches


MATCH_PASSES = (_exact_keys, _wildcard_keys, _aliased_keys)


def resolve_keys(registry: Registry, arg: Mapping[str, Any] | None) -> list[RegistryKey]:
    """Registry keys an inbound ``arg`` is delivered to.

    Passes run in order (exact, wildcard, aliased); the first pass that finds
    any key wins.
    """
    if not arg:
        return []
    for match in MATCH_PASSES:
        keys = match(registry, arg)
        if keys:
            return keys
    return []


# =============================================================================
# Client
# =============================================================================


class OKXStreamClient:
    """Multiplexes logical market-data subscriptions over OKX WebSockets."""

    def __init__(
        self,
        settings: Settings | None = None,
        socket_factory: SocketFactory | None = None,
    ):
        """
        Initialize the streaming client.

        Args:
            settings: Application settings (defaults to ``get_settings()``)
            socket_factory: Replacement for ``websockets.connect``, mainly for tests
        """
        self.settings = settings or get_settings()
        urls = {
            ConnectionClass.PUBLIC: self.settings.okx.ws_public_url,
            ConnectionClass.BUSINESS: self.settings.okx.ws_business_url,
        }

        self._connections: dict[ConnectionClass, ConnectionManager] = {}
        for connection_class, url in urls.items():
            connection = ConnectionManager.from_settings(
                url,
                connection_class.value,
                self.settings.stream,
                socket_factory=socket_factory,
            )
            connection.set_message_handler(partial(self._handle_raw, connection_class))
            connection.add_open_hook(partial(self._on_connection_open, connection_class))
            connection.add_close_hook(partial(self._on_connection_close, connection_class))
            connection.add_error_hook(self._notify_error)
            self._connections[connection_class] = connection

        self._error_callbacks: list[ErrorCallback] = []
        self._connect_callbacks: list[ConnectionCallback] = []
        self._disconnect_callbacks: list[ConnectionCallback] = []

        self._frame_handlers: dict[type, Callable[[ConnectionManager, Any], Coroutine]] = {
            AckFrame: self._handle_ack,
            ErrorFrame: self._handle_error_frame,
            NoticeFrame: self._handle_notice,
            DataFrame: self._handle_data,
        }

    def __repr__(self) -> str:
        states = {cls.value: conn.state.value for cls, conn in self._connections.items()}
        return f"OKXStreamClient({states})"

    async def __aenter__(self) -> "OKXStreamClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def connection(self, connection_class: ConnectionClass) -> ConnectionManager:
        """ConnectionManager serving ``connection_class``."""
        return self._connections[connection_class]

    def _connection_for(self, key: RegistryKey) -> ConnectionManager:
        return self._connections[connection_class_for(key.channel)]

    # -------------------------------------------------------------- lifecycle

    async def connect(self) -> None:
        """Open both connections.

        Raises:
            TransportError: If either connection failed to open; the failed
                connection keeps retrying in the background
        """
        await asyncio.gather(*(connection.connect() for connection in self._connections.values()))

    async def disconnect(self) -> None:
        """Close both connections and forget every subscription."""
        for connection in self._connections.values():
            await connection.close()
            connection.registry.clear()
        logger.info("stream_client_disconnected")

    def is_connected(self) -> bool:
        """True while at least one connection is open."""
        return any(connection.is_connected for connection in self._connections.values())

    @property
    def stats(self) -> dict[str, Any]:
        """Per-connection statistics keyed by connection class."""
        return {
            connection_class.value: connection.stats
            for connection_class, connection in self._connections.items()
        }

    # ----------------------------------------------------------------- hooks

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback for TransportError and ProtocolError."""
        self._error_callbacks.append(callback)

    def on_connect(self, callback: ConnectionCallback) -> None:
        """Register a callback run after any connection opened and resubscribed."""
        self._connect_callbacks.append(callback)

    def on_disconnect(self, callback: ConnectionCallback) -> None:
        self._disconnect_callbacks.append(callback)

    async def _run_callbacks(self, callbacks: list[Callable[..., Any]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("stream_hook_error", error=str(e), exc_info=True)

    async def _notify_error(self, error: StreamError) -> None:
        await self._run_callbacks(self._error_callbacks, error)

    async def _on_connection_open(self, connection_class: ConnectionClass) -> None:
        connection = self._connections[connection_class]
        keys = connection.registry.keys()
        if keys:
            logger.info(
                "stream_resubscribing",
                connection=connection.name,
                keys=[str(key) for key in keys],
            )
        for key in keys:
            self._queue_request("subscribe", connection, key)
        await connection.flush()
        await self._run_callbacks(self._connect_callbacks)

    async def _on_connection_close(self, connection_class: ConnectionClass) -> None:
        await self._run_callbacks(self._disconnect_callbacks)

    # ---------------------------------------------------------- subscriptions

    async def subscribe(
        self, subscription: Subscription, callback: MessageCallback
    ) -> Callable[[], None]:
        """
        Register ``callback`` for ``subscription``.

        The first callback for a wire channel sends a subscribe frame; while
        the connection is not open the frame is deferred to the resubscription
        that runs when it opens. Connection failures are logged, not raised;
        reconnection continues in the background.

        Returns:
            A function that unsubscribes this callback
        """
        key = to_registry_key(subscription)
        connection = self._connection_for(key)
        first = connection.registry.add(key, callback)

        logger.debug(
            "stream_subscribed",
            key=str(key),
            connection=connection.name,
            subscribers=connection.registry.subscriber_count(key),
        )

        if first:
            if connection.is_connected:
                self._queue_request("subscribe", connection, key)
                await connection.flush()
            else:
                try:
                    await connection.connect()
                except StreamError as e:
                    logger.warning("stream_subscribe_deferred", key=str(key), error=str(e))

        return partial(self.unsubscribe, subscription, callback)

    def unsubscribe(self, subscription: Subscription, callback: MessageCallback) -> None:
        """Remove ``callback`` from ``subscription``; it receives nothing afterwards.

        When the last callback of a wire channel goes away an unsubscribe
        frame is queued behind every earlier control frame of its connection.
        Unknown pairs are ignored.
        """
        key = to_registry_key(subscription)
        connection = self._connection_for(key)
        if not connection.registry.remove(key, callback):
            return

        logger.debug("stream_unsubscribed", key=str(key), connection=connection.name)
        if connection.is_connected:
            self._queue_request("unsubscribe", connection, key)

    async def subscribe_instrument_type_tickers(
        self,
        callback: MessageCallback,
        instrument_type: str = DEFAULT_INSTRUMENT_TYPE,
    ) -> Callable[[], None]:
        """Tickers of every instrument of ``instrument_type``."""
        return await self.subscribe(Subscription.ticker(instrument_type=instrument_type), callback)

    async def subscribe_ticker(
        self, instrument_id: str, callback: MessageCallback
    ) -> Callable[[], None]:
        return await self.subscribe(Subscription.ticker(instrument_id=instrument_id), callback)

    def _queue_request(self, op: str, connection: ConnectionManager, key: RegistryKey) -> bool:
        return connection.enqueue({"op": op, "args": [key.to_arg()]})

    # -------------------------------------------------------------- dispatch

    async def _handle_raw(self, connection_class: ConnectionClass, raw: str) -> None:
        connection = self._connections[connection_class]
        try:
            frames = parse_frames(raw)
        except ParseError as e:
            logger.warning(
                "stream_frame_unparseable",
                connection=connection.name,
                error=str(e),
                raw=raw,
            )
            return

        for frame in frames:
            await self._frame_handlers[type(frame)](connection, frame)

    async def _handle_ack(self, connection: ConnectionManager, frame: AckFrame) -> None:
        if not frame.ok:
            error = ProtocolError(
                frame.msg or f"{frame.event} rejected",
                code=frame.code,
                arg=frame.arg,
            )
            logger.error(
                "stream_request_rejected",
                connection=connection.name,
                event_name=frame.event,
                code=frame.code,
                msg=frame.msg,
                arg=frame.arg,
            )
            await self._notify_error(error)
            return

        if frame.event != "subscribe" or not frame.arg:
            logger.debug("stream_ack", connection=connection.name, event_name=frame.event, arg=frame.arg)
            return

        keys = resolve_keys(connection.registry, frame.arg)
        logger.debug("stream_subscription_confirmed", connection=connection.name, arg=frame.arg)
        await self._deliver(
            connection.registry,
            keys,
            StreamMessage(channel=SUBSCRIBED_CHANNEL, data=[frame.arg]),
        )

    async def _handle_error_frame(self, connection: ConnectionManager, frame: ErrorFrame) -> None:
        logger.error("stream_error_event", connection=connection.name, code=frame.code, msg=frame.msg)
        await self._notify_error(ProtocolError(frame.msg or "error event", code=frame.code))

    async def _handle_notice(self, connection: ConnectionManager, frame: NoticeFrame) -> None:
        logger.warning("stream_notice", connection=connection.name, notice=frame.payload)
        message = StreamMessage(channel=NOTICE_CHANNEL, data=[frame.payload])
        for callback in connection.registry.all_callbacks():
            await self._invoke(callback, message)

    async def _handle_data(self, connection: ConnectionManager, frame: DataFrame) -> None:
        keys = resolve_keys(connection.registry, frame.arg)
        if not keys:
            logger.info(
                "stream_dispatch_no_match",
                connection=connection.name,
                channel=frame.channel,
                inst_id=frame.instrument_id,
                active_keys=[str(key) for key in connection.registry],
            )
            return

        try:
            events = normalize(frame.channel, frame.data, frame.instrument_id)
        except ParseError as e:
            logger.warning(
                "stream_normalize_failed",
                connection=connection.name,
                channel=frame.channel,
                inst_id=frame.instrument_id,
                error=str(e),
            )
            return

        message = StreamMessage(
            channel=display_channel(frame.channel),
            data=events,
            is_snapshot=frame.is_snapshot,
        )
        await self._deliver(connection.registry, keys, message)

    async def _deliver(
        self, registry: Registry, keys: list[RegistryKey], message: StreamMessage
    ) -> None:
        """Call every distinct subscriber of ``keys`` once with ``message``."""
        targets: dict[MessageCallback, RegistryKey] = {}
        for key in keys:
            for callback in registry.callbacks(key):
                targets.setdefault(callback, key)

        for callback, key in targets.items():
            # a callback removed by an earlier one in this loop is skipped
            if callback not in registry.callbacks(key):
                continue
            await self._invoke(callback, message)

    async def _invoke(self, callback: MessageCallback, message: StreamMessage) -> None:
        try:
            result = callback(message)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            error = DispatchError(callback, e)
            logger.error(
                "stream_callback_error",
                channel=message.channel,
                error=str(error),
                exc_info=True,
            )
