"""
Lifecycle of one physical WebSocket connection.

ConnectionManager owns a single socket and provides:
- An idempotent ``connect()`` shared by concurrent callers
- Automatic reconnection with exponential backoff
- Application-level heartbeat (bare "ping"/"pong" text frames)
- A ``send()`` that never raises on a transient disconnect
- An outbound FIFO (``enqueue()``/``flush()``) drained by a single writer task
- Open/close/error hooks for the layer above

State machine::

    CLOSED --connect()--> CONNECTING --open--> OPEN --lost--> CLOSED (retry while desired)
    OPEN --close()--> CLOSING --> CLOSED (terminal, no retry)
"""

import asyncio
from collections.abc import Awaitable, Callable
import time
from typing import Any

import orjson
import websockets
from websockets.exceptions import ConnectionClosed

from okxfeed.config import StreamSettings
from okxfeed.config.constants import (
    DEFAULT_HEARTBEAT_GRACE,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    PING_FRAME,
    PONG_FRAME,
)
from okxfeed.utils import get_logger

from .errors import TransportError
from .models import ConnectionState, MessageCallback, RegistryKey
from .registry import SubscriptionRegistry

logger = get_logger(__name__)

SocketFactory = Callable[..., Awaitable[Any]]
RawMessageHandler = Callable[[str], Any]
Hook = Callable[..., Any]


async def _cancel_task(task: asyncio.Task | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class ConnectionManager:
    """One WebSocket connection with reconnection and heartbeat.

    The manager also holds the subscription registry of its connection; the
    client facade mutates it and uses it to resubscribe after a reconnect.
    """

    def __init__(
        self,
        url: str,
        name: str,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        heartbeat_grace: float = DEFAULT_HEARTBEAT_GRACE,
        open_timeout: float = 10.0,
        socket_factory: SocketFactory | None = None,
    ):
        self.url = url
        self.name = name
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_grace = heartbeat_grace
        self.open_timeout = open_timeout
        self.registry: SubscriptionRegistry[RegistryKey, MessageCallback] = SubscriptionRegistry()

        self._socket_factory = socket_factory or websockets.connect
        self._ws: Any = None
        self._state = ConnectionState.CLOSED
        self._desired_reconnect = False
        self._reconnect_attempts = 0
        self._reconnect_exhausted = False
        self._stale = False

        self._message_handler: RawMessageHandler | None = None
        self._open_hooks: list[Hook] = []
        self._close_hooks: list[Hook] = []
        self._error_hooks: list[Hook] = []

        self._connect_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._outbound: asyncio.Queue[dict[str, Any] | str] = asyncio.Queue()

        self._last_message_time: float = 0
        self._messages_received: int = 0
        self._connect_time: float | None = None

    @classmethod
    def from_settings(
        cls,
        url: str,
        name: str,
        settings: StreamSettings,
        socket_factory: SocketFactory | None = None,
    ) -> "ConnectionManager":
        return cls(
            url,
            name,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            reconnect_base_delay=settings.reconnect_base_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
            heartbeat_interval=settings.heartbeat_interval,
            heartbeat_grace=settings.heartbeat_grace,
            open_timeout=settings.open_timeout,
            socket_factory=socket_factory,
        )

    def __repr__(self) -> str:
        return f"ConnectionManager(name={self.name!r}, state={self._state.value})"

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN and self._ws is not None

    @property
    def desired_reconnect(self) -> bool:
        return self._desired_reconnect

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_exhausted(self) -> bool:
        """True once the retry budget ran out; cleared by the next open."""
        return self._reconnect_exhausted

    @property
    def is_stale(self) -> bool:
        """True when a heartbeat ping went unanswered past the grace window."""
        return self._stale

    @property
    def stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        uptime = None
        idle = None
        if self._connect_time:
            uptime = time.time() - self._connect_time
        if self._last_message_time:
            idle = time.monotonic() - self._last_message_time

        return {
            "name": self.name,
            "state": self._state.value,
            "messages_received": self._messages_received,
            "reconnect_attempts": self._reconnect_attempts,
            "reconnect_exhausted": self._reconnect_exhausted,
            "stale": self._stale,
            "uptime_seconds": uptime,
            "seconds_since_last_message": idle,
            "subscriptions": len(self.registry),
        }

    # ------------------------------------------------------------------ hooks

    def set_message_handler(self, handler: RawMessageHandler | None) -> None:
        """Install the handler receiving every inbound text frame except pongs."""
        self._message_handler = handler

    def add_open_hook(self, hook: Hook) -> None:
        """Run ``hook()`` after every successful open, before connect() returns."""
        self._open_hooks.append(hook)

    def add_close_hook(self, hook: Hook) -> None:
        self._close_hooks.append(hook)

    def add_error_hook(self, hook: Hook) -> None:
        """Run ``hook(error)`` with a TransportError when an open attempt fails."""
        self._error_hooks.append(hook)

    async def _run_hooks(self, hooks: list[Hook], *args: Any) -> None:
        for hook in list(hooks):
            try:
                result = hook(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    "websocket_hook_error",
                    connection=self.name,
                    hook=getattr(hook, "__qualname__", repr(hook)),
                    error=str(e),
                    exc_info=True,
                )

    # ------------------------------------------------------------- lifecycle

    async def connect(self) -> None:
        """Open the connection, or join an open already in progress.

        Returns immediately when OPEN. On failure the reconnect policy is
        scheduled and the failure is raised to this caller.

        Raises:
            TransportError: If the socket could not be opened
        """
        self._desired_reconnect = True
        if self.is_connected:
            return

        reconnect_pending = self._reconnect_task is not None and not self._reconnect_task.done()
        if self._state is ConnectionState.CLOSED and not reconnect_pending:
            # caller-initiated connect starts a fresh retry budget
            self._reconnect_attempts = 0
            self._reconnect_exhausted = False

        try:
            await self._ensure_open()
        except TransportError:
            self._schedule_reconnect()
            raise

    async def _ensure_open(self) -> None:
        if self.is_connected:
            return
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._open())

        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise TransportError(
                f"{self.name} connection closed while opening", connection=self.name
            ) from None

    async def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        logger.info("websocket_connecting", connection=self.name, url=self.url)

        try:
            ws = await self._socket_factory(
                self.url,
                ping_interval=None,
                open_timeout=self.open_timeout,
                close_timeout=10,
            )
        except asyncio.CancelledError:
            self._state = ConnectionState.CLOSED
            raise
        except Exception as e:
            self._state = ConnectionState.CLOSED
            logger.error("websocket_connect_failed", connection=self.name, error=str(e))
            error = TransportError(
                f"failed to open {self.name} connection: {e}", connection=self.name
            )
            await self._run_hooks(self._error_hooks, error)
            raise error from e

        self._ws = ws
        self._state = ConnectionState.OPEN
        self._reconnect_attempts = 0
        self._reconnect_exhausted = False
        self._stale = False
        self._connect_time = time.time()
        self._last_message_time = time.monotonic()
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._writer_task = asyncio.create_task(self._writer_loop())

        logger.info("websocket_connected", connection=self.name)
        await self._run_hooks(self._open_hooks)

    async def close(self) -> None:
        """Close the connection for good; no reconnect follows."""
        self._desired_reconnect = False
        await _cancel_task(self._reconnect_task)
        await _cancel_task(self._connect_task)

        was_open = self._ws is not None
        self._state = ConnectionState.CLOSING
        await _cancel_task(self._heartbeat_task)
        await _cancel_task(self._receive_task)
        await self._stop_writer()

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning("websocket_close_error", connection=self.name, error=str(e))

        self._state = ConnectionState.CLOSED
        self._connect_time = None
        logger.info("websocket_closed", connection=self.name, stats=self.stats)

        if was_open:
            await self._run_hooks(self._close_hooks)

    async def _handle_connection_lost(self, ws: Any) -> None:
        if self._ws is not ws:
            # close() already took over this socket
            return

        self._ws = None
        self._state = ConnectionState.CLOSED
        self._connect_time = None
        await _cancel_task(self._heartbeat_task)
        await self._stop_writer()

        logger.warning(
            "websocket_connection_lost",
            connection=self.name,
            will_reconnect=self._desired_reconnect,
        )
        await self._run_hooks(self._close_hooks)

        if self._desired_reconnect:
            self._schedule_reconnect()

    # ----------------------------------------------------------- reconnection

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based): base * 2**(n-1), capped."""
        return min(
            self.reconnect_base_delay * (2 ** (attempt - 1)),
            self.reconnect_max_delay,
        )

    def _schedule_reconnect(self) -> None:
        if not self._desired_reconnect:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._desired_reconnect and not self.is_connected:
            if self._reconnect_attempts >= self.max_reconnect_attempts:
                self._reconnect_exhausted = True
                logger.error(
                    "websocket_reconnect_exhausted",
                    connection=self.name,
                    attempts=self._reconnect_attempts,
                )
                return

            self._reconnect_attempts += 1
            delay = self.backoff_delay(self._reconnect_attempts)
            logger.info(
                "websocket_reconnecting",
                connection=self.name,
                attempt=self._reconnect_attempts,
                delay=delay,
            )
            await asyncio.sleep(delay)

            if not self._desired_reconnect or self.is_connected:
                return
            try:
                await self._ensure_open()
            except TransportError as e:
                logger.warning(
                    "websocket_reconnect_failed",
                    connection=self.name,
                    attempt=self._reconnect_attempts,
                    error=str(e),
                )

    # ------------------------------------------------------------------- I/O

    async def send(self, frame: dict[str, Any] | str) -> bool:
        """Send a JSON object or a raw text frame.

        Returns:
            False, with a warning, when the connection is not OPEN or the
            write failed; True once the frame was handed to the socket
        """
        ws = self._ws
        if self._state is not ConnectionState.OPEN or ws is None:
            logger.warning("websocket_send_not_open", connection=self.name, state=self._state.value)
            return False

        payload = frame if isinstance(frame, str) else orjson.dumps(frame).decode()
        try:
            await ws.send(payload)
        except (ConnectionClosed, OSError) as e:
            logger.warning("websocket_send_failed", connection=self.name, error=str(e))
            return False

        logger.debug("websocket_sent", connection=self.name, frame=payload)
        return True

    def enqueue(self, frame: dict[str, Any] | str) -> bool:
        """Queue ``frame`` behind every frame queued before it.

        A single writer task drains the queue in order, so frames queued
        synchronously keep their relative order on the wire. Queued frames
        are discarded when the socket goes away.

        Returns:
            False, with a warning, when the connection is not OPEN
        """
        if not self.is_connected:
            logger.warning("websocket_send_not_open", connection=self.name, state=self._state.value)
            return False
        self._outbound.put_nowait(frame)
        return True

    async def flush(self) -> None:
        """Wait until every queued frame was written or discarded."""
        await self._outbound.join()

    async def _writer_loop(self) -> None:
        while True:
            frame = await self._outbound.get()
            try:
                await self.send(frame)
            finally:
                self._outbound.task_done()

    async def _stop_writer(self) -> None:
        await _cancel_task(self._writer_task)
        self._writer_task = None

        dropped = 0
        while not self._outbound.empty():
            self._outbound.get_nowait()
            self._outbound.task_done()
            dropped += 1
        if dropped:
            logger.debug("websocket_outbound_discarded", connection=self.name, frames=dropped)

    async def _receive_loop(self, ws: Any) -> None:
        """Read frames until the socket closes, then hand over to reconnection."""
        try:
            while True:
                raw = await ws.recv()
                self._last_message_time = time.monotonic()
                self._messages_received += 1
                self._stale = False

                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                if raw == PONG_FRAME:
                    logger.debug("websocket_pong", connection=self.name)
                    continue

                await self._dispatch_raw(raw)

        except ConnectionClosed as e:
            logger.warning("websocket_closed_by_peer", connection=self.name, reason=str(e))
        except OSError as e:
            logger.error("websocket_receive_error", connection=self.name, error=str(e))

        await self._handle_connection_lost(ws)

    async def _dispatch_raw(self, raw: str) -> None:
        if self._message_handler is None:
            return
        try:
            result = self._message_handler(raw)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(
                "websocket_handler_error",
                connection=self.name,
                error=str(e),
                exc_info=True,
            )

    async def _heartbeat_loop(self) -> None:
        """Ping after ``heartbeat_interval`` idle seconds; flag staleness if
        nothing arrives within ``heartbeat_grace`` after the ping.

        A stale connection is only logged, never force-closed.
        """
        while self.is_connected:
            idle = time.monotonic() - self._last_message_time
            if idle < self.heartbeat_interval:
                await asyncio.sleep(self.heartbeat_interval - idle)
                continue

            ping_sent_at = time.monotonic()
            if not await self.send(PING_FRAME):
                return
            await asyncio.sleep(self.heartbeat_grace)

            if self._last_message_time < ping_sent_at:
                if not self._stale:
                    logger.warning(
                        "websocket_stale",
                        connection=self.name,
                        silent_for=round(time.monotonic() - self._last_message_time, 3),
                    )
                self._stale = True
                await asyncio.sleep(max(self.heartbeat_interval - self.heartbeat_grace, 0))
