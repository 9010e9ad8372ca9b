"""
Auto-reconnecting WebSocket client for the gesture detector.

Inbound frames and connectivity changes are published on two independent
``Broadcast`` streams so any number of consumers can follow them in order.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, Optional, Set, TypeVar

import websockets
from websockets.exceptions import WebSocketException

from .types import ConnectionState

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class Subscription(Generic[T]):
    """One consumer's ordered view of a Broadcast."""

    def __init__(self, broadcast: "Broadcast[T]"):
        self._broadcast = broadcast
        self._queue: "asyncio.Queue[T]" = asyncio.Queue()

    def put(self, item: T) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> T:
        return await self._queue.get()

    def drain(self) -> List[T]:
        """Take every item already queued without waiting."""
        items: List[T] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def close(self) -> None:
        self._broadcast.unsubscribe(self)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self._queue.get()


class Broadcast(Generic[T]):
    """Multi-subscriber event stream; publishing never blocks."""

    def __init__(self):
        self._subscribers: List[Subscription[T]] = []

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, item: T) -> None:
        for subscription in list(self._subscribers):
            subscription.put(item)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


def reconnect_delay(attempt: int, max_interval: float = 30.0) -> float:
    """Exponential backoff: 1, 2, 4, ... seconds, capped at max_interval."""
    # Past 2**62 every sane cap has been reached; larger float powers overflow
    return min(2.0 ** min(attempt, 62), max_interval)


class WebSocketClient:
    """
    Keeps one confirmed connection to the detector alive.

    Every connection error tears the socket down, publishes DISCONNECTED and
    schedules another ``connect()`` after ``reconnect_delay(attempt)``. Only
    ``disconnect()`` stops the retry loop.
    """

    def __init__(
        self,
        url: str,
        max_retry_interval: float = 30.0,
        ping_timeout: float = 5.0,
        connect: Optional[Callable[[str], Awaitable]] = None,
        sleep: Optional[Callable[[float], Awaitable]] = None,
    ):
        self.url = url
        self.max_retry_interval = max_retry_interval
        self.ping_timeout = ping_timeout
        self._open = connect or websockets.connect
        self._sleep = sleep or asyncio.sleep

        self.messages: Broadcast[str] = Broadcast()
        self.connection_states: Broadcast[ConnectionState] = Broadcast()

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._retry_attempt = 0
        self._closing = False
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._close_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def retry_attempt(self) -> int:
        return self._retry_attempt

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """Open and confirm the connection; no-op unless currently disconnected."""
        if self._state is not ConnectionState.DISCONNECTED:
            return

        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"🔌 Connecting to detector at {self.url}...")

        try:
            ws = await self._open(self.url)
        except CONNECTION_ERRORS as e:
            await self._handle_connection_error(e)
            return

        if self._closing:
            await self._close_socket(ws)
            return

        self._ws = ws
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, self.ping_timeout)
        except CONNECTION_ERRORS as e:
            if not self._closing:
                await self._handle_connection_error(e)
            return

        if self._closing or self._ws is not ws:
            return

        self._retry_attempt = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("✅ Detector connection established")
        self._receive_task = asyncio.create_task(self._receive_loop(ws))

    async def disconnect(self) -> None:
        """Close deliberately; no reconnect is scheduled afterwards."""
        logger.info("🔌 Disconnecting from detector")
        self._closing = True

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        receive_task = self._receive_task
        self._receive_task = None
        if receive_task is not None and receive_task is not asyncio.current_task():
            receive_task.cancel()

        ws = self._ws
        self._ws = None
        if ws is not None:
            await self._close_socket(ws)

        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def send(self, message: str) -> bool:
        """Send one text frame. Returns False when the frame was not sent."""
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            logger.warning(f"Not connected; dropping outbound frame {message}")
            return False

        try:
            await ws.send(message)
        except CONNECTION_ERRORS as e:
            if self._ws is ws:
                # Callers must not wait on the close handshake of a broken socket
                self._drop_connection(e)
                self._spawn_close(ws)
            return False
        return True

    async def _receive_loop(self, ws) -> None:
        error: Optional[BaseException] = None
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self.messages.publish(message)
        except CONNECTION_ERRORS as e:
            error = e

        if self._closing or self._ws is not ws:
            return
        await self._handle_connection_error(error or ConnectionError("connection closed by detector"))

    async def _handle_connection_error(self, error: BaseException) -> None:
        logger.warning(f"❌ Detector connection error: {error!r}")

        ws = self._ws
        self._ws = None
        if ws is not None:
            await self._close_socket(ws)

        self._set_state(ConnectionState.DISCONNECTED)
        if not self._closing:
            self._schedule_reconnect()

    def _drop_connection(self, error: BaseException) -> None:
        """Same as _handle_connection_error, but leaves closing the socket to the caller."""
        logger.warning(f"❌ Detector connection error: {error!r}")
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)
        if not self._closing:
            self._schedule_reconnect()

    def _spawn_close(self, ws) -> None:
        task = asyncio.create_task(self._close_socket(ws))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        delay = reconnect_delay(self._retry_attempt, self.max_retry_interval)
        logger.info(f"Reconnecting in {delay:.0f}s (attempt {self._retry_attempt + 1})")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._retry_attempt += 1
        self._reconnect_task = None
        await self.connect()

    async def _close_socket(self, ws) -> None:
        try:
            await ws.close()
        except CONNECTION_ERRORS as e:
            logger.debug(f"Error while closing socket: {e!r}")

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self.connection_states.publish(state)
