"""
Realtime connection to Rocket.Chat: one WebSocket, DDP handshake, keepalive, reconnect.

States: DISCONNECTED -> CONNECTING -> AWAITING_PEER_ACK -> AUTHENTICATING -> AUTHENTICATED,
DEGRADED while a reconnect is pending, CLOSED when stopped or out of retries.

All state changes happen on the event loop. Close handling is synchronous, so a
close seen by the reader and one seen by the keepalive cannot both schedule a
reconnect.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets

from chatrelay.core.realtime import protocol
from chatrelay.core.realtime.dispatcher import EventDispatcher, RoomMessage
from chatrelay.core.realtime.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, websockets.WebSocketException)


class ConnectionState(str, Enum):
    """Realtime connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PEER_ACK = "awaiting_peer_ack"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass
class ConnectionOptions:
    """What to connect to, what to subscribe to and how to recover."""
    url: str
    username: str
    password: str
    room_ids: List[str] = field(default_factory=list)
    subscribe_user_stream: bool = True
    reconnect_enabled: bool = True
    keepalive_interval: float = 30.0
    max_reconnect_attempts: int = 5


def reconnect_delay(attempt: int) -> float:
    """Backoff before reconnect attempt number `attempt` (0-based): 1, 2, 4, 8, 16..."""
    return float(2 ** attempt)


async def websocket_connector(url: str) -> Any:
    """Open the WebSocket. Library pings are off; the DDP keepalive checks liveness."""
    return await websockets.connect(url, ping_interval=None)


class RealtimeConnection:
    """Single long-lived DDP connection with digest login and bounded reconnect."""

    def __init__(
        self,
        options: ConnectionOptions,
        scheduler: TaskScheduler,
        on_room_message: Optional[Callable[[RoomMessage], None]] = None,
        on_user_joined: Optional[Callable[[RoomMessage], None]] = None,
        on_authenticated: Optional[Callable[[str, str], None]] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.options = options
        self._scheduler = scheduler
        self._connector = connector or websocket_connector
        self._on_authenticated = on_authenticated
        self.dispatcher = EventDispatcher(
            on_peer_ack=self._handle_peer_ack,
            on_login_result=self._handle_login_result,
            on_keepalive_probe=self._handle_keepalive_probe,
            on_room_message=on_room_message,
            on_user_joined=on_user_joined,
        )

        self.state = ConnectionState.DISCONNECTED
        self.session_id: Optional[str] = None
        self.auth_token: Optional[str] = None
        self.user_id: Optional[str] = None
        self.reconnect_attempts = 0
        self.subscriptions: List[Dict[str, Any]] = []
        self.frames_received = 0

        self._transport: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    def snapshot(self) -> Dict[str, Any]:
        """Connection status for health reporting. Never includes the token."""
        return {
            "state": self.state.value,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "reconnect_attempts": self.reconnect_attempts,
            "rooms": list(self.options.room_ids),
        }

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug("Realtime state %s -> %s", self.state.value, state.value)
            self.state = state

    # ------------------------------------------------------------------
    # Connect / close
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the transport and start the DDP handshake.

        Returns True if the transport opened. A failure to open is handled like a
        transport close and feeds the reconnect policy.
        """
        if self.state is ConnectionState.CLOSED:
            logger.warning("Realtime connection is closed; not connecting")
            return False
        if self._transport is not None:
            return True

        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", self.options.url)
        try:
            transport = await self._connector(self.options.url)
        except TRANSPORT_ERRORS as e:
            logger.error("Realtime connection to %s failed: %s", self.options.url, e)
            self._on_transport_closed(None, None)
            return False

        if self.state is ConnectionState.CLOSED:
            # close() ran while the socket was opening
            await self._close_transport(transport)
            return False

        self._transport = transport
        self.session_id = None
        self.auth_token = None
        self.user_id = None
        logger.info("WebSocket connection opened")

        self._reader_task = self._scheduler.spawn(self._read_loop(transport), name="realtime-reader")
        self._set_state(ConnectionState.AWAITING_PEER_ACK)
        await self._send(protocol.connect_frame(), transport)
        return True

    async def close(self) -> None:
        """Stop for good: cancel timers first, then close the transport normally."""
        self._set_state(ConnectionState.CLOSED)
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._cancel(self._keepalive_task)
        self._keepalive_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport)
        self._cancel(self._reader_task)
        self._reader_task = None
        logger.info("Realtime connection closed")

    @staticmethod
    async def _close_transport(transport: Any, reason: str = "shutdown") -> None:
        try:
            await transport.close(code=protocol.NORMAL_CLOSURE, reason=reason)
        except TRANSPORT_ERRORS as e:
            logger.debug("Error closing realtime transport: %s", e)

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Transport I/O
    # ------------------------------------------------------------------

    async def _read_loop(self, transport: Any) -> None:
        try:
            async for raw in transport:
                self._handle_raw(raw)
        except websockets.ConnectionClosed:
            pass
        except OSError as e:
            logger.warning("Realtime transport error: %s", e)
        code = getattr(transport, "close_code", None)
        if code is None:
            code = protocol.ABNORMAL_CLOSURE
        if transport is self._transport:
            logger.warning("WebSocket closed: %s, Reason: %s", code, getattr(transport, "close_reason", None))
        self._on_transport_closed(transport, code)

    def _handle_raw(self, raw: Any) -> None:
        try:
            frame = protocol.decode(raw)
        except protocol.ProtocolError as e:
            logger.warning("Dropping malformed realtime frame: %s", e)
            return
        self.frames_received += 1
        try:
            self.dispatcher.dispatch(frame)
        except Exception as e:
            logger.exception("Error processing realtime frame: %s", e)

    async def _send(self, frame: Dict[str, Any], transport: Optional[Any] = None) -> bool:
        transport = transport or self._transport
        if transport is None:
            logger.debug("Not connected; dropping outbound %s frame", frame.get("msg"))
            return False
        try:
            await transport.send(protocol.encode(frame))
            return True
        except (websockets.ConnectionClosed, OSError) as e:
            logger.warning("Failed to send %s frame: %s", frame.get("msg"), e)
            return False

    async def _send_all(self, frames: List[Dict[str, Any]], transport: Any) -> None:
        for frame in frames:
            if not await self._send(frame, transport):
                return

    def _send_soon(self, *frames: Dict[str, Any]) -> None:
        """Queue frames on the scheduler so the read loop never waits on a send."""
        if self._transport is None:
            return
        self._scheduler.spawn(self._send_all(list(frames), self._transport), name="realtime-send")

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def _handle_peer_ack(self, session_id: str) -> None:
        if self.state is not ConnectionState.AWAITING_PEER_ACK:
            logger.warning("Unexpected peer ack in state %s; ignoring", self.state.value)
            return
        self.session_id = session_id
        logger.info("WebSocket connected, session ID: %s", session_id)
        self._set_state(ConnectionState.AUTHENTICATING)
        self._send_soon(protocol.login_frame(self.options.username, self.options.password))

    def _handle_login_result(self, frame: Dict[str, Any]) -> None:
        if self.state is not ConnectionState.AUTHENTICATING:
            logger.warning("Unexpected login result in state %s; ignoring", self.state.value)
            return
        result = frame.get("result") if isinstance(frame.get("result"), dict) else {}
        token = result.get("token")
        user_id = result.get("id")
        if frame.get("error") or not token or not user_id:
            error = frame.get("error") or "missing token or user id"
            logger.error("Realtime login failed for %s: %s", self.options.username, error)
            return

        self.auth_token = token
        self.user_id = str(user_id)
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.AUTHENTICATED)
        logger.info("Authenticated via WebSocket, userId=%s", self.user_id)

        self._subscribe()
        self._start_keepalive()
        if self._on_authenticated:
            try:
                self._on_authenticated(token, self.user_id)
            except Exception as e:
                logger.exception("on_authenticated hook failed: %s", e)

    def _subscribe(self) -> None:
        frames = [protocol.room_messages_subscription(room_id) for room_id in self.options.room_ids]
        if self.options.subscribe_user_stream and self.user_id:
            frames.append(protocol.user_messages_subscription(self.user_id))
        self.subscriptions = frames
        for frame in frames:
            logger.info("Subscribing to %s: %s", frame["name"], frame["params"][0])
        self._send_soon(*frames)

    def _handle_keepalive_probe(self, frame: Dict[str, Any]) -> None:
        self._send_soon(protocol.pong_frame(frame))

    # ------------------------------------------------------------------
    # Keepalive / reconnect
    # ------------------------------------------------------------------

    def _start_keepalive(self) -> None:
        self._cancel(self._keepalive_task)
        self._keepalive_task = self._scheduler.spawn(
            self._keepalive_loop(self._transport), name="realtime-keepalive"
        )

    async def _keepalive_loop(self, transport: Any) -> None:
        """
        Ping every keepalive_interval. The server answers each ping with a pong, so
        an interval with no inbound frame at all means the peer is gone even if the
        socket still looks open.
        """
        frames_at_ping: Optional[int] = None
        while True:
            await asyncio.sleep(self.options.keepalive_interval)
            if transport is not self._transport or self.state is not ConnectionState.AUTHENTICATED:
                return
            code = getattr(transport, "close_code", None)
            if code is not None:
                logger.warning("Keepalive due but transport is closed (code=%s)", code)
                self._on_transport_closed(transport, code)
                return
            if frames_at_ping is not None and self.frames_received == frames_at_ping:
                logger.warning(
                    "No frame received within %.0fs of the last ping; treating connection as lost",
                    self.options.keepalive_interval,
                )
                self._on_transport_closed(transport, protocol.ABNORMAL_CLOSURE)
                await self._close_transport(transport, reason="keepalive timeout")
                return
            frames_at_ping = self.frames_received
            await self._send(protocol.ping_frame(), transport)

    def _on_transport_closed(self, transport: Optional[Any], code: Optional[int]) -> None:
        """React to a lost transport (or a failed open when transport is None)."""
        if transport is not None:
            if transport is not self._transport:
                return
            self._transport = None
        self._cancel(self._keepalive_task)
        self._keepalive_task = None

        if self.state is ConnectionState.CLOSED or self._reconnect_task is not None:
            return
        if code == protocol.NORMAL_CLOSURE or not self.options.reconnect_enabled:
            logger.info("Realtime connection closed (code=%s); not reconnecting", code)
            self._set_state(ConnectionState.CLOSED)
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        attempt = self.reconnect_attempts
        if attempt >= self.options.max_reconnect_attempts:
            self._set_state(ConnectionState.CLOSED)
            logger.critical(
                "Realtime connection lost and %s reconnect attempts failed; giving up",
                attempt,
            )
            return
        delay = reconnect_delay(attempt)
        self.reconnect_attempts = attempt + 1
        self._set_state(ConnectionState.DEGRADED)
        logger.warning(
            "Reconnecting in %.0fs (attempt %s/%s)",
            delay,
            attempt + 1,
            self.options.max_reconnect_attempts,
        )
        self._reconnect_task = self._scheduler.call_later(delay, self._reconnect, name="realtime-reconnect")

    async def _reconnect(self) -> None:
        self._reconnect_task = None
        if self.state is ConnectionState.CLOSED:
            return
        await self.connect()
