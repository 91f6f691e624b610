"""
Relay service: wires the realtime connection, session tracker and REST client.

Started from the app lifespan when the realtime connection is enabled. Shutdown
order: session timers, then the connection, then the scheduler.
"""
import logging
from typing import Any, Callable, Dict, Optional

from chatrelay.core.config import Settings, settings
from chatrelay.core.errors import RocketChatError
from chatrelay.core.realtime.connection import ConnectionOptions, Connector, RealtimeConnection
from chatrelay.core.realtime.dispatcher import RoomMessage
from chatrelay.core.realtime.scheduler import TaskScheduler
from chatrelay.core.services.admin_service import AdminService
from chatrelay.core.services.rocketchat_client import RocketChatClient
from chatrelay.core.services.session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class ChatRelay:
    """Owns every long-lived component of the relay."""

    def __init__(
        self,
        config: Settings,
        client: Optional[RocketChatClient] = None,
        connector: Optional[Connector] = None,
        scheduler: Optional[TaskScheduler] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config
        self.scheduler = scheduler or TaskScheduler()
        self.client = client or RocketChatClient(
            config.rocketchat_base_url,
            username=config.rocketchat_admin_username,
            password=config.rocketchat_admin_password,
            timeout=config.http_timeout,
        )
        self.admin = AdminService(self.client)
        tracker_kwargs: Dict[str, Any] = {}
        if clock is not None:
            tracker_kwargs["clock"] = clock
        self.tracker = SessionTracker(
            self.client,
            self.scheduler,
            inactivity_timeout=config.inactivity_timeout_seconds,
            auto_reply_message=config.auto_reply_message,
            closing_message=config.closing_message,
            **tracker_kwargs,
        )
        self.connection = RealtimeConnection(
            ConnectionOptions(
                url=config.rocketchat_websocket_url,
                username=config.rocketchat_admin_username,
                password=config.rocketchat_admin_password,
                room_ids=config.room_ids,
                subscribe_user_stream=config.rocketchat_subscribe_user_stream,
                reconnect_enabled=config.reconnect_enabled,
                keepalive_interval=config.keepalive_interval,
                max_reconnect_attempts=config.max_reconnect_attempts,
            ),
            self.scheduler,
            on_room_message=self.handle_room_message,
            on_user_joined=self.handle_user_joined,
            on_authenticated=self.client.set_auth,
            connector=connector,
        )

    def handle_room_message(self, message: RoomMessage) -> None:
        """Hand a chat message to the session tracker without blocking the caller."""
        if message.sender and message.sender == self.config.rocketchat_admin_username:
            # Our own auto-replies and notices come back on the stream
            logger.debug("Ignoring own message in room %s", message.room_id)
            return
        self.scheduler.spawn(
            self.tracker.record_activity(message.room_id, message.sender, message.body),
            name=f"activity-{message.room_id}",
        )

    def handle_user_joined(self, message: RoomMessage) -> None:
        if not self.config.welcome_message:
            return
        self.scheduler.spawn(self._send_welcome(message.room_id), name=f"welcome-{message.room_id}")

    async def _send_welcome(self, room_id: str) -> None:
        try:
            await self.client.send_message(room_id, self.config.welcome_message)
        except RocketChatError as e:
            logger.error("Failed to send welcome message to room %s: %s", room_id, e)

    async def start(self) -> None:
        if not self.config.realtime_enabled:
            logger.info("Realtime connection disabled, skipping startup")
            return
        self.scheduler.spawn(self.connection.connect(), name="realtime-connect")
        logger.info("Chat relay started")

    async def stop(self) -> None:
        await self.tracker.close()
        await self.connection.close()
        await self.scheduler.shutdown()
        logger.info("Chat relay stopped")


_relay: Optional[ChatRelay] = None


def get_relay() -> ChatRelay:
    """Get or create the global relay instance."""
    global _relay
    if _relay is None:
        _relay = ChatRelay(settings)
    return _relay


async def start_relay() -> Optional[ChatRelay]:
    """Start the relay. Failures are logged and never stop the API from serving."""
    try:
        relay = get_relay()
        await relay.start()
        return relay
    except Exception as e:
        logger.error("Failed to start chat relay: %s", e, exc_info=True)
        return None


async def stop_relay() -> None:
    """Stop the relay gracefully."""
    global _relay
    if _relay is None:
        return
    try:
        await _relay.stop()
    except Exception as e:
        logger.error("Error stopping chat relay: %s", e, exc_info=True)
    finally:
        _relay = None
