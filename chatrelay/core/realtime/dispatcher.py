"""
Inbound DDP frame classification and routing.

dispatch() is synchronous and never touches the network: handlers that need to
send something hand the work to the task scheduler and return at once.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from chatrelay.core.realtime.protocol import (
    LOGIN_REQUEST_ID,
    ROOM_MESSAGES_STREAM,
    USER_NOTIFY_STREAM,
)

logger = logging.getLogger(__name__)

# Rocket.Chat system message type for "user joined"
USER_JOINED_TYPE = "uj"


class FrameKind(str, Enum):
    """Inbound frame classes, keyed on the DDP "msg" field."""
    PEER_ACK = "connected"
    METHOD_RESULT = "result"
    DATA_CHANGED = "changed"
    KEEPALIVE_PROBE = "ping"
    KEEPALIVE_ACK = "pong"
    UNRECOGNIZED = "unrecognized"


@dataclass
class RoomMessage:
    """A chat message extracted from a stream event."""
    body: str
    sender: str
    room_id: str
    message_id: Optional[str] = None
    message_type: Optional[str] = None

    @property
    def is_user_joined(self) -> bool:
        return self.message_type == USER_JOINED_TYPE


def extract_room_message(frame: Dict[str, Any]) -> Optional[RoomMessage]:
    """
    Pull the first message out of fields.args.

    Returns None when the argument list is missing or empty, or when the first
    element is not a message object with a room id.
    """
    fields = frame.get("fields")
    if not isinstance(fields, dict):
        return None
    args = fields.get("args")
    if not isinstance(args, list) or not args:
        return None
    data = args[0]
    if not isinstance(data, dict):
        return None
    room_id = data.get("rid") or ""
    if not room_id:
        return None
    user = data.get("u") if isinstance(data.get("u"), dict) else {}
    return RoomMessage(
        body=str(data.get("msg") or ""),
        sender=str(user.get("username") or ""),
        room_id=str(room_id),
        message_id=data.get("_id"),
        message_type=data.get("t"),
    )


class EventDispatcher:
    """Routes decoded frames to the handler registered for their kind."""

    def __init__(
        self,
        on_peer_ack: Optional[Callable[[str], None]] = None,
        on_login_result: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_keepalive_probe: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_room_message: Optional[Callable[[RoomMessage], None]] = None,
        on_user_joined: Optional[Callable[[RoomMessage], None]] = None,
    ) -> None:
        self.on_peer_ack = on_peer_ack
        self.on_login_result = on_login_result
        self.on_keepalive_probe = on_keepalive_probe
        self.on_room_message = on_room_message
        self.on_user_joined = on_user_joined

    @staticmethod
    def classify(frame: Dict[str, Any]) -> FrameKind:
        try:
            return FrameKind(frame.get("msg"))
        except ValueError:
            return FrameKind.UNRECOGNIZED

    def dispatch(self, frame: Dict[str, Any]) -> FrameKind:
        """Route one frame. Returns its kind."""
        kind = self.classify(frame)
        if kind is FrameKind.PEER_ACK:
            session_id = frame.get("session")
            if not session_id:
                logger.warning("Peer ack without session id; dropping frame")
            elif self.on_peer_ack:
                self.on_peer_ack(str(session_id))
        elif kind is FrameKind.METHOD_RESULT:
            self._dispatch_result(frame)
        elif kind is FrameKind.DATA_CHANGED:
            self._dispatch_changed(frame)
        elif kind is FrameKind.KEEPALIVE_PROBE:
            if self.on_keepalive_probe:
                self.on_keepalive_probe(frame)
        elif kind is FrameKind.KEEPALIVE_ACK:
            pass  # any inbound frame counts as liveness for the connection
        else:
            logger.debug("Dropping unrecognized frame type %r", frame.get("msg"))
        return kind

    def _dispatch_result(self, frame: Dict[str, Any]) -> None:
        request_id = frame.get("id")
        if request_id == LOGIN_REQUEST_ID:
            if self.on_login_result:
                self.on_login_result(frame)
            return
        logger.debug("Dropping result for unknown request id %r", request_id)

    def _dispatch_changed(self, frame: Dict[str, Any]) -> None:
        collection = frame.get("collection")
        if collection not in (ROOM_MESSAGES_STREAM, USER_NOTIFY_STREAM):
            logger.debug("Ignoring change on collection %r", collection)
            return
        message = extract_room_message(frame)
        if message is None:
            logger.debug("Ignoring %s event without message arguments", collection)
            return
        if message.is_user_joined:
            if self.on_user_joined:
                self.on_user_joined(message)
            return
        logger.info("Received message in room %s from %s", message.room_id, message.sender)
        if self.on_room_message:
            self.on_room_message(message)
