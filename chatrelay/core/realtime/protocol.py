"""
DDP frames exchanged with Rocket.Chat over the realtime WebSocket.

Builders return plain dicts; encode/decode convert to and from JSON text.
"""
import json
import uuid
from typing import Any, Dict, Optional

from chatrelay.core.realtime.digest import DIGEST_ALGORITHM, sha256_hex

DDP_VERSION = "1"
DDP_SUPPORT = ["1", "pre2", "pre1"]

# The login result is matched on this id; no pending-request table is kept.
LOGIN_REQUEST_ID = "login"

ROOM_MESSAGES_STREAM = "stream-room-messages"
USER_NOTIFY_STREAM = "stream-notify-user"

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class ProtocolError(ValueError):
    """Raised when an inbound frame cannot be decoded."""
    pass


def connect_frame() -> Dict[str, Any]:
    return {"msg": "connect", "version": DDP_VERSION, "support": list(DDP_SUPPORT)}


def login_frame(username: str, password: str) -> Dict[str, Any]:
    """Login method call. Only the digest of the password goes on the wire."""
    return {
        "msg": "method",
        "method": "login",
        "id": LOGIN_REQUEST_ID,
        "params": [
            {
                "user": {"username": username},
                "password": {"digest": sha256_hex(password), "algorithm": DIGEST_ALGORITHM},
            }
        ],
    }


def subscribe_frame(name: str, target: str, sub_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "msg": "sub",
        "id": sub_id or str(uuid.uuid4()),
        "name": name,
        "params": [target, False],
    }


def room_messages_subscription(room_id: str) -> Dict[str, Any]:
    return subscribe_frame(ROOM_MESSAGES_STREAM, room_id)


def user_messages_subscription(user_id: str) -> Dict[str, Any]:
    return subscribe_frame(USER_NOTIFY_STREAM, f"{user_id}/message")


def ping_frame() -> Dict[str, Any]:
    return {"msg": "ping"}


def pong_frame(probe: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Answer to a peer ping; echoes the probe id when it carried one."""
    frame: Dict[str, Any] = {"msg": "pong"}
    if probe and probe.get("id") is not None:
        frame["id"] = probe["id"]
    return frame


def encode(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


def decode(raw: Any) -> Dict[str, Any]:
    """Decode one inbound text (or bytes) frame into a dict."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Expected JSON object, got {type(data).__name__}")
    return data
