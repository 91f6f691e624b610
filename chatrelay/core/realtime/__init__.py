"""
Realtime layer: DDP over one WebSocket to Rocket.Chat.

Digest login, room subscriptions, keepalive and bounded exponential reconnect.
"""
from chatrelay.core.realtime.connection import (
    ConnectionOptions,
    ConnectionState,
    RealtimeConnection,
    reconnect_delay,
)
from chatrelay.core.realtime.dispatcher import EventDispatcher, FrameKind, RoomMessage
from chatrelay.core.realtime.scheduler import TaskScheduler

__all__ = [
    "ConnectionOptions",
    "ConnectionState",
    "RealtimeConnection",
    "reconnect_delay",
    "EventDispatcher",
    "FrameKind",
    "RoomMessage",
    "TaskScheduler",
]
