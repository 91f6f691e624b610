"""
Health endpoint: process liveness plus realtime connection state.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from chatrelay.core.services.relay import ChatRelay, get_relay

router = APIRouter(tags=["health"])


@router.get("/health")
def health(relay: ChatRelay = Depends(get_relay)) -> Dict[str, Any]:
    """Report connection state and the number of open sessions."""
    return {
        "status": "ok",
        "realtime": relay.connection.snapshot(),
        "active_sessions": len(relay.tracker.active_rooms()),
    }
