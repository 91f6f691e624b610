"""
Chat endpoints: admin login, user provisioning, message delivery and history.

Thin request validation and response shaping over the REST client. A
RocketChatError raised here is turned into a 502 by the app's error handler.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from chatrelay.core.realtime.dispatcher import RoomMessage
from chatrelay.core.services.relay import ChatRelay, get_relay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class StatusResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


class MessageRequest(BaseModel):
    """Message to post into a room."""
    roomId: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class RoomResponse(BaseModel):
    """Room created or resolved."""
    roomId: str
    message: str


class WebhookMessage(BaseModel):
    """Outgoing-webhook payload from Rocket.Chat (only the fields we use)."""
    user_name: Optional[str] = None
    text: Optional[str] = None
    channel_id: Optional[str] = None


@router.post("/login", response_model=StatusResponse)
async def login(relay: ChatRelay = Depends(get_relay)) -> StatusResponse:
    """Log in as the configured admin; later calls reuse the credentials."""
    await relay.admin.login()
    return StatusResponse(message="Admin logged in successfully")


@router.post("/create-user", response_model=StatusResponse)
async def create_user(
    username: str,
    email: str,
    name: str,
    password: str,
    relay: ChatRelay = Depends(get_relay),
) -> StatusResponse:
    await relay.admin.create_user(username, email, name, password)
    return StatusResponse(message="User created successfully")


@router.post("/send")
async def send_message(request: MessageRequest, relay: ChatRelay = Depends(get_relay)) -> Dict[str, Any]:
    """Post a message and return Rocket.Chat's raw response."""
    return await relay.client.send_message(request.roomId, request.message)


@router.get("/messages", response_model=List[str])
async def get_messages(roomId: str, relay: ChatRelay = Depends(get_relay)) -> List[str]:
    return await relay.client.get_messages_in_room(roomId)


@router.get("/get-direct-messages")
async def get_direct_messages(relay: ChatRelay = Depends(get_relay)) -> Dict[str, Any]:
    return await relay.client.list_direct_messages()


@router.post("/create-direct-message-room", response_model=RoomResponse)
async def create_direct_message_room(username: str, relay: ChatRelay = Depends(get_relay)) -> RoomResponse:
    room_id = await relay.client.create_direct_message_room(username)
    return RoomResponse(roomId=room_id, message=f"Direct message room created: {room_id}")


@router.post("/support-room", response_model=RoomResponse)
async def support_room(username: str, relay: ChatRelay = Depends(get_relay)) -> RoomResponse:
    """Create or look up the support-<username> room and invite the user."""
    room_id = await relay.client.create_or_get_support_room(username)
    return RoomResponse(roomId=room_id, message=f"Support room ready: {room_id}")


@router.post("/simulate-message", response_model=StatusResponse)
async def simulate_message(
    payload: WebhookMessage,
    x_rocketchat_webhook_token: Optional[str] = Header(default=None),
    relay: ChatRelay = Depends(get_relay),
) -> StatusResponse:
    """
    Accept an outgoing-webhook message.

    Requires X-RocketChat-Webhook-Token to match the configured token. When the
    payload names a channel it is fed into session tracking like a streamed message.
    """
    if x_rocketchat_webhook_token != relay.config.webhook_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    logger.info("Webhook message from %s", payload.user_name)
    if payload.channel_id:
        relay.handle_room_message(
            RoomMessage(
                body=payload.text or "",
                sender=payload.user_name or "",
                room_id=payload.channel_id,
            )
        )
    return StatusResponse(message="Message received")
