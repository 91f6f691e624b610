"""
Rocket.Chat REST client.

One-shot request/reply calls against /api/v1: login, message delivery, history,
rooms and users. Stateless apart from the auth headers; no retries.
Every failure surfaces as RocketChatError.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from chatrelay.core.errors import RocketChatError
from chatrelay.core.services.sink import MessageSink

logger = logging.getLogger(__name__)


class RocketChatClient(MessageSink):
    """Async REST client for Rocket.Chat."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: REST base URL, e.g. http://localhost:3000/api/v1
            username: Login user for login()
            password: Login password for login()
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self._transport = transport
        self.auth_token: Optional[str] = None
        self.user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token and self.user_id)

    def set_auth(self, token: str, user_id: str) -> None:
        """Use an existing token (REST login or realtime login) for later calls."""
        self.auth_token = token
        self.user_id = user_id

    def _auth_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.auth_token:
            headers["X-Auth-Token"] = self.auth_token
        if self.user_id:
            headers["X-User-Id"] = self.user_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        auth: bool = True,
    ) -> Dict[str, Any]:
        """Perform one request and return the decoded JSON body."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self._auth_headers() if auth else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=json, params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = ""
            try:
                detail = e.response.json().get("error", "")
            except (ValueError, AttributeError):
                detail = e.response.text
            raise RocketChatError(
                f"{method} {path} failed with HTTP {e.response.status_code}: {detail or e}"
            ) from e
        except httpx.RequestError as e:
            raise RocketChatError(f"{method} {path} failed: {e}") from e
        try:
            data = response.json()
        except ValueError as e:
            raise RocketChatError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise RocketChatError(f"{method} {path} returned unexpected payload")
        return data

    async def login(self) -> Tuple[str, str]:
        """Log in with username/password and keep the returned credentials."""
        try:
            data = await self._request(
                "POST",
                "login",
                json={"user": self.username, "password": self.password},
                auth=False,
            )
            token = data["data"]["authToken"]
            user_id = data["data"]["userId"]
        except (KeyError, TypeError) as e:
            logger.error("Login response missing credentials")
            raise RocketChatError("Login failed: malformed response") from e
        except RocketChatError as e:
            logger.error("Error during login to Rocket.Chat: %s", e)
            raise
        self.set_auth(token, user_id)
        logger.info("Successfully logged in to Rocket.Chat as %s", user_id)
        return token, user_id

    async def send_message(self, room_id: str, text: str) -> Dict[str, Any]:
        try:
            data = await self._request("POST", "chat.postMessage", json={"roomId": room_id, "text": text})
        except RocketChatError as e:
            logger.error("Error sending message to room %s: %s", room_id, e)
            raise
        logger.info("Message sent to room %s", room_id)
        return data

    async def get_messages_in_room(self, room_id: str) -> List[str]:
        """Return the message texts of a channel, newest first as Rocket.Chat orders them."""
        data = await self._request("GET", "channels.messages", params={"roomId": room_id})
        messages = data.get("messages") or []
        texts = [m.get("msg", "") for m in messages if isinstance(m, dict)]
        logger.info("Fetched %s messages from room %s", len(texts), room_id)
        return texts

    async def list_channels(self) -> Dict[str, Any]:
        return await self._request("GET", "channels.list")

    async def list_direct_messages(self) -> Dict[str, Any]:
        return await self._request("GET", "im.list")

    async def get_message(self, message_id: str) -> Dict[str, Any]:
        return await self._request("GET", "chat.getMessage", params={"msgId": message_id})

    async def create_user(self, username: str, email: str, name: str, password: str) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            "users.create",
            json={"username": username, "email": email, "name": name, "password": password},
        )
        logger.info("User created: %s", username)
        return data

    async def create_direct_message_room(self, username: str) -> str:
        data = await self._request("POST", "im.create", json={"username": username})
        try:
            room_id = data["room"]["_id"]
        except (KeyError, TypeError) as e:
            raise RocketChatError("im.create returned no room id") from e
        logger.info("Created DM room with %s", username)
        return room_id

    async def get_public_room_id(self, room_name: str) -> str:
        data = await self._request("GET", "channels.info", params={"roomName": room_name})
        try:
            return data["channel"]["_id"]
        except (KeyError, TypeError) as e:
            raise RocketChatError(f"No channel id for {room_name}") from e

    async def join_user_to_room(self, username: str, room_id: str) -> bool:
        """Invite a user; an error usually means they are already a member."""
        try:
            await self._request("POST", "channels.invite", json={"roomId": room_id, "username": username})
        except RocketChatError as e:
            logger.warning("User %s might already be in room %s: %s", username, room_id, e)
            return False
        logger.info("Added user %s to room %s", username, room_id)
        return True

    async def create_public_room_and_join(self, room_name: str, username: str) -> str:
        data = await self._request("POST", "channels.create", json={"name": room_name, "readOnly": False})
        try:
            room_id = data["channel"]["_id"]
        except (KeyError, TypeError) as e:
            raise RocketChatError("channels.create returned no channel id") from e
        logger.info("Created public room: %s", room_name)
        await self.join_user_to_room(username, room_id)
        return room_id

    async def create_or_get_support_room(self, username: str) -> str:
        """Return the id of support-<username>, creating the room if needed."""
        room_name = f"support-{username}"
        try:
            room_id = await self.get_public_room_id(room_name)
            logger.info("Public room already exists for user %s: %s", username, room_id)
            return room_id
        except RocketChatError:
            logger.info("No existing room found for user %s, creating new one", username)
        return await self.create_public_room_and_join(room_name, username)
