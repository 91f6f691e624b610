"""
Admin operations: REST login as the configured admin and user provisioning.
"""
import logging
from typing import Any, Dict, Optional

from chatrelay.core.errors import RocketChatError
from chatrelay.core.services.rocketchat_client import RocketChatClient

logger = logging.getLogger(__name__)


class AdminService:
    """Admin login and user creation on top of the shared REST client."""

    def __init__(self, client: RocketChatClient) -> None:
        self.client = client

    @property
    def admin_user_id(self) -> Optional[str]:
        return self.client.user_id

    async def login(self) -> str:
        """Log in as admin. The REST client keeps the credentials for later calls."""
        try:
            _, user_id = await self.client.login()
        except RocketChatError:
            logger.error("Admin login failed")
            raise
        logger.info("Admin login successful. Admin userId: %s", user_id)
        return user_id

    async def create_user(self, username: str, email: str, name: str, password: str) -> Dict[str, Any]:
        if not self.client.is_authenticated:
            await self.login()
        try:
            return await self.client.create_user(username, email, name, password)
        except RocketChatError:
            logger.error("Failed to create user: %s", username)
            raise
