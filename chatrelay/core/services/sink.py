"""
Outbound message sink interface.

The realtime core only ever needs to post a text into a room; anything that can
do that (the REST client, a test double) can be injected.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class MessageSink(ABC):
    """Delivers a text message into a Rocket.Chat room."""

    @abstractmethod
    async def send_message(self, room_id: str, text: str) -> Dict[str, Any]:
        """
        Post text into the room.

        Args:
            room_id: Target room id
            text: Message body

        Returns:
            Raw response payload from the backend

        Raises:
            RocketChatError if delivery failed
        """
        pass
