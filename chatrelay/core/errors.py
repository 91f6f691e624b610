"""
Error types shared by the REST client, the session tracker and the HTTP API.
"""


class RocketChatError(Exception):
    """Raised when a call against the Rocket.Chat REST API fails."""
    pass
