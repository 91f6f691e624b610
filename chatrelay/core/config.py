"""
Configuration management for the chat relay.

Handles environment-based configuration for the Rocket.Chat endpoints,
admin credentials, realtime connection policy and session timeouts.
"""
import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Rocket.Chat endpoints
    rocketchat_base_url: str = os.getenv("ROCKETCHAT_BASE_URL", "http://localhost:3000/api/v1")
    rocketchat_websocket_url: str = os.getenv("ROCKETCHAT_WEBSOCKET_URL", "ws://localhost:3000/websocket")

    # Admin credentials (used for REST login and the realtime digest login)
    rocketchat_admin_username: str = os.getenv("ROCKETCHAT_ADMIN_USERNAME", "admin")
    rocketchat_admin_password: str = os.getenv("ROCKETCHAT_ADMIN_PASSWORD", "")

    # Rooms to follow over the realtime connection
    rocketchat_room_ids: str = os.getenv("ROCKETCHAT_ROOM_IDS", "GENERAL")  # comma-separated
    rocketchat_subscribe_user_stream: bool = _env_flag("ROCKETCHAT_SUBSCRIBE_USER_STREAM", "true")

    # Realtime connection policy
    realtime_enabled: bool = _env_flag("REALTIME_ENABLED", "true")
    reconnect_enabled: bool = _env_flag("RECONNECT_ENABLED", "true")
    keepalive_interval: float = float(os.getenv("KEEPALIVE_INTERVAL", "30"))
    max_reconnect_attempts: int = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "5"))

    # Session tracking
    inactivity_timeout_seconds: float = float(os.getenv("INACTIVITY_TIMEOUT_SECONDS", "600"))  # 10 minutes
    auto_reply_message: str = os.getenv(
        "AUTO_REPLY_MESSAGE",
        "Thank you for your message! An admin will respond shortly.",
    )
    closing_message: str = os.getenv(
        "CLOSING_MESSAGE",
        "This session has been closed due to inactivity. Please start a new chat if needed.",
    )
    # Empty disables the greeting on "user joined" events
    welcome_message: Optional[str] = os.getenv("WELCOME_MESSAGE", "Welcome to the room!") or None

    # Shared secret for the simulate-message webhook
    webhook_token: str = os.getenv("WEBHOOK_TOKEN", "token")

    # REST client
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "30"))

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Debug - handle non-boolean values gracefully
    debug: bool = False

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        """Parse debug from environment, handling non-boolean values."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes")
        debug_env = os.getenv("DEBUG", "false").lower()
        return debug_env in ("true", "1", "yes")

    @property
    def room_ids(self) -> List[str]:
        """Configured room ids as a list."""
        return [r.strip() for r in self.rocketchat_room_ids.split(",") if r.strip()]

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    class Config:
        # Load .env from project root (chatrelay/core/config.py -> parent.parent.parent)
        env_file = str(Path(__file__).resolve().parent.parent.parent / ".env")
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()
