"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

log = logging.getLogger("meetings.config")


class Settings(BaseSettings):
    # Google OAuth client (used to refresh per-user calendar tokens)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_calendar_id: str = "primary"

    # Scheduling defaults
    default_timezone: str = "America/Argentina/Buenos_Aires"
    max_horizon_days: int = 14
    availability_horizon_days: int = 10   # advisory check path
    inline_horizon_days: int = 5          # "find me a slot" from the meetings endpoint
    booking_horizon_days: int = 3         # first-slot fallback when booking

    # Conference link polling
    conference_poll_attempts: int = 3
    conference_poll_delay_seconds: float = 2.0

    # Storage
    data_dir: str = "data"

    # Messaging (reminders)
    graph_api_url: str = "https://graph.facebook.com/v19.0"

    # API auth
    api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"your-client-id", "your-client-secret", "changeme"}

        try:
            ZoneInfo(self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"DEFAULT_TIMEZONE {self.default_timezone!r} is not a valid IANA timezone."
            )

        if self.max_horizon_days < 1:
            raise ValueError("MAX_HORIZON_DAYS must be at least 1.")

        # API key: warn if unset
        if not self.api_key:
            if self.debug:
                warnings.append("API_KEY not set. Booking APIs are open (DEBUG=true).")
            else:
                warnings.append(
                    "API_KEY not set. Booking APIs are locked in production. "
                    "Set API_KEY in .env to enable access."
                )

        # Google OAuth: without a client, expiring tokens cannot be refreshed
        if not self.google_client_id or self.google_client_id in _placeholders:
            warnings.append(
                "GOOGLE_CLIENT_ID is missing or a placeholder. "
                "Expired calendar tokens will not be refreshed."
            )
        if not self.google_client_secret or self.google_client_secret in _placeholders:
            warnings.append("GOOGLE_CLIENT_SECRET is missing or a placeholder.")

        return warnings


settings = Settings()
