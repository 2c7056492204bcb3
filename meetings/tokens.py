"""Keeps the stored Google access token usable before any calendar call.

The integration record written by the OAuth flow holds::

    config.provider_token          current access token
    config.provider_refresh_token  long-lived refresh token (optional)
    config.token_expires_at        ISO 8601 expiry (optional)

A token that expires within ``REFRESH_MARGIN`` is refreshed through
google-auth and written back to the integration record.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from meetings.errors import TokenExpired
from meetings.store import DataStore

log = logging.getLogger("meetings.tokens")

REFRESH_MARGIN = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenRefresher:
    """Refreshes per-user calendar tokens on demand."""

    def __init__(
        self,
        store: DataStore,
        client_id: str,
        client_secret: str,
        token_uri: str = "https://oauth2.googleapis.com/token",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri
        self._clock = clock

    def needs_refresh(self, integration: dict) -> bool:
        config = integration.get("config") or {}
        expires_at = config.get("token_expires_at")
        if not expires_at or not config.get("provider_refresh_token"):
            return False
        try:
            return _parse_instant(expires_at) - self._clock() < REFRESH_MARGIN
        except ValueError:
            log.warning("Unparseable token_expires_at %r, forcing refresh", expires_at)
            return True

    async def ensure_access_token(self, integration: dict) -> Optional[str]:
        """Return a usable access token, refreshing it first when needed."""
        config = integration.get("config") or {}
        if not self.needs_refresh(integration):
            return config.get("provider_token")

        log.info("Token for integration %s expires soon, refreshing", integration.get("id"))
        loop = asyncio.get_running_loop()
        token, expiry = await loop.run_in_executor(
            None, self._refresh, config["provider_refresh_token"]
        )

        now = self._clock()
        updated = {
            **config,
            "provider_token": token,
            "token_expires_at": (expiry or now + DEFAULT_TOKEN_LIFETIME).isoformat(),
            "last_token_refresh": now.isoformat(),
        }
        self._store.integrations.update(integration["id"], {"config": updated})
        integration["config"] = updated
        log.info("Token for integration %s refreshed", integration.get("id"))
        return token

    def mark_stale(self, integration: dict) -> None:
        """Force a refresh on the next call after the provider rejected the token."""
        config = integration.get("config") or {}
        if not config.get("provider_refresh_token"):
            return
        updated = {**config, "token_expires_at": self._clock().isoformat()}
        self._store.integrations.update(integration["id"], {"config": updated})
        integration["config"] = updated

    def _refresh(self, refresh_token: str) -> tuple[str, Optional[datetime]]:
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._token_uri,
            client_id=self._client_id,
            client_secret=self._client_secret,
        )
        try:
            credentials.refresh(Request())
        except (RefreshError, TransportError) as e:
            log.error("Failed to refresh Google token: %s", e)
            raise TokenExpired("Failed to refresh Google token") from e

        expiry = credentials.expiry
        # google-auth reports expiry as a naive UTC datetime
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return credentials.token, expiry
