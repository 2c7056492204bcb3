"""Authentication dependency for the booking API.

The callers are the inbox's own backend functions (AI reply pipeline, web
app), which send the shared key as a bearer token.

Behavior matrix:
  API_KEY set + valid token   → allow
  API_KEY set + wrong/missing → 401 Unauthorized
  API_KEY empty + DEBUG=true  → allow (local dev convenience)
  API_KEY empty + DEBUG=false → 403 Forbidden (locked in production)
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from meetings.config import settings

log = logging.getLogger("meetings.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_api_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect booking endpoints with a bearer token."""
    key = settings.api_key

    if not key:
        # No key configured
        if settings.debug:
            return  # Local dev, allow without auth
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key not configured. Set API_KEY in .env.",
        )

    if credentials is None or not secrets.compare_digest(credentials.credentials, key):
        log.warning("Rejected request with invalid or missing API token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
