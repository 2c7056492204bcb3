"""MessageSender ABC, one capability: send a text to a recipient on a platform.

Each messaging platform the inbox supports (WhatsApp, Instagram, Messenger)
implements this interface.  Callers pick the sender from a registry keyed by
``platform`` instead of branching on platform names.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx


@dataclass
class SenderCredential:
    """Provider credential for one connected messaging account."""

    access_token: str
    account_id: Optional[str] = None  # WhatsApp phone-number id; unused elsewhere

    @classmethod
    def from_integration(cls, integration: dict) -> "SenderCredential":
        config = integration.get("config") or {}
        return cls(
            access_token=config.get("access_token") or config.get("page_access_token") or "",
            account_id=config.get("phone_number_id") or config.get("page_id"),
        )


class MessageSender(ABC):
    """Abstract messaging platform.

    Subclasses send a plain text message to a platform-specific recipient
    handle (phone number, Instagram-scoped id, page-scoped id) and raise
    ``httpx.HTTPError`` on delivery failure.
    """

    platform: str = ""

    @abstractmethod
    async def send_text(
        self,
        client: httpx.AsyncClient,
        recipient: str,
        text: str,
        credential: SenderCredential,
    ) -> str:
        """Send ``text`` and return the provider's message id."""
