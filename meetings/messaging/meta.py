"""Meta Graph API senders for WhatsApp Cloud, Instagram and Messenger."""

from __future__ import annotations

import httpx

from .base import MessageSender, SenderCredential


class WhatsAppSender(MessageSender):
    """WhatsApp Cloud API: ``POST /{phone_number_id}/messages``."""

    platform = "whatsapp"

    def __init__(self, graph_api_url: str) -> None:
        self._base = graph_api_url.rstrip("/")

    async def send_text(
        self,
        client: httpx.AsyncClient,
        recipient: str,
        text: str,
        credential: SenderCredential,
    ) -> str:
        if not credential.account_id:
            raise ValueError("WhatsApp integration has no phone_number_id")
        resp = await client.post(
            f"{self._base}/{credential.account_id}/messages",
            headers={"Authorization": f"Bearer {credential.access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": recipient,
                "type": "text",
                "text": {"body": text},
            },
        )
        resp.raise_for_status()
        data = resp.json()
        return (data.get("messages") or [{}])[0].get("id", "")


class PageMessageSender(MessageSender):
    """Send API shared by Messenger and Instagram: ``POST /me/messages``."""

    def __init__(self, graph_api_url: str, platform: str = "messenger") -> None:
        self._base = graph_api_url.rstrip("/")
        self.platform = platform

    async def send_text(
        self,
        client: httpx.AsyncClient,
        recipient: str,
        text: str,
        credential: SenderCredential,
    ) -> str:
        resp = await client.post(
            f"{self._base}/me/messages",
            params={"access_token": credential.access_token},
            json={
                "recipient": {"id": recipient},
                "message": {"text": text},
                "messaging_type": "MESSAGE_TAG",
                "tag": "CONFIRMED_EVENT_UPDATE",
            },
        )
        resp.raise_for_status()
        return resp.json().get("message_id", "")


def default_senders(graph_api_url: str) -> dict[str, MessageSender]:
    """Sender registry for every platform the inbox supports."""
    senders: list[MessageSender] = [
        WhatsAppSender(graph_api_url),
        PageMessageSender(graph_api_url, platform="instagram"),
        PageMessageSender(graph_api_url, platform="messenger"),
    ]
    return {s.platform: s for s in senders}
