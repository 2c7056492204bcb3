"""Outbound messaging to leads on their chat platform."""

from .base import MessageSender, SenderCredential
from .meta import PageMessageSender, WhatsAppSender, default_senders

__all__ = [
    "MessageSender",
    "PageMessageSender",
    "SenderCredential",
    "WhatsAppSender",
    "default_senders",
]
