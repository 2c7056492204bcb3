"""Day-before reminders for scheduled meetings.

A sweep (triggered by cron through ``POST /api/reminders/run``) finds every
``scheduled`` meeting whose start falls on the next local day and sends the
lead a reminder on the platform the conversation happened on.  One failing
meeting never aborts the sweep; its error is collected in the result.  A
meeting that already got a reminder is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import httpx

from meetings.messaging.base import MessageSender, SenderCredential
from meetings.models.booking import MeetingRecord
from meetings.store import DataStore

log = logging.getLogger("meetings.reminders")


def build_reminder_message(
    lead_name: str,
    start_local: datetime,
    meeting_link: str,
    duration_minutes: int,
    agent_name: Optional[str] = None,
) -> str:
    lines = [
        f"Hi {lead_name}! 👋",
        "",
        "This is a reminder that your meeting is scheduled for tomorrow:",
        "",
        f"📅 Date: {start_local.strftime('%A, %B %d, %Y')}",
        f"🕐 Time: {start_local.strftime('%H:%M')}",
        f"⏱️ Duration: {duration_minutes} minutes",
    ]
    if agent_name:
        lines.append(f"👤 With: {agent_name}")
    lines += ["", "🔗 Meeting link:", meeting_link, "", "See you soon!"]
    return "\n".join(lines)


@dataclass
class ReminderRunResult:
    reminders_sent: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "remindersSent": self.reminders_sent,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class ReminderService:
    """Sends reminders through the sender registered for each platform."""

    def __init__(
        self,
        store: DataStore,
        senders: dict[str, MessageSender],
        default_timezone: str = "America/Argentina/Buenos_Aires",
        client_factory: Callable[[], httpx.AsyncClient] = lambda: httpx.AsyncClient(timeout=30),
    ) -> None:
        self._store = store
        self._senders = senders
        self._default_tz = default_timezone
        self._client_factory = client_factory

    def _timezone_for(self, agent: Optional[dict]) -> ZoneInfo:
        config = (agent or {}).get("config") or {}
        return ZoneInfo(config.get("meetingTimezone") or self._default_tz)

    async def run(self, now: Optional[datetime] = None) -> ReminderRunResult:
        now = now or datetime.now(tz=timezone.utc)
        result = ReminderRunResult()

        meetings = self._store.meetings.find(
            lambda m: m.get("status") == "scheduled"
            and not (m.get("metadata") or {}).get("reminder_sent_at")
        )

        async with self._client_factory() as client:
            for raw in meetings:
                meeting = MeetingRecord(**raw)
                try:
                    sent = await self._remind(client, meeting, now)
                except Exception as e:
                    log.error("Reminder for meeting %s failed: %s", meeting.id, e)
                    result.errors.append(f"Meeting {meeting.id}: {e}")
                    continue
                if sent:
                    result.reminders_sent += 1
                else:
                    result.skipped += 1

        log.info(
            "Reminder sweep done: %d sent, %d skipped, %d errors",
            result.reminders_sent, result.skipped, len(result.errors),
        )
        return result

    async def _remind(self, client: httpx.AsyncClient, meeting: MeetingRecord, now: datetime) -> bool:
        agent = self._store.agents.get(meeting.agent_id) if meeting.agent_id else None
        tz = self._timezone_for(agent)
        start_local = meeting.start_time.astimezone(tz)
        tomorrow = (now.astimezone(tz) + timedelta(days=1)).date()
        if start_local.date() != tomorrow:
            return False

        conversation = self._store.conversations.get(meeting.conversation_id)
        if not conversation:
            raise LookupError("conversation not found")

        platform = conversation.get("platform", "")
        sender = self._senders.get(platform)
        if sender is None:
            raise LookupError(f"no sender for platform {platform!r}")

        integration = self._store.messaging_integration(conversation["user_id"], platform)
        if not integration:
            raise LookupError(f"{platform} not connected")

        text = build_reminder_message(
            lead_name=meeting.lead_name,
            start_local=start_local,
            meeting_link=meeting.conference_link,
            duration_minutes=meeting.duration_minutes,
            agent_name=(agent or {}).get("name"),
        )
        message_id = await sender.send_text(
            client,
            conversation["platform_conversation_id"],
            text,
            SenderCredential.from_integration(integration),
        )
        self._store.meetings.update(
            meeting.id,
            {"metadata": {**meeting.metadata, "reminder_sent_at": now.isoformat()}},
        )
        log.info("Reminder sent for meeting %s via %s (%s)", meeting.id, platform, message_id)
        return True
