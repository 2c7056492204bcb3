"""Tests for the day-before reminder sweep and the Meta senders."""

import json
from datetime import datetime, timezone

import httpx
import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from meetings.messaging import default_senders
from meetings.reminders import ReminderService, build_reminder_message
from meetings.store import DataStore

GRAPH = "https://graph.facebook.com/v19.0"
NOW = datetime(2026, 3, 16, 15, 0, tzinfo=timezone.utc)  # Monday 12:00 local


class GraphRecorder:
    """httpx.MockTransport handler that records requests."""

    def __init__(self, fail_paths=()):
        self.requests = []
        self.fail_paths = set(fail_paths)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.fail_paths:
            return httpx.Response(400, json={"error": {"message": "bad recipient"}})
        if request.url.path.endswith("/me/messages"):
            return httpx.Response(200, json={"recipient_id": "x", "message_id": "m_1"})
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})


def add_meeting(store, meeting_id, conversation_id, start, **extra):
    record = {
        "id": meeting_id,
        "user_id": "user-1",
        "conversation_id": conversation_id,
        "agent_id": "agent-1",
        "calendar_event_id": f"evt-{meeting_id}",
        "start_time": start.isoformat(),
        "duration_minutes": 30,
        "conference_link": "https://meet.google.com/abc",
        "lead_name": "Ana",
        "status": "scheduled",
        "metadata": {},
    }
    record.update(extra)
    store.meetings.insert(record)


@pytest.fixture
def store(tmp_path):
    store = DataStore(tmp_path)
    store.agents.insert({"id": "agent-1", "user_id": "user-1", "name": "Sofia", "config": {}})
    store.conversations.insert({
        "id": "conv-wa", "user_id": "user-1", "platform": "whatsapp",
        "platform_conversation_id": "5491100000000",
    })
    store.conversations.insert({
        "id": "conv-ig", "user_id": "user-1", "platform": "instagram",
        "platform_conversation_id": "ig-scoped-1",
    })
    store.integrations.insert({
        "id": "wa", "user_id": "user-1", "type": "whatsapp", "status": "connected",
        "config": {"access_token": "wa-token", "phone_number_id": "1001"},
    })
    store.integrations.insert({
        "id": "ig", "user_id": "user-1", "type": "instagram", "status": "connected",
        "config": {"page_access_token": "ig-token"},
    })
    return store


def make_service(store, recorder):
    return ReminderService(
        store,
        default_senders(GRAPH),
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )


class TestBuildReminderMessage:
    def test_contents(self):
        text = build_reminder_message(
            "Ana", datetime(2026, 3, 17, 10, 0), "https://meet.google.com/abc", 30, "Sofia"
        )
        assert text.startswith("Hi Ana!")
        assert "Tuesday, March 17, 2026" in text
        assert "10:00" in text
        assert "30 minutes" in text
        assert "With: Sofia" in text
        assert "https://meet.google.com/abc" in text

    def test_without_agent_name(self):
        text = build_reminder_message("Ana", datetime(2026, 3, 17, 10, 0), "link", 30)
        assert "With:" not in text


class TestReminderService:
    async def test_sends_whatsapp_reminder(self, store):
        add_meeting(store, "m1", "conv-wa", datetime(2026, 3, 17, 13, 0, tzinfo=timezone.utc))
        recorder = GraphRecorder()

        result = await make_service(store, recorder).run(now=NOW)

        assert result.reminders_sent == 1
        assert result.errors == []
        request = recorder.requests[0]
        assert request.url.path == "/v19.0/1001/messages"
        assert request.headers["Authorization"] == "Bearer wa-token"
        body = json.loads(request.content)
        assert body["messaging_product"] == "whatsapp"
        assert body["to"] == "5491100000000"
        assert "10:00" in body["text"]["body"]  # local time, UTC-3
        assert store.meetings.get("m1")["metadata"]["reminder_sent_at"] == NOW.isoformat()

    async def test_sends_instagram_reminder(self, store):
        add_meeting(store, "m1", "conv-ig", datetime(2026, 3, 17, 13, 0, tzinfo=timezone.utc))
        recorder = GraphRecorder()

        result = await make_service(store, recorder).run(now=NOW)

        assert result.reminders_sent == 1
        request = recorder.requests[0]
        assert request.url.path == "/v19.0/me/messages"
        assert request.url.params["access_token"] == "ig-token"
        body = json.loads(request.content)
        assert body["recipient"] == {"id": "ig-scoped-1"}
        assert body["tag"] == "CONFIRMED_EVENT_UPDATE"

    async def test_skips_meetings_not_tomorrow(self, store):
        add_meeting(store, "today", "conv-wa", datetime(2026, 3, 16, 20, 0, tzinfo=timezone.utc))
        add_meeting(store, "later", "conv-wa", datetime(2026, 3, 19, 13, 0, tzinfo=timezone.utc))
        recorder = GraphRecorder()

        result = await make_service(store, recorder).run(now=NOW)

        assert result.reminders_sent == 0
        assert result.skipped == 2
        assert recorder.requests == []

    async def test_skips_canceled_and_already_reminded(self, store):
        start = datetime(2026, 3, 17, 13, 0, tzinfo=timezone.utc)
        add_meeting(store, "c", "conv-wa", start, status="canceled")
        add_meeting(store, "r", "conv-wa", start, metadata={"reminder_sent_at": "2026-03-16T10:00:00"})
        recorder = GraphRecorder()

        result = await make_service(store, recorder).run(now=NOW)

        assert result.reminders_sent == 0
        assert recorder.requests == []

    async def test_failures_are_collected(self, store):
        start = datetime(2026, 3, 17, 13, 0, tzinfo=timezone.utc)
        add_meeting(store, "bad", "conv-wa", start)
        add_meeting(store, "good", "conv-ig", start)
        add_meeting(store, "orphan", "conv-missing", start)
        recorder = GraphRecorder(fail_paths={"/v19.0/1001/messages"})

        result = await make_service(store, recorder).run(now=NOW)

        assert result.reminders_sent == 1
        assert len(result.errors) == 2
        assert any(e.startswith("Meeting bad:") for e in result.errors)
        assert any(e.startswith("Meeting orphan:") for e in result.errors)
        assert "reminder_sent_at" not in store.meetings.get("bad")["metadata"]

    async def test_result_shape(self, store):
        result = await make_service(store, GraphRecorder()).run(now=NOW)
        assert result.to_dict() == {
            "success": True, "remindersSent": 0, "skipped": 0, "errors": [],
        }
