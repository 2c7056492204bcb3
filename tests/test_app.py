"""HTTP-level tests for the booking API."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from meetings.app import create_app
from meetings.calendar_providers.base import CalendarProvider
from meetings.orchestrator import BookingOrchestrator
from meetings.reminders import ReminderService
from meetings.store import DataStore
from meetings.tokens import TokenRefresher

NOW = datetime(2026, 3, 16, 11, 0, tzinfo=timezone.utc)
AUTH = {"Authorization": "Bearer test-key"}


class FakeSettings:
    def __init__(self, api_key="test-key", debug=False):
        self.api_key = api_key
        self.debug = debug


class FakeCalendar(CalendarProvider):
    def __init__(self, insert_error=None):
        self.insert_error = insert_error
        self.events = {}

    async def list_busy_intervals(self, calendar_id, time_min, time_max):
        return []

    async def create_event(self, calendar_id, event):
        if self.insert_error:
            raise self.insert_error
        created = {"id": "evt1", "htmlLink": "https://calendar.google.com/e/evt1"}
        self.events["evt1"] = created
        return created

    async def get_event(self, calendar_id, event_id):
        return self.events[event_id]

    async def cancel_event(self, calendar_id, event_id):
        return True


async def no_sleep(_delay):
    return None


@pytest.fixture
def store(tmp_path):
    store = DataStore(tmp_path)
    store.agents.insert({
        "id": "agent-1", "user_id": "user-1", "platform": "whatsapp",
        "config": {"enableMeetingScheduling": True},
    })
    store.agents.insert({
        "id": "agent-off", "user_id": "user-1", "platform": "web", "config": {},
    })
    store.conversations.insert({
        "id": "conv-1", "user_id": "user-1", "agent_id": "agent-1",
        "platform": "whatsapp", "platform_conversation_id": "5491100000000",
    })
    store.integrations.insert({
        "id": "int-1", "user_id": "user-1", "type": "google_calendar", "status": "connected",
        "config": {
            "provider_token": "tok",
            "token_expires_at": (NOW + timedelta(hours=1)).isoformat(),
        },
    })
    return store


def make_client(store, calendar, monkeypatch, **settings_kwargs):
    monkeypatch.setattr("meetings.auth.settings", FakeSettings(**settings_kwargs))
    orchestrator = BookingOrchestrator(
        store,
        TokenRefresher(store, "id", "secret", clock=lambda: NOW),
        lambda token: calendar,
        poll_attempts=1,
        sleep=no_sleep,
        clock=lambda: NOW,
    )
    reminders = ReminderService(store, {})
    return TestClient(create_app(store=store, orchestrator=orchestrator, reminder_service=reminders))


class TestHealth:
    def test_health(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestAuth:
    def test_missing_token(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post("/api/availability", json={"agentId": "agent-1"})
        assert resp.status_code == 401


class TestAvailabilityEndpoint:
    def test_returns_slots(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)

        resp = client.post("/api/availability", json={"agentId": "agent-1"}, headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["durationMinutes"] == 30
        assert data["workHours"]["days"][0] == "monday"
        assert data["slots"][0]["start"].startswith("2026-03-16T12:00:00")

    def test_scheduling_disabled_is_structured(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)

        resp = client.post("/api/availability", json={"agentId": "agent-off"}, headers=AUTH)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": False,
            "error": "SchedulingDisabled",
            "message": "Meeting scheduling not enabled for this agent",
        }

    def test_invalid_days_ahead(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post("/api/availability", json={"agentId": "agent-1", "daysAhead": 0}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidRequest"

    def test_trace_saved(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        client.post("/api/availability", json={"agentId": "agent-1"}, headers=AUTH)

        logs = store.debug_logs.all()
        assert len(logs) == 1
        assert logs[0]["function_name"] == "check-availability"
        assert logs[0]["success"] is True


class TestMeetingsEndpoint:
    def test_books_meeting(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)

        resp = client.post(
            "/api/meetings",
            json={"conversationId": "conv-1", "leadName": "Ana", "leadEmail": "ana@example.com"},
            headers=AUTH,
        )

        assert resp.status_code == 200
        meeting = resp.json()["meeting"]
        assert meeting["calendarEventId"] == "evt1"
        assert meeting["conferenceLink"] == "https://calendar.google.com/e/evt1"
        assert meeting["fellBackToHtmlLink"] is True
        assert meeting["title"] == "Meeting with Ana"

    def test_missing_conversation_id(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post("/api/meetings", json={"leadName": "Ana"}, headers=AUTH)
        assert resp.status_code == 400

    def test_invalid_date(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post(
            "/api/meetings",
            json={"conversationId": "conv-1", "leadName": "Ana", "customDate": "yesterday"},
            headers=AUTH,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidDate"

    def test_unknown_conversation(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post(
            "/api/meetings", json={"conversationId": "nope", "leadName": "Ana"}, headers=AUTH
        )
        assert resp.status_code == 404

    def test_insert_failure_is_502(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(insert_error=RuntimeError("quota")), monkeypatch)
        resp = client.post(
            "/api/meetings", json={"conversationId": "conv-1", "leadName": "Ana"}, headers=AUTH
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "ProviderInsertFailed"
        assert store.debug_logs.all()[0]["response_status"] == 502

    def test_cancel(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        client.post(
            "/api/meetings", json={"conversationId": "conv-1", "leadName": "Ana"}, headers=AUTH
        )
        meeting_id = store.meetings.all()[0]["id"]

        resp = client.post(f"/api/meetings/{meeting_id}/cancel", headers=AUTH)

        assert resp.status_code == 200
        assert resp.json()["meeting"]["status"] == "canceled"

    def test_cancel_unknown(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post("/api/meetings/nope/cancel", headers=AUTH)
        assert resp.status_code == 404
        assert resp.json()["error"] == "MeetingNotFound"


class TestRemindersEndpoint:
    def test_run(self, store, monkeypatch):
        client = make_client(store, FakeCalendar(), monkeypatch)
        resp = client.post("/api/reminders/run", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["remindersSent"] == 0
