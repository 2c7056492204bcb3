"""Booking use cases: availability check, meeting creation and cancellation.

The orchestrator loads everything fresh on each call (agent policy,
calendar integration, access token) and enforces the preconditions before
any calendar call is made:

  1. scheduling enabled in the agent policy     → SchedulingDisabled
  2. connected calendar integration with token  → CalendarNotConnected
  3. token usable (refreshed when about to expire) → TokenExpired
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from meetings.availability import find_slots
from meetings.calendar_providers.base import CalendarProvider, TimeSlot
from meetings.conference import MeetingEventCreator
from meetings.config import Settings
from meetings.errors import (
    CalendarNotConnected,
    ConversationNotFound,
    InvalidDate,
    InvalidRequest,
    MeetingNotFound,
    NoAvailableSlots,
    PersistenceFailed,
    ProviderCancelFailed,
    SchedulingDisabled,
    TokenExpired,
)
from meetings.models.booking import (
    AvailabilityResult,
    BookingRequest,
    BookingResult,
    MeetingRecord,
    MeetingSummary,
    SlotOut,
)
from meetings.models.policy import SchedulingPolicy
from meetings.store import DataStore
from meetings.tokens import TokenRefresher
from meetings.tracing import ExecutionTrace, redact_pii

log = logging.getLogger("meetings.orchestrator")

ProviderFactory = Callable[[str], CalendarProvider]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def event_id_for(idempotency_key: Optional[str]) -> Optional[str]:
    """Deterministic provider event id for a client idempotency key.

    Google accepts ids made of base32hex characters (``0-9a-v``), 5 to 1024
    long; a hex digest satisfies that.
    """
    if not idempotency_key:
        return None
    return hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:40]


def parse_start(value: str, tz, now: datetime) -> datetime:
    """Parse an explicit ISO 8601 start; naive values are local to ``tz``."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise InvalidDate(f"Invalid date format: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    if parsed < now:
        raise InvalidDate(f"Date is in the past: {value}")
    return parsed.astimezone(timezone.utc)


class BookingOrchestrator:
    """Top-level booking use cases."""

    def __init__(
        self,
        store: DataStore,
        token_refresher: TokenRefresher,
        provider_factory: ProviderFactory,
        *,
        calendar_id: str = "primary",
        default_timezone: str = "America/Argentina/Buenos_Aires",
        availability_horizon_days: int = 10,
        inline_horizon_days: int = 5,
        booking_horizon_days: int = 3,
        max_horizon_days: int = 14,
        poll_attempts: int = 3,
        poll_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._tokens = token_refresher
        self._provider_factory = provider_factory
        self._calendar_id = calendar_id
        self._default_timezone = default_timezone
        self._availability_horizon = availability_horizon_days
        self._inline_horizon = inline_horizon_days
        self._booking_horizon = booking_horizon_days
        self._max_horizon = max_horizon_days
        self._poll_attempts = poll_attempts
        self._poll_delay = poll_delay
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: DataStore,
        settings: Settings,
        provider_factory: ProviderFactory,
        token_refresher: Optional[TokenRefresher] = None,
    ) -> "BookingOrchestrator":
        refresher = token_refresher or TokenRefresher(
            store,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=settings.google_token_uri,
        )
        return cls(
            store,
            refresher,
            provider_factory,
            calendar_id=settings.google_calendar_id,
            default_timezone=settings.default_timezone,
            availability_horizon_days=settings.availability_horizon_days,
            inline_horizon_days=settings.inline_horizon_days,
            booking_horizon_days=settings.booking_horizon_days,
            max_horizon_days=settings.max_horizon_days,
            poll_attempts=settings.conference_poll_attempts,
            poll_delay=settings.conference_poll_delay_seconds,
        )

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _load_policy(
        self, agent: Optional[dict], duration_override: Optional[int] = None
    ) -> SchedulingPolicy:
        policy = SchedulingPolicy.from_agent_config(
            (agent or {}).get("config"),
            default_timezone=self._default_timezone,
            duration_override=duration_override,
        )
        if not policy.enabled:
            raise SchedulingDisabled("Meeting scheduling not enabled for this agent")
        return policy

    async def _connect(self, user_id: str) -> tuple[CalendarProvider, dict]:
        integration = self._store.calendar_integration(user_id)
        if not integration or not (integration.get("config") or {}).get("provider_token"):
            raise CalendarNotConnected("Google Calendar not connected or missing token")
        token = await self._tokens.ensure_access_token(integration)
        if not token:
            raise CalendarNotConnected("Google Calendar not connected or missing token")
        return self._provider_factory(token), integration

    def _horizon(self, requested: Optional[int], default: int) -> int:
        return max(1, min(requested or default, self._max_horizon))

    async def _find(
        self,
        provider: CalendarProvider,
        integration: dict,
        policy: SchedulingPolicy,
        horizon_days: int,
    ) -> list[TimeSlot]:
        try:
            return await find_slots(
                provider,
                policy,
                horizon_days,
                now=self._clock(),
                calendar_id=self._calendar_id,
            )
        except TokenExpired:
            self._tokens.mark_stale(integration)
            raise

    def _availability(self, policy: SchedulingPolicy, slots: list[TimeSlot]) -> AvailabilityResult:
        return AvailabilityResult(
            slots=[SlotOut(start=s.start, end=s.end) for s in slots],
            timezone=policy.timezone,
            duration_minutes=policy.duration_minutes,
            work_hours=policy.work_hours(),
        )

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    async def check_availability(
        self,
        agent_id: Optional[str] = None,
        user_id: Optional[str] = None,
        horizon_days: Optional[int] = None,
        trace: Optional[ExecutionTrace] = None,
    ) -> AvailabilityResult:
        """Open slots for an agent (or the user's messaging agent)."""
        trace = trace or ExecutionTrace("check-availability", agent_id=agent_id, user_id=user_id)
        if not agent_id and not user_id:
            raise InvalidRequest("agentId or userId is required")

        agent = self._store.agent_for(agent_id=agent_id, user_id=user_id)
        owner_id = (agent or {}).get("user_id") or user_id
        policy = self._load_policy(agent)
        trace.step("Policy loaded", timezone=policy.timezone, duration=policy.duration_minutes)

        if not owner_id:
            raise CalendarNotConnected("Agent has no owning user")
        provider, integration = await self._connect(owner_id)

        horizon = self._horizon(horizon_days, self._availability_horizon)
        trace.step("Scanning availability", horizon_days=horizon)
        slots = await self._find(provider, integration, policy, horizon)
        trace.step("Slots found", count=len(slots))
        return self._availability(policy, slots)

    async def create_meeting(
        self,
        request: BookingRequest,
        trace: Optional[ExecutionTrace] = None,
    ) -> Union[BookingResult, AvailabilityResult]:
        """Book a meeting for a lead, or list slots when only checking."""
        trace = trace or ExecutionTrace(
            "create-meeting", conversation_id=request.conversation_id, agent_id=request.agent_id
        )
        if not request.check_availability_only and not request.lead_name.strip():
            raise InvalidRequest("leadName is required to create a meeting")

        conversation = self._store.conversations.get(request.conversation_id)
        if not conversation:
            raise ConversationNotFound(f"Conversation {request.conversation_id} not found")
        user_id = conversation["user_id"]
        agent_id = request.agent_id or conversation.get("agent_id")
        agent = self._store.agents.get(agent_id) if agent_id else None

        policy = self._load_policy(agent, duration_override=request.custom_duration)
        trace.step(
            "Policy loaded",
            mode="check_availability" if request.check_availability_only else "create_meeting",
            duration=policy.duration_minutes,
        )

        start: Optional[datetime] = None
        if request.custom_date and not request.check_availability_only:
            start = parse_start(request.custom_date, policy.tz, self._clock())
            trace.step("Using explicit start", start=start.isoformat())

        event_id = event_id_for(request.idempotency_key)
        if event_id:
            existing = self._store.meetings.find_one(
                lambda m: m.get("calendar_event_id") == event_id and m.get("status") == "scheduled"
            )
            if existing:
                trace.step("Idempotent replay", calendar_event_id=event_id)
                return BookingResult(meeting=self._summary(MeetingRecord(**existing), policy))

        provider, integration = await self._connect(user_id)
        trace.step("Calendar connected")

        if request.check_availability_only:
            slots = await self._find(provider, integration, policy, self._inline_horizon)
            trace.step("Slots found", count=len(slots))
            return self._availability(policy, slots)

        if start is not None:
            slot = TimeSlot(start=start, end=start + policy.duration)
        else:
            slots = await self._find(provider, integration, policy, self._booking_horizon)
            if not slots:
                raise NoAvailableSlots("No available slots found")
            slot = slots[0]
            trace.step("Next available slot", start=slot.start.isoformat())

        title = policy.render_title(request.lead_name)
        description = policy.render_description(request.lead_name)
        if request.lead_email:
            description += f"\n\nLead email: {request.lead_email}"
        if request.lead_phone:
            description += f"\nPhone: {request.lead_phone}"
        attendees = [a for a in (request.lead_email, policy.agent_email) if a]

        creator = MeetingEventCreator(
            provider,
            calendar_id=self._calendar_id,
            poll_attempts=self._poll_attempts,
            poll_delay=self._poll_delay,
            sleep=self._sleep,
        )
        try:
            creation = await creator.create_meeting(
                slot, policy, attendees, title, description, event_id=event_id
            )
        except TokenExpired:
            self._tokens.mark_stale(integration)
            raise
        trace.step(
            "Event created",
            calendar_event_id=creation.calendar_event_id,
            conference=creation.state.value,
            refetches=creation.attempts,
        )
        duration_minutes = int((creation.end - creation.start).total_seconds() // 60)

        record = MeetingRecord(
            user_id=user_id,
            conversation_id=request.conversation_id,
            agent_id=agent_id,
            calendar_event_id=creation.calendar_event_id,
            start_time=creation.start,
            duration_minutes=duration_minutes,
            conference_link=creation.conference_link,
            lead_name=request.lead_name,
            lead_email=request.lead_email,
            lead_phone=request.lead_phone,
            metadata={
                "title": title,
                "agent_email": policy.agent_email,
                "html_link": creation.html_link,
                "conference_state": creation.state.value,
                "created_by": "ai_agent",
            },
        )
        self._persist(record)
        log.info(
            "Meeting %s booked for lead %s at %s",
            creation.calendar_event_id, redact_pii(request.lead_email), creation.start.isoformat(),
        )

        return BookingResult(
            meeting=MeetingSummary(
                calendar_event_id=creation.calendar_event_id,
                meeting_date=creation.start,
                duration_minutes=duration_minutes,
                conference_link=creation.conference_link,
                title=title,
                fell_back_to_html_link=creation.fell_back_to_html_link,
            )
        )

    async def cancel_meeting(self, meeting_id: str) -> MeetingRecord:
        """Delete the provider event and mark the meeting canceled."""
        raw = self._store.meetings.get(meeting_id)
        if not raw:
            raise MeetingNotFound(f"Meeting {meeting_id} not found")
        record = MeetingRecord(**raw)
        if record.status == "canceled":
            return record

        provider, integration = await self._connect(record.user_id)
        try:
            cancelled = await provider.cancel_event(self._calendar_id, record.calendar_event_id)
        except TokenExpired:
            self._tokens.mark_stale(integration)
            raise
        if not cancelled:
            raise ProviderCancelFailed(f"Failed to cancel event {record.calendar_event_id}")

        self._store.meetings.update(meeting_id, {"status": "canceled"})
        log.info("Meeting %s canceled", meeting_id)
        return record.model_copy(update={"status": "canceled"})

    # ------------------------------------------------------------------

    def _persist(self, record: MeetingRecord) -> None:
        """Best-effort write; the provider event stays the source of truth."""
        try:
            self._store.meetings.insert(record.model_dump(mode="json"))
        except Exception as e:
            failure = PersistenceFailed(str(e))
            log.exception(
                "%s: meeting for event %s not saved, needs manual reconciliation",
                failure.kind,
                record.calendar_event_id,
            )

    @staticmethod
    def _summary(record: MeetingRecord, policy: SchedulingPolicy) -> MeetingSummary:
        return MeetingSummary(
            calendar_event_id=record.calendar_event_id,
            meeting_date=record.start_time,
            duration_minutes=record.duration_minutes,
            conference_link=record.conference_link,
            title=record.metadata.get("title") or policy.render_title(record.lead_name),
            fell_back_to_html_link=record.metadata.get("conference_state") == "unresolved_fallback",
        )
