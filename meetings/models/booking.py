"""Pydantic models for booking requests, results and stored meetings."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts and emits the camelCase field names used by the web client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AvailabilityRequest(_CamelModel):
    """Body of ``POST /api/availability``."""

    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    days_ahead: Optional[int] = Field(default=None, ge=1)


class BookingRequest(_CamelModel):
    """Body of ``POST /api/meetings``."""

    conversation_id: str = Field(min_length=1)
    lead_name: str = ""
    lead_email: Optional[str] = None
    lead_phone: Optional[str] = None
    agent_id: Optional[str] = None
    custom_date: Optional[str] = None      # ISO 8601, forces a specific start
    custom_duration: Optional[int] = Field(default=None, ge=1)
    check_availability_only: bool = False
    idempotency_key: Optional[str] = None


class SlotOut(_CamelModel):
    start: datetime
    end: datetime


class AvailabilityResult(_CamelModel):
    success: bool = True
    slots: list[SlotOut] = []
    timezone: str
    duration_minutes: int
    work_hours: dict


class MeetingSummary(_CamelModel):
    calendar_event_id: str
    meeting_date: datetime
    duration_minutes: int
    conference_link: str
    title: str
    fell_back_to_html_link: bool = False


class BookingResult(_CamelModel):
    success: bool = True
    meeting: MeetingSummary


class MeetingRecord(BaseModel):
    """A booked meeting as persisted in the ``meetings`` collection."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    conversation_id: str
    agent_id: Optional[str] = None
    calendar_event_id: str
    start_time: datetime
    duration_minutes: int
    conference_link: str
    lead_name: str
    lead_email: Optional[str] = None
    lead_phone: Optional[str] = None
    status: Literal["scheduled", "canceled"] = "scheduled"
    metadata: dict = {}
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
