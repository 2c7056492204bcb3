"""Per-agent scheduling policy, normalized from the stored agent config."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from meetings.errors import InvalidPolicy

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DEFAULT_WORK_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]
DEFAULT_TITLE = "Meeting with {name}"
DEFAULT_DESCRIPTION = "Meeting scheduled automatically"


class SchedulingPolicy(BaseModel):
    """Immutable scheduling rules for one booking request."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    duration_minutes: int = 30
    buffer_minutes: int = 0
    work_start: time = time(9, 0)
    work_end: time = time(18, 0)
    work_days: frozenset[str] = frozenset(DEFAULT_WORK_DAYS)
    timezone: str = "America/Argentina/Buenos_Aires"

    title_template: str = DEFAULT_TITLE
    description_template: str = DEFAULT_DESCRIPTION
    agent_email: Optional[str] = None

    @field_validator("work_days", mode="before")
    @classmethod
    def _normalize_days(cls, value: Any) -> frozenset[str]:
        if isinstance(value, str):
            value = [value]
        days = frozenset(str(d).strip().lower() for d in value)
        unknown = days - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"unknown weekday names: {sorted(unknown)}")
        return days

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}")
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "SchedulingPolicy":
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        if self.buffer_minutes < 0:
            raise ValueError("buffer_minutes must not be negative")
        if self.work_start >= self.work_end:
            raise ValueError("work_start must be before work_end")
        if timedelta(minutes=self.duration_minutes) > self.work_window:
            raise ValueError("duration_minutes does not fit in the work hours")
        return self

    # ------------------------------------------------------------------

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def work_window(self) -> timedelta:
        anchor = datetime(2000, 1, 1)
        return datetime.combine(anchor, self.work_end) - datetime.combine(anchor, self.work_start)

    def work_hours(self) -> dict:
        """Work hours in the shape returned by the availability API."""
        return {
            "start": self.work_start.strftime("%H:%M"),
            "end": self.work_end.strftime("%H:%M"),
            "days": [d for d in WEEKDAYS if d in self.work_days],
        }

    def render_title(self, lead_name: str) -> str:
        return self.title_template.replace("{name}", lead_name)

    def render_description(self, lead_name: str) -> str:
        return self.description_template.replace("{name}", lead_name)

    # ------------------------------------------------------------------

    @classmethod
    def from_agent_config(
        cls,
        config: dict | None,
        default_timezone: str = "America/Argentina/Buenos_Aires",
        duration_override: int | None = None,
    ) -> "SchedulingPolicy":
        """Build a policy from the camelCase agent config stored by the app.

        Missing keys fall back to the defaults.  Raises ``InvalidPolicy`` when
        the resulting policy breaks an invariant.
        """
        config = config or {}
        data: dict[str, Any] = {
            "enabled": bool(config.get("enableMeetingScheduling", False)),
            "duration_minutes": duration_override or config.get("meetingDuration") or 30,
            "buffer_minutes": config.get("meetingBufferMinutes") or 0,
            "work_start": _parse_hhmm(config.get("meetingAvailableHoursStart") or "09:00"),
            "work_end": _parse_hhmm(config.get("meetingAvailableHoursEnd") or "18:00"),
            "work_days": config.get("meetingAvailableDays") or DEFAULT_WORK_DAYS,
            "timezone": config.get("meetingTimezone") or default_timezone,
            "title_template": config.get("meetingTitle") or DEFAULT_TITLE,
            "description_template": config.get("meetingDescription") or DEFAULT_DESCRIPTION,
            "agent_email": config.get("meetingEmail") or None,
        }
        # The surrounding app writes templates with a Spanish placeholder.
        for key in ("title_template", "description_template"):
            data[key] = data[key].replace("{nombre}", "{name}")
        try:
            return cls(**data)
        except ValidationError as e:
            errors = "; ".join(err["msg"] for err in e.errors())
            raise InvalidPolicy(f"Invalid scheduling config: {errors}") from e


def _parse_hhmm(value: Any) -> Any:
    """Parse ``HH:MM`` strings, passing anything else through to validation."""
    if isinstance(value, str):
        try:
            hour, minute = (int(part) for part in value.strip().split(":")[:2])
            return time(hour, minute)
        except ValueError:
            return value
    return value
