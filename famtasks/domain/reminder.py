"""Reminder scheduling models."""

from datetime import datetime, time
from enum import StrEnum
from typing import Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class ClaimOutcome(StrEnum):
    """Result of trying to claim the delivery of one reminder level."""

    CLAIMED = "claimed"
    HELD = "held"  # another scheduling loop owns it
    UNAVAILABLE = "unavailable"  # the claim backend could not answer


class ReminderState(BaseModel):
    """Derived reminder bookkeeping for one open task; recomputed every tick."""

    task_id: str
    family_id: str
    next_fire_at: datetime
    escalation_level: int
    target_member_id: str | None


class ReminderEvent(BaseModel):
    """A reminder that logically fired and is handed to the notification transport."""

    task_id: str
    family_id: str
    target_member_id: str
    escalation_level: int
    fired_at: datetime


class ReminderOverrides(BaseModel):
    """Overrides of the reminder policy; unset fields use the global settings."""

    reminder_offset_minutes: int | None = Field(default=None, ge=0)
    escalation_grace_minutes: int | None = Field(default=None, ge=1)
    max_escalation_level: int | None = Field(default=None, ge=0)
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    timezone: str | None = Field(default=None, description="IANA timezone the quiet hours are expressed in")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as e:
                msg = f"Unknown timezone: {value}"
                raise ValueError(msg) from e
        return value

    @model_validator(mode="after")
    def _quiet_hours_paired(self) -> Self:
        if (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            msg = "quiet_hours_start and quiet_hours_end must be set together"
            raise ValueError(msg)
        return self


class FamilyReminderSettings(ReminderOverrides):
    """A family's stored reminder policy overrides."""

    family_id: str
