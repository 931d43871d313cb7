"""Reminder policy: when each escalation level fires, per family.

Families may override the global reminder settings (offset, grace period,
maximum level, quiet hours) through a ``family_settings`` document. Fire
times that land inside quiet hours move to the end of the quiet window.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

from famtasks.core import db_client
from famtasks.core.config import settings
from famtasks.core.logging import span
from famtasks.domain.reminder import FamilyReminderSettings


logger = logging.getLogger(__name__)

FAMILY_SETTINGS_COLLECTION = "family_settings"


def as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


@dataclass(frozen=True)
class ReminderPolicy:
    """When reminders fire relative to a task's due date."""

    offset: timedelta = timedelta(0)
    grace: timedelta = timedelta(minutes=30)
    max_level: int = 3
    quiet_start: time | None = None
    quiet_end: time | None = None
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls) -> "ReminderPolicy":
        return cls(
            offset=timedelta(minutes=settings.reminder_offset_minutes),
            grace=timedelta(minutes=settings.escalation_grace_minutes),
            max_level=settings.max_escalation_level,
            quiet_start=settings.quiet_hours_start,
            quiet_end=settings.quiet_hours_end,
            timezone=settings.default_timezone,
        )

    def with_overrides(self, overrides: FamilyReminderSettings) -> "ReminderPolicy":
        """Return a copy with every field the family set replaced."""
        changes: dict[str, object] = {}
        if overrides.reminder_offset_minutes is not None:
            changes["offset"] = timedelta(minutes=overrides.reminder_offset_minutes)
        if overrides.escalation_grace_minutes is not None:
            changes["grace"] = timedelta(minutes=overrides.escalation_grace_minutes)
        if overrides.max_escalation_level is not None:
            changes["max_level"] = overrides.max_escalation_level
        if overrides.quiet_hours_start is not None and overrides.quiet_hours_end is not None:
            changes["quiet_start"] = overrides.quiet_hours_start
            changes["quiet_end"] = overrides.quiet_hours_end
        if overrides.timezone:
            changes["timezone"] = overrides.timezone
        return dataclasses.replace(self, **changes)

    @property
    def has_quiet_hours(self) -> bool:
        return self.quiet_start is not None and self.quiet_end is not None and self.quiet_start != self.quiet_end

    def adjust_for_quiet_hours(self, moment: datetime) -> datetime:
        """Move ``moment`` to the end of the quiet window it falls in, if any.

        Windows that wrap midnight (21:00-07:00) move late-evening times to the
        next morning. The mapping never moves a time backwards, so later fire
        times stay later.
        """
        moment = as_utc(moment)
        if not self.has_quiet_hours:
            return moment

        tz = ZoneInfo(self.timezone)
        local = moment.astimezone(tz)
        clock = local.time()
        if self.quiet_start < self.quiet_end:
            if not self.quiet_start <= clock < self.quiet_end:
                return moment
            resume_day = local.date()
        elif clock >= self.quiet_start:
            resume_day = local.date() + timedelta(days=1)
        elif clock < self.quiet_end:
            resume_day = local.date()
        else:
            return moment

        return datetime.combine(resume_day, self.quiet_end, tzinfo=tz).astimezone(UTC)

    def fire_time(self, due: datetime, level: int) -> datetime:
        due = as_utc(due)
        raw = due - self.offset if level == 0 else due + level * self.grace
        return self.adjust_for_quiet_hours(raw)

    def level_due(self, due: datetime, now: datetime) -> int | None:
        """Highest level whose fire time has passed at ``now`` (capped), or None before level 0."""
        for level in range(self.max_level, -1, -1):
            if now >= self.fire_time(due, level):
                return level
        return None


class StaticPolicyProvider:
    """Same policy for every family."""

    def __init__(self, policy: ReminderPolicy | None = None) -> None:
        self._policy = policy or ReminderPolicy.from_settings()

    async def get_policy(self, family_id: str) -> ReminderPolicy:
        return self._policy


class FamilyPolicyProvider:
    """Per-family policy read from the ``family_settings`` collection.

    Families without a settings document get the default policy.
    """

    def __init__(self, default: ReminderPolicy | None = None, collection: str = FAMILY_SETTINGS_COLLECTION) -> None:
        self._default = default or ReminderPolicy.from_settings()
        self._collection = collection

    @property
    def default(self) -> ReminderPolicy:
        return self._default

    async def get_policy(self, family_id: str) -> ReminderPolicy:
        try:
            overrides = await self.get_settings(family_id)
        except KeyError:
            return self._default
        return self._default.with_overrides(overrides)

    async def get_settings(self, family_id: str) -> FamilyReminderSettings:
        """Fetch a family's overrides, raising KeyError if it has none."""
        record = await db_client.get_record(collection=self._collection, record_id=family_id)
        return FamilyReminderSettings.model_validate(record)

    async def save_settings(self, overrides: FamilyReminderSettings) -> FamilyReminderSettings:
        """Create or replace a family's overrides."""
        with span("reminder_policy.save_settings"):
            data = overrides.model_dump(mode="json")
            try:
                record = await db_client.update_record(
                    collection=self._collection, record_id=overrides.family_id, data=data
                )
            except KeyError:
                record = await db_client.create_record(
                    collection=self._collection, data=data, record_id=overrides.family_id
                )
            logger.info("Saved reminder settings for family %s", overrides.family_id)
            return FamilyReminderSettings.model_validate(record)
