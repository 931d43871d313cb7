"""Recurrence engine: owns recurring templates and materializes their occurrences.

Occurrences are ordinary tasks that carry an opaque ``template_id`` and their
``scheduled_date``. Each occurrence id is derived from that pair, so the task
store itself rejects a second copy of the same occurrence.
"""

import logging
import uuid
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import DAILY, FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from famtasks.core.config import Constants
from famtasks.core.errors import InvalidRecurrenceError, StoreConflictError
from famtasks.core.event_bus import EventBus
from famtasks.core.logging import log_with_context, span
from famtasks.core.ports import TaskStore, TemplateStore
from famtasks.domain.events import TaskEvent, TaskEventType
from famtasks.domain.task import SYSTEM_ACTOR, RecurrenceFrequency, RecurrencePattern, Task
from famtasks.domain.template import RecurringTemplate
from famtasks.models.service_models import UpcomingOccurrence


logger = logging.getLogger(__name__)

# Index 0 = Sunday, matching RecurrencePattern.days_of_week
DAY_MAP = [SU, MO, TU, WE, TH, FR, SA]


def validate_pattern(pattern: RecurrencePattern) -> None:
    """Reject malformed recurrence patterns.

    Raises:
        InvalidRecurrenceError: If the interval is not positive, a weekly pattern
            has no days, a day is out of range, or a daily pattern lists days
    """
    if pattern.interval < 1:
        msg = f"Recurrence interval must be at least 1, got {pattern.interval}"
        raise InvalidRecurrenceError(msg)

    if pattern.frequency == RecurrenceFrequency.WEEKLY:
        if not pattern.days_of_week:
            msg = "Weekly recurrence needs at least one day of the week"
            raise InvalidRecurrenceError(msg)
        invalid = [day for day in pattern.days_of_week if not 0 <= day <= 6]  # noqa: PLR2004
        if invalid:
            msg = f"Days of week must be between 0 (Sunday) and 6 (Saturday), got {invalid}"
            raise InvalidRecurrenceError(msg)
    elif pattern.days_of_week:
        msg = "Daily recurrence does not take days of the week"
        raise InvalidRecurrenceError(msg)


def _build_rule(pattern: RecurrencePattern, start: date) -> rrule:
    dtstart = datetime.combine(start, time.min)
    until = datetime.combine(pattern.end_date, time.min) if pattern.end_date else None

    if pattern.frequency == RecurrenceFrequency.DAILY:
        return rrule(DAILY, interval=pattern.interval, dtstart=dtstart, until=until)

    return rrule(
        WEEKLY,
        interval=pattern.interval,
        dtstart=dtstart,
        until=until,
        wkst=SU,
        byweekday=[DAY_MAP[day] for day in sorted(set(pattern.days_of_week))],
    )


def compute_next_occurrence(pattern: RecurrencePattern, current: date) -> date | None:
    """Return the first occurrence strictly after ``current``, or None past ``end_date``.

    Daily patterns add ``interval`` days. Weekly patterns take the next listed
    day later in the current (Sunday-start) week, else the first listed day of
    the week ``interval`` weeks on.
    """
    rule = _build_rule(pattern, current)
    found = rule.after(datetime.combine(current, time.min), inc=False)
    return found.date() if found else None


def first_occurrence(pattern: RecurrencePattern, start: date) -> date | None:
    """Return the first occurrence on or after ``start``."""
    rule = _build_rule(pattern, start)
    found = rule.after(datetime.combine(start, time.min), inc=True)
    return found.date() if found else None


def occurrence_due(template: RecurringTemplate, scheduled_date: date) -> datetime:
    """Due datetime (UTC) of an occurrence: its date at the pattern's time, in the template timezone."""
    local = datetime.combine(scheduled_date, template.pattern.time_of_day, tzinfo=ZoneInfo(template.timezone))
    return local.astimezone(UTC)


def occurrence_id(template_id: str, scheduled_date: date) -> str:
    return f"{template_id}-{scheduled_date.isoformat()}"


def _local_today(template: RecurringTemplate, now: datetime) -> date:
    return now.astimezone(ZoneInfo(template.timezone)).date()


class RecurrenceEngine:
    """Registers recurring templates and turns them into task occurrences.

    Two paths create occurrences: completing an occurrence schedules the next
    one straight away, and the periodic ``materialize_due`` tick creates any
    occurrence whose date has arrived. Both advance the template's
    ``last_materialized_date``, so neither can create a date the other has
    already produced.
    """

    def __init__(self, *, templates: TemplateStore, tasks: TaskStore, bus: EventBus | None = None) -> None:
        self._templates = templates
        self._tasks = tasks
        self._bus = bus

    async def register_template(self, template: RecurringTemplate, *, now: datetime | None = None) -> str:
        """Validate and store a template; returns its id.

        Raises:
            InvalidRecurrenceError: If the pattern or timezone is invalid, or the
                pattern ends before its first occurrence
        """
        with span("recurrence_engine.register_template"):
            validate_pattern(template.pattern)
            try:
                ZoneInfo(template.timezone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                msg = f"Unknown timezone: {template.timezone}"
                raise InvalidRecurrenceError(msg) from e

            now = now or datetime.now(UTC)
            template_id = template.id or uuid.uuid4().hex
            start = template.start_date or _local_today(template, now)
            next_run = first_occurrence(template.pattern, start)
            if next_run is None:
                msg = f"Recurrence ends on {template.pattern.end_date} before its first occurrence"
                raise InvalidRecurrenceError(msg)

            stored = template.model_copy(
                update={
                    "id": template_id,
                    "start_date": start,
                    "next_run_date": next_run,
                    "last_materialized_date": None,
                    "is_active": True,
                }
            )
            await self._templates.save(stored)
            log_with_context(
                logger,
                "info",
                "Registered recurring template",
                template_id=template_id,
                family_id=template.family_id,
                next_run_date=next_run.isoformat(),
            )
            return template_id

    async def on_task_completed(
        self,
        *,
        template_id: str,
        completed_at: datetime,
        scheduled_date: date | None = None,
    ) -> Task | None:
        """Materialize the occurrence after the completed one.

        The next date is computed from the completed occurrence's scheduled
        date, never from when it was completed, so late completions keep the
        schedule. Returns None when that date is already materialized, the
        template is paused or gone, or the pattern has ended.
        """
        with span("recurrence_engine.on_task_completed"):
            try:
                template = await self._templates.get(template_id)
            except KeyError:
                logger.info("Template %s no longer exists; no next occurrence", template_id)
                return None

            if not template.is_active:
                logger.debug("Template %s is paused; skipping next occurrence", template_id)
                return None

            base = scheduled_date or _local_today(template, completed_at)
            next_date = compute_next_occurrence(template.pattern, base)
            if next_date is None:
                logger.info("Template %s has no occurrence after %s", template_id, base)
                await self._templates.save(template.model_copy(update={"next_run_date": None}))
                return None

            if template.last_materialized_date and next_date <= template.last_materialized_date:
                logger.debug("Occurrence %s of template %s already materialized", next_date, template_id)
                return None

            return await self._materialize(template, next_date)

    async def materialize_due(self, now: datetime | None = None) -> list[Task]:
        """Create the occurrences whose scheduled date has arrived.

        After downtime only the most recent due occurrence of each template is
        created; the missed ones are logged and skipped.
        """
        with span("recurrence_engine.materialize_due"):
            now = now or datetime.now(UTC)
            created: list[Task] = []

            for template in await self._templates.list():
                if not template.is_active or template.next_run_date is None:
                    continue

                today = _local_today(template, now)
                if template.next_run_date > today:
                    continue

                latest = template.next_run_date
                skipped: list[date] = []
                while (following := compute_next_occurrence(template.pattern, latest)) and following <= today:
                    skipped.append(latest)
                    latest = following

                if skipped:
                    log_with_context(
                        logger,
                        "warning",
                        "Skipping missed occurrences",
                        template_id=template.id,
                        skipped=[d.isoformat() for d in skipped],
                    )

                try:
                    task = await self._materialize(template, latest)
                except Exception:
                    logger.exception("Failed to materialize occurrence %s of template %s", latest, template.id)
                    continue
                if task:
                    created.append(task)

            if created:
                logger.info("Materialized %d recurring occurrences", len(created))
            return created

    async def _materialize(self, template: RecurringTemplate, scheduled_date: date) -> Task | None:
        task = Task(
            id=occurrence_id(template.id, scheduled_date),
            family_id=template.family_id,
            title=template.title,
            description=template.description,
            category=template.category,
            assigned_to=template.assigned_to,
            assigned_by=template.created_by if template.assigned_to else None,
            created_by=template.created_by,
            priority=template.priority,
            due_date=occurrence_due(template, scheduled_date),
            requires_photo=template.requires_photo,
            reminder_enabled=template.reminder_enabled,
            points=template.points,
            is_recurring=True,
            recurrence_pattern=template.pattern,
            template_id=template.id,
            scheduled_date=scheduled_date,
        )

        created: Task | None
        try:
            created = await self._tasks.create(task)
        except StoreConflictError:
            logger.info("Occurrence %s already exists", task.id)
            created = None

        last = template.last_materialized_date
        await self._templates.save(
            template.model_copy(
                update={
                    "last_materialized_date": max(last, scheduled_date) if last else scheduled_date,
                    "next_run_date": compute_next_occurrence(template.pattern, scheduled_date),
                }
            )
        )

        if created and self._bus:
            await self._bus.publish(TaskEvent.for_task(created, TaskEventType.CREATED, actor=SYSTEM_ACTOR.member_id))
        return created

    async def pause_template(self, template_id: str) -> RecurringTemplate:
        template = await self._templates.get(template_id)
        paused = template.model_copy(update={"is_active": False})
        await self._templates.save(paused)
        logger.info("Paused recurring template %s", template_id)
        return paused

    async def resume_template(self, template_id: str, *, now: datetime | None = None) -> RecurringTemplate:
        """Reactivate a template; occurrences missed while paused are not created."""
        template = await self._templates.get(template_id)
        today = _local_today(template, now or datetime.now(UTC))
        next_run = template.next_run_date
        if next_run is None or next_run < today:
            start = today
            if template.last_materialized_date:
                start = max(today, template.last_materialized_date + timedelta(days=1))
            next_run = first_occurrence(template.pattern, start)

        resumed = template.model_copy(update={"is_active": True, "next_run_date": next_run})
        await self._templates.save(resumed)
        logger.info("Resumed recurring template %s (next run %s)", template_id, next_run)
        return resumed

    async def delete_template(self, template_id: str) -> None:
        """Delete a template. Existing occurrences stay; no further ones are created."""
        await self._templates.delete(template_id)
        logger.info("Deleted recurring template %s", template_id)

    async def get_template(self, template_id: str) -> RecurringTemplate:
        return await self._templates.get(template_id)

    async def list_templates(self, family_id: str | None = None) -> list[RecurringTemplate]:
        return await self._templates.list(family_id)

    async def get_upcoming(
        self,
        family_id: str,
        days: int = Constants.UPCOMING_WINDOW_DAYS,
        *,
        now: datetime | None = None,
    ) -> list[UpcomingOccurrence]:
        """List not-yet-materialized occurrences of active templates within the next ``days`` days."""
        now = now or datetime.now(UTC)
        upcoming: list[UpcomingOccurrence] = []

        for template in await self._templates.list(family_id):
            if not template.is_active or template.next_run_date is None:
                continue
            window_end = _local_today(template, now) + timedelta(days=days)
            rule = _build_rule(template.pattern, template.next_run_date)
            for found in rule.between(
                datetime.combine(template.next_run_date, time.min),
                datetime.combine(window_end, time.min),
                inc=True,
            ):
                scheduled = found.date()
                upcoming.append(
                    UpcomingOccurrence(
                        template_id=template.id,
                        title=template.title,
                        scheduled_date=scheduled,
                        due_date=occurrence_due(template, scheduled),
                        assigned_to=template.assigned_to,
                        priority=template.priority,
                    )
                )

        upcoming.sort(key=lambda item: item.due_date)
        return upcoming

    async def handle_task_event(self, event: TaskEvent) -> None:
        """Event bus subscriber: schedule the next occurrence when one is completed."""
        if event.event_type != TaskEventType.COMPLETED or not event.task.template_id:
            return
        await self.on_task_completed(
            template_id=event.task.template_id,
            completed_at=event.task.completed_at or event.timestamp,
            scheduled_date=event.task.scheduled_date,
        )
