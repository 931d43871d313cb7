"""HTTP routes for the task lifecycle engine.

Authentication happens upstream; the calling member is passed in the
``X-Member-Id`` header and resolved to a role by the role provider.
"""

import logging
from datetime import date, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from famtasks.core.errors import (
    InvalidRecurrenceError,
    InvalidTransitionError,
    NotAuthorizedError,
    PhotoRequiredError,
    StoreConflictError,
    TaskEngineError,
    classify_error_with_response,
)
from famtasks.domain.reminder import FamilyReminderSettings, ReminderOverrides
from famtasks.domain.task import RecurrencePattern, Task, TaskCategory, TaskPriority, TaskStatus
from famtasks.domain.template import RecurringTemplate
from famtasks.models.service_models import (
    EscalationSummary,
    TaskOperationResult,
    TaskStats,
    UpcomingOccurrence,
)
from famtasks.services import activity_service, analytics_service
from famtasks.services.runtime import TaskRuntime


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/families/{family_id}", tags=["tasks"])

MemberId = Annotated[str, Header(alias="X-Member-Id")]


def get_runtime(request: Request) -> TaskRuntime:
    return request.app.state.runtime


Runtime = Annotated[TaskRuntime, Depends(get_runtime)]


class TaskCreate(BaseModel):
    """Request body for creating a one-off task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category: TaskCategory | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    requires_photo: bool = False
    reminder_enabled: bool = True
    points: int = Field(default=0, ge=0)


class CompleteRequest(BaseModel):
    photo_url: str | None = None


class ValidateRequest(BaseModel):
    approved: bool
    notes: str | None = None


class TemplateCreate(BaseModel):
    """Request body for registering a recurring task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category: TaskCategory | None = None
    assigned_to: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    points: int = Field(default=0, ge=0)
    requires_photo: bool = False
    reminder_enabled: bool = True
    pattern: RecurrencePattern
    timezone: str | None = None
    start_date: date | None = None



async def _require_manager(runtime: TaskRuntime, member_id: str, family_id: str) -> None:
    if not await runtime.roles.is_manager(member_id, family_id):
        msg = f"Member {member_id} cannot manage family {family_id}"
        raise NotAuthorizedError(msg, member_id=member_id)


async def _task_in_family(runtime: TaskRuntime, family_id: str, task_id: str) -> Task:
    task = await runtime.tasks.get_task(task_id)
    if task.family_id != family_id:
        msg = f"Task {task_id} not found in family {family_id}"
        raise KeyError(msg)
    return task


async def _template_in_family(runtime: TaskRuntime, family_id: str, template_id: str) -> RecurringTemplate:
    template = await runtime.recurrence.get_template(template_id)
    if template.family_id != family_id:
        msg = f"Template {template_id} not found in family {family_id}"
        raise KeyError(msg)
    return template


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(family_id: str, body: TaskCreate, member_id: MemberId, runtime: Runtime) -> Task:
    return await runtime.tasks.create_task(family_id=family_id, created_by=member_id, **body.model_dump())


@router.get("/tasks")
async def list_tasks(family_id: str, runtime: Runtime, task_status: TaskStatus | None = None) -> list[Task]:
    return await runtime.store.query_by_family(family_id, status=task_status)


@router.get("/tasks/{task_id}")
async def get_task(family_id: str, task_id: str, runtime: Runtime) -> Task:
    return await _task_in_family(runtime, family_id, task_id)


@router.post("/tasks/{task_id}/start")
async def start_task(family_id: str, task_id: str, member_id: MemberId, runtime: Runtime) -> TaskOperationResult:
    await _task_in_family(runtime, family_id, task_id)
    return await runtime.tasks.start(task_id=task_id, member_id=member_id)


@router.post("/tasks/{task_id}/complete")
async def complete_task(
    family_id: str,
    task_id: str,
    body: CompleteRequest,
    member_id: MemberId,
    runtime: Runtime,
) -> TaskOperationResult:
    await _task_in_family(runtime, family_id, task_id)
    return await runtime.tasks.complete(task_id=task_id, member_id=member_id, photo_url=body.photo_url)


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(family_id: str, task_id: str, member_id: MemberId, runtime: Runtime) -> TaskOperationResult:
    await _task_in_family(runtime, family_id, task_id)
    return await runtime.tasks.cancel(task_id=task_id, member_id=member_id)


@router.post("/tasks/{task_id}/validate")
async def validate_task(
    family_id: str,
    task_id: str,
    body: ValidateRequest,
    member_id: MemberId,
    runtime: Runtime,
) -> TaskOperationResult:
    await _task_in_family(runtime, family_id, task_id)
    return await runtime.validation.validate(
        task_id=task_id, approver_id=member_id, approved=body.approved, notes=body.notes
    )


@router.get("/validations")
async def list_pending_validations(family_id: str, runtime: Runtime) -> list[Task]:
    return await runtime.validation.list_pending_validations(family_id)


@router.post("/templates", status_code=status.HTTP_201_CREATED)
async def register_template(
    family_id: str, body: TemplateCreate, member_id: MemberId, runtime: Runtime
) -> RecurringTemplate:
    await _require_manager(runtime, member_id, family_id)
    data = body.model_dump(exclude_none=True)
    template = RecurringTemplate(family_id=family_id, created_by=member_id, **data)
    template_id = await runtime.recurrence.register_template(template)
    return await runtime.recurrence.get_template(template_id)


@router.get("/templates")
async def list_templates(family_id: str, runtime: Runtime) -> list[RecurringTemplate]:
    return await runtime.recurrence.list_templates(family_id)


@router.get("/templates/{template_id}")
async def get_template(family_id: str, template_id: str, runtime: Runtime) -> RecurringTemplate:
    return await _template_in_family(runtime, family_id, template_id)


@router.post("/templates/{template_id}/pause")
async def pause_template(family_id: str, template_id: str, member_id: MemberId, runtime: Runtime) -> RecurringTemplate:
    await _require_manager(runtime, member_id, family_id)
    await _template_in_family(runtime, family_id, template_id)
    return await runtime.recurrence.pause_template(template_id)


@router.post("/templates/{template_id}/resume")
async def resume_template(
    family_id: str, template_id: str, member_id: MemberId, runtime: Runtime
) -> RecurringTemplate:
    await _require_manager(runtime, member_id, family_id)
    await _template_in_family(runtime, family_id, template_id)
    return await runtime.recurrence.resume_template(template_id)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(family_id: str, template_id: str, member_id: MemberId, runtime: Runtime) -> None:
    await _require_manager(runtime, member_id, family_id)
    await _template_in_family(runtime, family_id, template_id)
    await runtime.recurrence.delete_template(template_id)


@router.get("/upcoming")
async def upcoming_occurrences(family_id: str, runtime: Runtime, days: int = 7) -> list[UpcomingOccurrence]:
    return await runtime.recurrence.get_upcoming(family_id, days)


@router.get("/stats")
async def family_stats(family_id: str, runtime: Runtime, member: str | None = None) -> TaskStats:
    return await analytics_service.get_task_stats(store=runtime.store, family_id=family_id, member_id=member)


@router.get("/overdue")
async def overdue_tasks(family_id: str, runtime: Runtime) -> list[Task]:
    return await analytics_service.get_overdue_tasks(store=runtime.store, family_id=family_id)


@router.get("/escalations")
async def escalation_summary(family_id: str, runtime: Runtime) -> EscalationSummary:
    return await analytics_service.get_escalation_summary(store=runtime.store, family_id=family_id)


@router.get("/activity")
async def activity_feed(
    family_id: str, task_id: str | None = None, limit: int = Query(default=50, ge=1, le=500)
) -> list[dict[str, Any]]:
    return await activity_service.get_activity(family_id=family_id, task_id=task_id, limit=limit)


@router.get("/reminder-settings")
async def get_reminder_settings(family_id: str, runtime: Runtime) -> FamilyReminderSettings:
    try:
        return await runtime.policies.get_settings(family_id)
    except KeyError:
        return FamilyReminderSettings(family_id=family_id)


@router.put("/reminder-settings")
async def put_reminder_settings(
    family_id: str, body: ReminderOverrides, member_id: MemberId, runtime: Runtime
) -> FamilyReminderSettings:
    await _require_manager(runtime, member_id, family_id)
    overrides = FamilyReminderSettings(family_id=family_id, **body.model_dump())
    return await runtime.policies.save_settings(overrides)


ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (PhotoRequiredError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotAuthorizedError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (StoreConflictError, status.HTTP_409_CONFLICT),
    (InvalidRecurrenceError, status.HTTP_400_BAD_REQUEST),
    (KeyError, status.HTTP_404_NOT_FOUND),
]


async def handle_engine_error(_request: Request, exc: Exception) -> JSONResponse:
    """Map engine errors to a JSON ErrorResponse with a matching status code."""
    status_code = next(
        (code for exc_type, code in ERROR_STATUS if isinstance(exc, exc_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    response = classify_error_with_response(exc)
    logger.info("Request failed: %s (%s)", response.code, exc)
    return JSONResponse(content=response.model_dump(mode="json"), status_code=status_code)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskEngineError, handle_engine_error)
    app.add_exception_handler(KeyError, handle_engine_error)
