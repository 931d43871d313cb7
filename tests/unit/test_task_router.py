"""Tests for the HTTP routes and error mapping."""

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from famtasks.core.redis_client import RedisClient
from famtasks.core.scheduler import REMINDER_JOB
from famtasks.core.scheduler_tracker import JobTracker
from famtasks.main import create_app
from tests.unit.conftest import FAMILY_ID, KID_ID, PARENT_ID


@pytest.fixture
def client(runtime) -> TestClient:
    """Test client over an app wired to the in-memory runtime, without the scheduling loop."""
    return TestClient(create_app(runtime, run_scheduler=False))


def _headers(member_id: str) -> dict[str, str]:
    return {"X-Member-Id": member_id}


def _create_task(client: TestClient, **overrides) -> dict:
    body = {"title": "Set the table", "assigned_to": KID_ID, "points": 2}
    body.update(overrides)
    response = client.post(f"/families/{FAMILY_ID}/tasks", json=body, headers=_headers(PARENT_ID))
    assert response.status_code == 201
    return response.json()


@pytest.mark.unit
class TestTaskRoutes:
    def test_create_and_fetch_task(self, client: TestClient) -> None:
        task = _create_task(client)

        response = client.get(f"/families/{FAMILY_ID}/tasks/{task['id']}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["created_by"] == PARENT_ID

    def test_list_tasks_filters_by_status(self, client: TestClient) -> None:
        done = _create_task(client)
        _create_task(client, title="Clear the table")
        client.post(f"/families/{FAMILY_ID}/tasks/{done['id']}/complete", json={}, headers=_headers(KID_ID))

        response = client.get(f"/families/{FAMILY_ID}/tasks", params={"task_status": "completed"})

        assert [task["id"] for task in response.json()] == [done["id"]]

    def test_repeated_complete_reports_already_processed(self, client: TestClient) -> None:
        task = _create_task(client)
        url = f"/families/{FAMILY_ID}/tasks/{task['id']}/complete"

        first = client.post(url, json={}, headers=_headers(KID_ID))
        second = client.post(url, json={}, headers=_headers(KID_ID))

        assert first.status_code == 200
        assert first.json()["already_processed"] is False
        assert second.status_code == 200
        assert second.json()["already_processed"] is True
        assert second.json()["task"]["revision"] == first.json()["task"]["revision"]

    def test_missing_photo_is_unprocessable(self, client: TestClient) -> None:
        task = _create_task(client, requires_photo=True)

        response = client.post(
            f"/families/{FAMILY_ID}/tasks/{task['id']}/complete", json={}, headers=_headers(KID_ID)
        )

        assert response.status_code == 422
        assert response.json()["code"] == "ERR_PHOTO_REQUIRED"

    def test_member_cannot_cancel_parents_task(self, client: TestClient) -> None:
        task = _create_task(client)

        response = client.post(f"/families/{FAMILY_ID}/tasks/{task['id']}/cancel", headers=_headers(KID_ID))

        assert response.status_code == 403
        assert response.json()["code"] == "ERR_NOT_AUTHORIZED"

    def test_cancelled_task_cannot_be_completed(self, client: TestClient) -> None:
        task = _create_task(client)
        client.post(f"/families/{FAMILY_ID}/tasks/{task['id']}/cancel", headers=_headers(PARENT_ID))

        response = client.post(
            f"/families/{FAMILY_ID}/tasks/{task['id']}/complete", json={}, headers=_headers(KID_ID)
        )

        assert response.status_code == 409
        assert response.json()["code"] == "ERR_INVALID_TRANSITION"

    def test_unknown_task_is_not_found(self, client: TestClient) -> None:
        response = client.post(f"/families/{FAMILY_ID}/tasks/missing/start", headers=_headers(KID_ID))

        assert response.status_code == 404
        assert response.json()["code"] == "ERR_TASK_NOT_FOUND"

    def test_task_from_another_family_is_not_found(self, client: TestClient) -> None:
        task = _create_task(client)

        response = client.get(f"/families/other-family/tasks/{task['id']}")

        assert response.status_code == 404

    def test_member_header_is_required(self, client: TestClient) -> None:
        response = client.post(f"/families/{FAMILY_ID}/tasks", json={"title": "No header"})

        assert response.status_code == 422


@pytest.mark.unit
class TestValidationRoutes:
    def test_photo_review_flow(self, client: TestClient) -> None:
        task = _create_task(client, requires_photo=True)
        client.post(
            f"/families/{FAMILY_ID}/tasks/{task['id']}/complete",
            json={"photo_url": "https://img/table.jpg"},
            headers=_headers(KID_ID),
        )

        pending = client.get(f"/families/{FAMILY_ID}/validations")
        response = client.post(
            f"/families/{FAMILY_ID}/tasks/{task['id']}/validate",
            json={"approved": True, "notes": "Nice"},
            headers=_headers(PARENT_ID),
        )

        assert [item["id"] for item in pending.json()] == [task["id"]]
        assert response.status_code == 200
        assert response.json()["task"]["validation_status"] == "approved"
        assert client.get(f"/families/{FAMILY_ID}/validations").json() == []


@pytest.mark.unit
class TestTemplateRoutes:
    def test_manager_registers_template(self, client: TestClient) -> None:
        response = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Trash day", "assigned_to": KID_ID, "pattern": {"frequency": "weekly", "days_of_week": [1]}},
            headers=_headers(PARENT_ID),
        )

        assert response.status_code == 201
        template = response.json()
        assert template["id"]
        assert template["next_run_date"] is not None
        assert template["is_active"] is True
        listed = client.get(f"/families/{FAMILY_ID}/templates").json()
        assert [item["id"] for item in listed] == [template["id"]]

    def test_member_cannot_register_template(self, client: TestClient) -> None:
        response = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Trash day", "pattern": {"frequency": "daily"}},
            headers=_headers(KID_ID),
        )

        assert response.status_code == 403

    def test_invalid_pattern_is_bad_request(self, client: TestClient) -> None:
        response = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Trash day", "pattern": {"frequency": "weekly", "days_of_week": []}},
            headers=_headers(PARENT_ID),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "ERR_INVALID_RECURRENCE"

    def test_pause_and_resume(self, client: TestClient) -> None:
        created = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Feed fish", "pattern": {"frequency": "daily"}},
            headers=_headers(PARENT_ID),
        ).json()
        base = f"/families/{FAMILY_ID}/templates/{created['id']}"

        paused = client.post(f"{base}/pause", headers=_headers(PARENT_ID))
        upcoming = client.get(f"/families/{FAMILY_ID}/upcoming")
        resumed = client.post(f"{base}/resume", headers=_headers(PARENT_ID))

        assert paused.json()["is_active"] is False
        assert upcoming.json() == []
        assert resumed.json()["is_active"] is True
        assert len(client.get(f"/families/{FAMILY_ID}/upcoming").json()) >= 7

    def test_delete_template(self, client: TestClient) -> None:
        created = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Feed fish", "pattern": {"frequency": "daily"}},
            headers=_headers(PARENT_ID),
        ).json()

        response = client.delete(f"/families/{FAMILY_ID}/templates/{created['id']}", headers=_headers(PARENT_ID))

        assert response.status_code == 204
        assert client.get(f"/families/{FAMILY_ID}/templates").json() == []

    def test_other_family_cannot_control_template(self, client: TestClient, roles) -> None:
        roles.managers["fam2"] = ["parent2"]
        created = client.post(
            f"/families/{FAMILY_ID}/templates",
            json={"title": "Feed fish", "pattern": {"frequency": "daily"}},
            headers=_headers(PARENT_ID),
        ).json()
        foreign = f"/families/fam2/templates/{created['id']}"

        paused = client.post(f"{foreign}/pause", headers=_headers("parent2"))
        resumed = client.post(f"{foreign}/resume", headers=_headers("parent2"))
        deleted = client.delete(foreign, headers=_headers("parent2"))

        assert [paused.status_code, resumed.status_code, deleted.status_code] == [404, 404, 404]
        own = client.get(f"/families/{FAMILY_ID}/templates/{created['id']}")
        assert own.status_code == 200
        assert own.json()["is_active"] is True


@pytest.mark.unit
class TestReportingRoutes:
    def test_stats_count_by_status(self, client: TestClient) -> None:
        done = _create_task(client)
        _create_task(client, title="Sweep")
        client.post(f"/families/{FAMILY_ID}/tasks/{done['id']}/complete", json={}, headers=_headers(KID_ID))

        stats = client.get(f"/families/{FAMILY_ID}/stats").json()

        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["pending"] == 1
        assert stats["completion_rate"] == 50.0

    def test_overdue_and_escalations(self, client: TestClient) -> None:
        _create_task(client, due_date="2020-01-01T10:00:00Z")

        overdue = client.get(f"/families/{FAMILY_ID}/overdue").json()
        escalations = client.get(f"/families/{FAMILY_ID}/escalations").json()

        assert len(overdue) == 1
        assert escalations["total_escalated"] == 0


@pytest.mark.unit
class TestHealthRoutes:
    def test_health_endpoint_returns_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_scheduler_health_is_healthy_without_failures(self, client: TestClient) -> None:
        with patch("famtasks.main.job_tracker", JobTracker(RedisClient(url=""))):
            response = client.get("/health/scheduler")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["dead_letter_queue_size"] == 0

    def test_scheduler_health_degrades_on_failures(self, client: TestClient) -> None:
        tracker = JobTracker(RedisClient(url=""))
        asyncio.run(tracker.record_job_failure(REMINDER_JOB, "Store offline"))

        with patch("famtasks.main.job_tracker", tracker):
            response = client.get("/health/scheduler")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["jobs"][REMINDER_JOB]["last_error"] == "Store offline"

    def test_scheduler_health_reports_redis(self, client: TestClient) -> None:
        with (
            patch("famtasks.main.job_tracker", JobTracker(RedisClient(url=""))),
            patch("famtasks.main.redis_client", RedisClient(url="")),
        ):
            response = client.get("/health/scheduler")

        assert response.json()["redis"]["enabled"] is False
        assert response.json()["redis"]["failure_count"] == 0


@pytest.mark.unit
class TestActivityRoutes:
    def test_activity_lists_task_events(self, client: TestClient) -> None:
        task = _create_task(client)
        _create_task(client, title="Sweep")
        client.post(f"/families/{FAMILY_ID}/tasks/{task['id']}/complete", json={}, headers=_headers(KID_ID))

        everything = client.get(f"/families/{FAMILY_ID}/activity")
        scoped = client.get(f"/families/{FAMILY_ID}/activity", params={"task_id": task["id"]})

        assert everything.status_code == 200
        assert len(everything.json()) == 3
        assert {entry["action"] for entry in scoped.json()} == {"created", "completed"}

    def test_activity_limit_is_bounded(self, client: TestClient) -> None:
        assert client.get(f"/families/{FAMILY_ID}/activity", params={"limit": 0}).status_code == 422


@pytest.mark.unit
class TestReminderSettingsRoutes:
    def test_defaults_when_nothing_saved(self, client: TestClient) -> None:
        response = client.get(f"/families/{FAMILY_ID}/reminder-settings")

        assert response.status_code == 200
        assert response.json()["family_id"] == FAMILY_ID
        assert response.json()["escalation_grace_minutes"] is None

    def test_manager_saves_quiet_hours(self, client: TestClient, runtime) -> None:
        body = {"quiet_hours_start": "21:00:00", "quiet_hours_end": "07:00:00", "timezone": "Europe/London"}

        response = client.put(f"/families/{FAMILY_ID}/reminder-settings", json=body, headers=_headers(PARENT_ID))
        policy = asyncio.run(runtime.policies.get_policy(FAMILY_ID))

        assert response.status_code == 200
        assert client.get(f"/families/{FAMILY_ID}/reminder-settings").json()["timezone"] == "Europe/London"
        assert policy.has_quiet_hours
        assert policy.timezone == "Europe/London"

    def test_member_cannot_change_settings(self, client: TestClient) -> None:
        response = client.put(
            f"/families/{FAMILY_ID}/reminder-settings", json={"max_escalation_level": 1}, headers=_headers(KID_ID)
        )

        assert response.status_code == 403

    def test_unknown_timezone_is_rejected(self, client: TestClient) -> None:
        response = client.put(
            f"/families/{FAMILY_ID}/reminder-settings", json={"timezone": "Nowhere/Land"}, headers=_headers(PARENT_ID)
        )

        assert response.status_code == 422
