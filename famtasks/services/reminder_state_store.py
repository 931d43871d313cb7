"""Stores for the reminder scheduler's active set and per-level fire claims.

The Redis store lets several scheduling loops (or a restarted one) share fire
claims; the in-memory store serves tests and single-process deployments.
"""

import logging

from famtasks.core.config import Constants
from famtasks.core.redis_client import RedisClient, redis_client
from famtasks.domain.reminder import ClaimOutcome, ReminderState


logger = logging.getLogger(__name__)


def claim_key(task_id: str, level: int, due_key: str) -> str:
    return f"reminder:claim:{task_id}:{level}:{due_key}"


class InMemoryReminderStateStore:
    """Process-local reminder state."""

    def __init__(self) -> None:
        self._active: dict[str, ReminderState] = {}
        self._claims: set[str] = set()

    async def set_active(self, state: ReminderState) -> None:
        self._active[state.task_id] = state

    async def remove_active(self, task_id: str) -> None:
        self._active.pop(task_id, None)

    async def get_active(self, task_id: str) -> ReminderState | None:
        return self._active.get(task_id)

    async def list_active(self, family_id: str | None = None) -> list[ReminderState]:
        return [state for state in self._active.values() if family_id is None or state.family_id == family_id]

    async def claim_fire(self, task_id: str, level: int, *, due_key: str) -> ClaimOutcome:
        key = claim_key(task_id, level, due_key)
        if key in self._claims:
            return ClaimOutcome.HELD
        self._claims.add(key)
        return ClaimOutcome.CLAIMED

    async def release_claim(self, task_id: str, level: int, *, due_key: str) -> None:
        self._claims.discard(claim_key(task_id, level, due_key))


class RedisReminderStateStore:
    """Reminder state shared through Redis.

    Claims use SET NX so only one loop delivers a given (task, level, due date).
    A Redis error reports the claim as unavailable; the scheduler leaves the
    task untouched and tries the level again on the next tick.
    """

    ACTIVE_PREFIX = "reminder:active:"

    def __init__(self, client: RedisClient | None = None) -> None:
        self._client = client or redis_client

    async def set_active(self, state: ReminderState) -> None:
        await self._client.set(
            f"{self.ACTIVE_PREFIX}{state.task_id}",
            state.model_dump_json(),
            ttl_seconds=Constants.REMINDER_STATE_TTL_SECONDS,
        )

    async def remove_active(self, task_id: str) -> None:
        await self._client.delete(f"{self.ACTIVE_PREFIX}{task_id}")

    async def get_active(self, task_id: str) -> ReminderState | None:
        raw = await self._client.get(f"{self.ACTIVE_PREFIX}{task_id}")
        return ReminderState.model_validate_json(raw) if raw else None

    async def list_active(self, family_id: str | None = None) -> list[ReminderState]:
        states: list[ReminderState] = []
        for key in await self._client.keys(f"{self.ACTIVE_PREFIX}*"):
            raw = await self._client.get(key)
            if not raw:
                continue
            state = ReminderState.model_validate_json(raw)
            if family_id is None or state.family_id == family_id:
                states.append(state)
        return states

    async def claim_fire(self, task_id: str, level: int, *, due_key: str) -> ClaimOutcome:
        claimed = await self._client.set_if_not_exists(
            claim_key(task_id, level, due_key),
            "1",
            ttl_seconds=Constants.REMINDER_CLAIM_TTL_SECONDS,
        )
        if claimed is None:
            return ClaimOutcome.UNAVAILABLE
        return ClaimOutcome.CLAIMED if claimed else ClaimOutcome.HELD

    async def release_claim(self, task_id: str, level: int, *, due_key: str) -> None:
        await self._client.delete(claim_key(task_id, level, due_key))


def build_reminder_state_store(
    client: RedisClient | None = None,
) -> InMemoryReminderStateStore | RedisReminderStateStore:
    """Use Redis when it is configured, otherwise keep state in process."""
    client = client or redis_client
    if client.is_available:
        logger.info("Reminder state stored in Redis")
        return RedisReminderStateStore(client)
    logger.info("Reminder state stored in process memory")
    return InMemoryReminderStateStore()
