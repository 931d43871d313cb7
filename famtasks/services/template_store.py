"""Stores for recurring templates, the recurrence engine's own scheduler state."""

import logging
from typing import Any

from famtasks.core import db_client
from famtasks.domain.template import RecurringTemplate


logger = logging.getLogger(__name__)

TEMPLATES_COLLECTION = "recurring_templates"


def _from_record(record: dict[str, Any]) -> RecurringTemplate:
    data = {key: value for key, value in record.items() if key not in {"revision", "created", "updated"}}
    return RecurringTemplate.model_validate(data)


class InMemoryTemplateStore:
    """Process-local template store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._templates: dict[str, RecurringTemplate] = {}

    async def save(self, template: RecurringTemplate) -> RecurringTemplate:
        self._templates[template.id] = template.model_copy(deep=True)
        return template

    async def get(self, template_id: str) -> RecurringTemplate:
        if template_id not in self._templates:
            msg = f"Recurring template not found: {template_id}"
            raise KeyError(msg)
        return self._templates[template_id].model_copy(deep=True)

    async def delete(self, template_id: str) -> None:
        if self._templates.pop(template_id, None) is None:
            msg = f"Recurring template not found: {template_id}"
            raise KeyError(msg)

    async def list(self, family_id: str | None = None) -> list[RecurringTemplate]:
        return [
            template.model_copy(deep=True)
            for template in self._templates.values()
            if family_id is None or template.family_id == family_id
        ]


class DbTemplateStore:
    """Template store backed by the document store's ``recurring_templates`` collection."""

    def __init__(self, collection: str = TEMPLATES_COLLECTION) -> None:
        self._collection = collection

    async def save(self, template: RecurringTemplate) -> RecurringTemplate:
        data = template.model_dump(mode="json")
        try:
            record = await db_client.update_record(collection=self._collection, record_id=template.id, data=data)
        except KeyError:
            record = await db_client.create_record(collection=self._collection, data=data, record_id=template.id)
            logger.info("Stored new recurring template %s", template.id)
        return _from_record(record)

    async def get(self, template_id: str) -> RecurringTemplate:
        record = await db_client.get_record(collection=self._collection, record_id=template_id)
        return _from_record(record)

    async def delete(self, template_id: str) -> None:
        await db_client.delete_record(collection=self._collection, record_id=template_id)

    async def list(self, family_id: str | None = None) -> list[RecurringTemplate]:
        records = await db_client.list_all_records(collection=self._collection, family_id=family_id)
        return [_from_record(record) for record in records]
