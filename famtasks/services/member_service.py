"""Role lookups over the ``members`` collection (family/member CRUD lives elsewhere)."""

import logging
from enum import StrEnum
from typing import Any

from famtasks.core import db_client
from famtasks.core.logging import span


logger = logging.getLogger(__name__)

MEMBERS_COLLECTION = "members"


class MemberRole(StrEnum):
    """Family member role."""

    PARENT = "parent"
    MANAGER = "manager"
    CHILD = "child"


MANAGER_ROLES = frozenset({MemberRole.PARENT, MemberRole.MANAGER})


async def register_member(*, member_id: str, family_id: str, name: str, role: MemberRole) -> dict[str, Any]:
    """Store a member record so its role can be resolved."""
    return await db_client.create_record(
        collection=MEMBERS_COLLECTION,
        data={"family_id": family_id, "name": name, "role": role},
        record_id=member_id,
    )


class MemberRoleProvider:
    """RoleProvider backed by member documents: parents and managers can manage their family."""

    async def is_manager(self, member_id: str, family_id: str) -> bool:
        try:
            member = await db_client.get_record(collection=MEMBERS_COLLECTION, record_id=member_id)
        except KeyError:
            logger.warning("Unknown member %s in family %s", member_id, family_id)
            return False
        return member.get("family_id") == family_id and member.get("role") in MANAGER_ROLES

    async def get_managers(self, family_id: str) -> list[str]:
        with span("member_service.get_managers"):
            members = await db_client.list_all_records(collection=MEMBERS_COLLECTION, family_id=family_id)
            return [member["id"] for member in members if member.get("role") in MANAGER_ROLES]
