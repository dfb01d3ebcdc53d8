"""Contact group domain entities."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from core.clock import utcnow
from core.ids import new_id


class GroupType(StrEnum):
    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass
class ContactGroup:
    """Domain entity for a named set of contacts.

    Dynamic groups decide membership from ``criteria``; the parent is held as
    an id reference only.
    """

    name: str
    id: UUID = field(default_factory=new_id)
    group_type: GroupType = GroupType.STATIC
    criteria: list[dict[str, Any]] = field(default_factory=list)
    parent_id: UUID | None = None
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)


def ancestry(group_id: UUID, groups: Mapping[UUID, ContactGroup]) -> list[ContactGroup]:
    """Walk parent references from ``group_id`` to the root, guarding against cycles."""
    chain: list[ContactGroup] = []
    seen: set[UUID] = set()
    current = groups.get(group_id)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        chain.append(current)
        current = groups.get(current.parent_id) if current.parent_id else None
    return chain
