"""
DTOs -- immutable records returned across the kernel boundary.

Responsibility:
    ``ItemRecord`` and ``TransitionEventRecord`` are frozen snapshots of the
    ORM rows; ``TransitionResult`` is what ``TransitionEngine.execute()``
    returns on success.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` class methods are boundary
    converters invoked from the service/selector layer only, so callers
    never hold live ORM instances after the session closes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from tracking_kernel.domain.lifecycle import ItemStatus, Role

if TYPE_CHECKING:
    from tracking_kernel.models.item import Item as ItemModel
    from tracking_kernel.models.transition_event import (
        TransitionEvent as TransitionEventModel,
    )


@dataclass(frozen=True)
class ItemRecord:
    """Snapshot of an item row."""

    id: UUID
    label: str
    code: str
    status: ItemStatus
    version: int
    created_at: datetime
    updated_at: datetime
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None

    @classmethod
    def from_model(cls, model: ItemModel) -> ItemRecord:
        return cls(
            id=model.id,
            label=model.label,
            code=model.code,
            status=ItemStatus(model.status),
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            created_by_id=model.created_by_id,
            updated_by_id=model.updated_by_id,
        )


@dataclass(frozen=True)
class TransitionEventRecord:
    """Snapshot of an appended transition event."""

    id: UUID
    item_id: UUID
    seq: int
    from_status: ItemStatus
    to_status: ItemStatus
    action: str
    actor_id: UUID
    actor_role: Role
    occurred_at: datetime

    @classmethod
    def from_model(cls, model: TransitionEventModel) -> TransitionEventRecord:
        return cls(
            id=model.id,
            item_id=model.item_id,
            seq=model.seq,
            from_status=ItemStatus(model.from_status),
            to_status=ItemStatus(model.to_status),
            action=model.action,
            actor_id=model.actor_id,
            actor_role=Role(model.actor_role),
            occurred_at=model.occurred_at,
        )


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a committed transition.

    Guarantees: ``item.status == event.to_status`` and
    ``item.version == event.seq``.
    """

    item: ItemRecord
    event: TransitionEventRecord
    attempts: int = 1
