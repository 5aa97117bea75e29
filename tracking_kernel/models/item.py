"""
Module: tracking_kernel.models.item
Responsibility: ORM persistence for tracked items and their current status.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain vocabulary only.

Invariants enforced:
    - code is unique (uq_item_code) and immutable (ORM listener + trigger).
    - status equals the to_status of the item's last TransitionEvent, or
      CREATED when it has none.  Maintained by the transition engine, which
      writes both rows in one unit of work.
    - version equals the number of committed TransitionEvents for the item.

Failure modes:
    - IntegrityError on duplicate code.
    - ImmutabilityViolationError on code change or row deletion.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tracking_kernel.db.base import Base, UTCDateTime, UUIDString
from tracking_kernel.domain.lifecycle import INITIAL_STATUS, ItemStatus

LABEL_MAX_LENGTH = 200

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ItemStatus)


class Item(Base):
    """
    A physical item tracked through the lifecycle.

    Contract:
        Rows are created by ItemStore.create() and their status changes only
        through ItemStore.conditional_update_status(), which the transition
        engine calls in the same unit of work as the event append.

    Non-goals:
        - This model does NOT validate transitions; that is the policy's job.
    """

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_code"),
        Index("idx_item_status", "status"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_item_status"),
        CheckConstraint("version >= 0", name="ck_item_version"),
    )

    # Human label (e.g., "Pallet 7 - cold storage")
    label: Mapped[str] = mapped_column(
        String(LABEL_MAX_LENGTH),
        nullable=False,
    )

    # Scannable code, derived from id at creation
    code: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
    )

    status: Mapped[ItemStatus] = mapped_column(
        String(20),
        default=INITIAL_STATUS.value,
        nullable=False,
    )

    # Number of committed transitions
    version: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    created_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # Actor of the most recent transition
    updated_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Item {self.code} status={self.status}>"

    @property
    def status_enum(self) -> ItemStatus:
        return ItemStatus(self.status)
