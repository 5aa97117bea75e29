"""
Module: tracking_kernel.models.transition_event
Responsibility: ORM persistence for the append-only item transition history.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain vocabulary only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener + database trigger).
    - (item_id, seq) is unique: two writers can never both commit "the next"
      event for the same item.
    - from_status != to_status.
    - For each item, event seq=n+1 has from_status == to_status of seq=n
      (maintained by the transition engine; verified by HistorySelector).

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate (item_id, seq).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tracking_kernel.db.base import Base, UTCDateTime, UUIDString
from tracking_kernel.domain.lifecycle import ItemStatus, Role

ACTION_MAX_LENGTH = 500


class TransitionEvent(Base):
    """
    One committed status transition of one item.

    Contract:
        Rows are written only by EventLog.append(), inside the same unit of
        work as the matching conditional status update on the item.
    """

    __tablename__ = "transition_events"

    __table_args__ = (
        UniqueConstraint("item_id", "seq", name="uq_transition_event_item_seq"),
        Index("idx_transition_event_item", "item_id"),
        Index("idx_transition_event_actor", "actor_id"),
        Index("idx_transition_event_occurred", "occurred_at"),
        CheckConstraint("from_status <> to_status", name="ck_transition_event_changes_status"),
        CheckConstraint("seq >= 1", name="ck_transition_event_seq"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    # 1-based position in the item's history
    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    from_status: Mapped[ItemStatus] = mapped_column(
        String(20),
        nullable=False,
    )

    to_status: Mapped[ItemStatus] = mapped_column(
        String(20),
        nullable=False,
    )

    # Free-text description of the action
    action: Mapped[str] = mapped_column(
        String(ACTION_MAX_LENGTH),
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # Role the actor held when acting
    actor_role: Mapped[Role] = mapped_column(
        String(20),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<TransitionEvent item={self.item_id} seq={self.seq} "
            f"{self.from_status}->{self.to_status}>"
        )
