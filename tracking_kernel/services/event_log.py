"""
EventLog -- append-only storage of item transition events.

Responsibility:
    Writes one TransitionEvent row per committed status change.

Architecture position:
    Kernel > Services -- imperative shell.  Session-bound; flushes within the
    caller's transaction and never commits.

Invariants enforced:
    - Insert-only: this class has no update or delete operation.  DTO
      reads and chain verification go through HistorySelector.
    - Must be called inside the same unit of work as
      ItemStore.conditional_update_status(), or not at all.
    - (item_id, seq) uniqueness: a second writer that computed the same seq
      fails with ConcurrentModificationError instead of forking the history.

Failure modes:
    - ConcurrentModificationError on a duplicate (item_id, seq).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tracking_kernel.domain.lifecycle import ItemStatus, Role
from tracking_kernel.exceptions import ConcurrentModificationError
from tracking_kernel.logging_config import get_logger
from tracking_kernel.models.transition_event import ACTION_MAX_LENGTH, TransitionEvent
from tracking_kernel.services.base import BaseService

logger = get_logger("services.event_log")


class EventLog(BaseService[TransitionEvent]):
    """Append-only writer for TransitionEvent rows."""

    def append(
        self,
        item_id: UUID,
        from_status: ItemStatus,
        to_status: ItemStatus,
        actor_id: UUID,
        action: str,
        actor_role: Role,
        seq: int,
    ) -> TransitionEvent:
        """
        Append one transition event.

        Args:
            item_id: Item the transition applies to.
            from_status: Status the item held when the decision was made.
            to_status: Status the item moves to.
            actor_id: Who performed the transition.
            action: Free-text description (truncated to the column width).
            actor_role: Role the actor held.
            seq: 1-based position in the item's history.

        Returns:
            The flushed TransitionEvent.

        Raises:
            ConcurrentModificationError: If another event with this
                (item_id, seq) already exists.
        """
        event = TransitionEvent(
            item_id=item_id,
            seq=seq,
            from_status=from_status.value,
            to_status=to_status.value,
            action=action[:ACTION_MAX_LENGTH],
            actor_id=actor_id,
            actor_role=actor_role.value,
            occurred_at=self._clock.now(),
        )
        self.session.add(event)
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "event_append_conflict",
                extra={"seq": seq, "from_status": from_status.value},
            )
            raise ConcurrentModificationError("TransitionEvent", str(item_id)) from exc

        logger.debug(
            "event_appended",
            extra={
                "seq": seq,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return event

    def history(self, item_id: UUID) -> list[TransitionEvent]:
        """All events for an item, oldest first."""
        return list(
            self.session.execute(
                select(TransitionEvent)
                .where(TransitionEvent.item_id == item_id)
                .order_by(TransitionEvent.seq)
            ).scalars()
        )
