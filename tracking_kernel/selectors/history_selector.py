"""
Module: tracking_kernel.selectors.history_selector
Responsibility: Read side of the transition history -- event listings as
    DTOs, and verification that an item's stored history is one linear chain
    consistent with the item row.
Architecture position: Kernel > Selectors.  Read-only.

Invariants verified by verify_chain():
    - seq runs 1..n without gaps.
    - The first event leaves CREATED; each later event's from_status equals
      the previous event's to_status.
    - The item's current status equals the last event's to_status (CREATED
      when there are no events).
    - The item's version equals the number of events.

Failure modes:
    - ItemNotFoundError if the item does not exist.
    - HistoryChainBrokenError at the first position where the chain breaks.
"""

from uuid import UUID

from sqlalchemy import select

from tracking_kernel.domain.codes import parse_item_ref
from tracking_kernel.domain.dtos import ItemRecord, TransitionEventRecord
from tracking_kernel.domain.lifecycle import INITIAL_STATUS
from tracking_kernel.exceptions import HistoryChainBrokenError, ItemNotFoundError
from tracking_kernel.logging_config import get_logger
from tracking_kernel.models.item import Item
from tracking_kernel.models.transition_event import TransitionEvent
from tracking_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.history")


class HistorySelector(BaseSelector[TransitionEvent]):
    """Query and verify item transition histories."""

    def get_item(self, ref: UUID | str) -> ItemRecord:
        """Item snapshot by id or scannable code."""
        parsed = parse_item_ref(ref)
        if isinstance(parsed, UUID):
            condition = Item.id == parsed
        else:
            condition = Item.code == parsed
        item = self.session.execute(select(Item).where(condition)).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(ref))
        return ItemRecord.from_model(item)

    def events_for_item(self, item_id: UUID) -> list[TransitionEventRecord]:
        """All events for an item, ordered by seq."""
        rows = self.session.execute(
            select(TransitionEvent)
            .where(TransitionEvent.item_id == item_id)
            .order_by(TransitionEvent.seq)
        ).scalars()
        return [TransitionEventRecord.from_model(row) for row in rows]

    def events_by_actor(self, actor_id: UUID) -> list[TransitionEventRecord]:
        """All events performed by one actor, oldest first."""
        rows = self.session.execute(
            select(TransitionEvent)
            .where(TransitionEvent.actor_id == actor_id)
            .order_by(TransitionEvent.occurred_at, TransitionEvent.seq)
        ).scalars()
        return [TransitionEventRecord.from_model(row) for row in rows]

    def verify_chain(self, item_id: UUID) -> int:
        """
        Check that the item's history is a single linear chain.

        Returns:
            Number of events verified.

        Raises:
            ItemNotFoundError: Item does not exist.
            HistoryChainBrokenError: First inconsistency found.
        """
        item = self.get_item(item_id)
        events = self.events_for_item(item.id)

        expected_from = INITIAL_STATUS
        for position, event in enumerate(events, start=1):
            if event.seq != position:
                self._broken(item.id, position, str(position), str(event.seq))
            if event.from_status != expected_from:
                self._broken(item.id, position, expected_from.value, event.from_status.value)
            expected_from = event.to_status

        if item.status != expected_from:
            self._broken(item.id, len(events), expected_from.value, item.status.value)
        if item.version != len(events):
            self._broken(item.id, len(events), f"version {len(events)}", f"version {item.version}")

        return len(events)

    @staticmethod
    def _broken(item_id: UUID, seq: int, expected: str, actual: str) -> None:
        logger.critical(
            "history_chain_broken",
            extra={"item_id": str(item_id), "seq": seq, "expected": expected, "actual": actual},
        )
        raise HistoryChainBrokenError(str(item_id), seq, expected, actual)
