"""
ItemStore -- durable keyed storage of tracked items.

Responsibility:
    Lookup by id / scannable code, item creation with a derived code, and
    the compare-and-swap status update that serializes concurrent
    transitions on the same item.

Architecture position:
    Kernel > Services -- imperative shell.  Session-bound; flushes within
    the caller's transaction and never commits.

Invariants enforced:
    - Code is derived from the new item's id (``ITM-`` + hex) and checked
      for uniqueness before insert.
    - ``conditional_update_status`` is a single
      ``UPDATE ... WHERE id = :id AND status = :expected`` statement.  It
      succeeds only if the stored status still equals the expected value at
      the moment of write; otherwise it raises and writes nothing.
    - ``version`` is incremented in the same statement.

Failure modes:
    - ItemNotFoundError: no item matches the id / code.
    - ItemCodeConflictError: derived code already exists.
    - InvalidItemLabelError: blank or over-long label.
    - ConcurrentModificationError: conditional update matched no row.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select, update

from tracking_kernel.domain.codes import derive_code, parse_item_ref
from tracking_kernel.domain.lifecycle import INITIAL_STATUS, ItemStatus
from tracking_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidItemLabelError,
    ItemCodeConflictError,
    ItemNotFoundError,
)
from tracking_kernel.logging_config import get_logger
from tracking_kernel.models.item import LABEL_MAX_LENGTH, Item
from tracking_kernel.services.base import BaseService

logger = get_logger("services.item_store")


class ItemStore(BaseService[Item]):
    """
    Storage service for Item rows.

    Non-goals:
        - Does NOT decide whether a status change is legal (TransitionEngine).
        - Does NOT append transition events (EventLog).
        - Does NOT call ``session.commit()``.
    """

    def get_by_id(self, item_id: UUID) -> Item:
        """
        Load an item by identifier.

        Raises:
            ItemNotFoundError: If no item has this id.
        """
        item = self.session.execute(
            select(Item).where(Item.id == item_id)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def get_by_code(self, code: str) -> Item:
        """
        Load an item by scannable code.

        Raises:
            ItemNotFoundError: If no item has this code.
        """
        item = self.session.execute(
            select(Item).where(Item.code == code)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(code)
        return item

    def resolve(self, ref: UUID | str) -> Item:
        """
        Load an item from either entry shape: an id (UUID or UUID string)
        or a scannable code.

        Raises:
            ItemNotFoundError: If nothing matches.
        """
        parsed = parse_item_ref(ref)
        if isinstance(parsed, UUID):
            return self.get_by_id(parsed)
        return self.get_by_code(parsed)

    def get_for_update(self, item_id: UUID) -> Item:
        """
        Re-read an item inside the current unit of work.

        Bypasses the identity map so the status is what the database holds
        now, and takes a row lock (``SELECT ... FOR UPDATE``) on backends
        that support it.

        Raises:
            ItemNotFoundError: If the item does not exist.
        """
        item = self.session.execute(
            select(Item)
            .where(Item.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def create(self, label: str, created_by_id: UUID | None = None) -> Item:
        """
        Register a new item in status CREATED.

        Args:
            label: Human label, 1..200 characters after stripping.
            created_by_id: Actor registering the item, if known.

        Returns:
            The flushed Item (id and code assigned).

        Raises:
            InvalidItemLabelError: If the label is blank or too long.
            ItemCodeConflictError: If the derived code already exists.
        """
        if not isinstance(label, str) or not label.strip():
            raise InvalidItemLabelError(label, "label must not be blank")
        label = label.strip()
        if len(label) > LABEL_MAX_LENGTH:
            raise InvalidItemLabelError(
                label, f"label exceeds {LABEL_MAX_LENGTH} characters"
            )

        item_id = uuid4()
        code = derive_code(item_id)

        existing = self.session.execute(
            select(Item.id).where(Item.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise ItemCodeConflictError(code)

        now = self._clock.now()
        item = Item(
            id=item_id,
            label=label,
            code=code,
            status=INITIAL_STATUS.value,
            version=0,
            created_at=now,
            updated_at=now,
            created_by_id=created_by_id,
        )
        self.session.add(item)
        self.session.flush()

        logger.info(
            "item_created",
            extra={"item_code": code, "created_by_id": created_by_id},
        )
        return item

    def conditional_update_status(
        self,
        item_id: UUID,
        expected_status: ItemStatus,
        new_status: ItemStatus,
        actor_id: UUID | None = None,
    ) -> Item:
        """
        Compare-and-swap the item's status.

        Preconditions:
            - Called inside the caller's unit of work.
        Postconditions:
            - On success: status == new_status, version incremented by one,
              updated_at/updated_by_id stamped.  Returns the fresh row.
            - On failure: nothing written.

        Raises:
            ConcurrentModificationError: If the stored status is no longer
                ``expected_status`` (or the item is gone).
        """
        result = self.session.execute(
            update(Item)
            .where(Item.id == item_id, Item.status == expected_status.value)
            .values(
                status=new_status.value,
                version=Item.version + 1,
                updated_at=self._clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "conditional_update_missed",
                extra={
                    "expected_status": expected_status.value,
                    "new_status": new_status.value,
                },
            )
            raise ConcurrentModificationError("Item", str(item_id), expected_status.value)

        return self.session.execute(
            select(Item)
            .where(Item.id == item_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
