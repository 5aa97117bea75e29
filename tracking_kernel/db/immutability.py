"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

Every status change of a tracked item is recorded as a TransitionEvent.
That history is only worth anything if nobody can rewrite it, so the event
log is append-only.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (database triggers)
    - Catches raw SQL, bulk UPDATE statements, direct database access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity           | Rule                                   | Why
-----------------|----------------------------------------|-------------------------------
TransitionEvent  | No UPDATE, no DELETE (from creation)   | The audit trail is the record
Item             | code never changes; rows never deleted | Printed labels must stay valid

Item.status / version / updated_* are NOT protected here: they change on
every transition, always through ItemStore.conditional_update_status().

===============================================================================
USAGE
===============================================================================

    from tracking_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from tracking_kernel.exceptions import ImmutabilityViolationError
from tracking_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_transition_event_update(mapper, connection, target):
    """Transition events are immutable from creation."""
    raise _blocked(
        "TransitionEvent",
        str(target.id),
        "UPDATE",
        "Transition events are immutable and cannot be modified",
    )


def _check_transition_event_delete(mapper, connection, target):
    """Transition events cannot be deleted."""
    raise _blocked(
        "TransitionEvent",
        str(target.id),
        "DELETE",
        "Transition events cannot be deleted",
    )


def _check_item_code_update(mapper, connection, target):
    """The scannable code is fixed at creation."""
    history = inspect(target).attrs.code.history
    if history.has_changes() and history.deleted:
        raise _blocked(
            "Item",
            str(target.id),
            "UPDATE",
            "Item code is derived from the item id and cannot be changed",
        )


def _check_item_delete(mapper, connection, target):
    """Items are never deleted; their history must stay resolvable."""
    raise _blocked(
        "Item",
        str(target.id),
        "DELETE",
        "Items cannot be deleted",
    )


_LISTENERS = (
    ("TransitionEvent", "before_update", _check_transition_event_update),
    ("TransitionEvent", "before_delete", _check_transition_event_delete),
    ("Item", "before_update", _check_item_code_update),
    ("Item", "before_delete", _check_item_delete),
)


def _models() -> dict:
    from tracking_kernel.models.item import Item
    from tracking_kernel.models.transition_event import TransitionEvent

    return {"Item": Item, "TransitionEvent": TransitionEvent}


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after models are importable and before any database writes.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally tamper with history
    to verify detection.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
