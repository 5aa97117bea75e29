"""
Transition policy -- which role may move an item from which status to which.

Responsibility:
    Holds the compiled-in transition table and answers
    ``is_allowed(role, from_status, to_status)``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    transition engine before any write; independently unit-testable.

Invariants enforced:
    - The table is a single process-wide constant: a read-only mapping of
      ``(role, from_status)`` to a frozenset of allowed targets.  It is built
      once at import time and never mutated.
    - Fail closed: an unknown role, unknown status, or missing table row
      means "not allowed".  ``is_allowed`` never raises.
    - CLOSED has no outbound transitions for any role.

Non-goals:
    - The "requested == current" duplicate rule is NOT checked here; the
      engine checks it first so it surfaces as its own error kind.
    - Inactive actors are handled by the engine, not the table.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from tracking_kernel.domain.lifecycle import ItemStatus, Role

_S = ItemStatus

# (role, from_status) -> allowed to_status values.  Absent keys mean "none".
TRANSITION_TABLE: Mapping[tuple[Role, ItemStatus], frozenset[ItemStatus]] = MappingProxyType({
    # Full authority
    (Role.ADMIN, _S.CREATED): frozenset({_S.STORED, _S.CLOSED}),
    (Role.ADMIN, _S.STORED): frozenset({_S.VERIFIED, _S.DISPATCHED, _S.CLOSED}),
    (Role.ADMIN, _S.VERIFIED): frozenset({_S.DISPATCHED, _S.CLOSED}),
    (Role.ADMIN, _S.DISPATCHED): frozenset({_S.CLOSED}),
    (Role.ADMIN, _S.CLOSED): frozenset(),
    # Operations
    (Role.OPERATOR, _S.CREATED): frozenset({_S.STORED}),
    (Role.OPERATOR, _S.STORED): frozenset({_S.DISPATCHED}),
    (Role.OPERATOR, _S.VERIFIED): frozenset({_S.DISPATCHED}),
    (Role.OPERATOR, _S.DISPATCHED): frozenset({_S.CLOSED}),
    (Role.OPERATOR, _S.CLOSED): frozenset(),
    # Quality control
    (Role.QC, _S.STORED): frozenset({_S.VERIFIED}),
    # Viewer: no rows
})

_NOTHING: frozenset[ItemStatus] = frozenset()


def _coerce(enum_type, value):
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        return None


def allowed_targets(role: Role | str, from_status: ItemStatus | str) -> frozenset[ItemStatus]:
    """Statuses ``role`` may move an item to from ``from_status`` (empty if none)."""
    role_member = _coerce(Role, role)
    status_member = _coerce(ItemStatus, from_status)
    if role_member is None or status_member is None:
        return _NOTHING
    return TRANSITION_TABLE.get((role_member, status_member), _NOTHING)


def is_allowed(
    role: Role | str,
    from_status: ItemStatus | str,
    to_status: ItemStatus | str,
) -> bool:
    """
    Decide whether ``role`` may move an item from ``from_status`` to ``to_status``.

    Pure, total and deterministic; safe to call from any number of threads.
    """
    to_member = _coerce(ItemStatus, to_status)
    if to_member is None:
        return False
    return to_member in allowed_targets(role, from_status)


def may_register(role: Role | str) -> bool:
    """True iff ``role`` may register new items (CREATED has outbound edges for it)."""
    return bool(allowed_targets(role, ItemStatus.CREATED))


def is_terminal(status: ItemStatus | str) -> bool:
    """True iff no role has any outbound transition from ``status``."""
    return all(not allowed_targets(role, status) for role in Role)
