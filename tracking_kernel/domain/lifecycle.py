"""
Lifecycle vocabulary -- closed enumerations for item status and actor role.

Responsibility:
    Defines ``ItemStatus`` and ``Role`` as ``str``-valued enums, plus the
    parse helpers that turn boundary strings into members (raising typed
    validation errors on unknown values).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by models/
    for column typing and by services/ for coercion of caller input.

Invariants enforced:
    - Status and role are closed sets; an invalid value is a construction-time
      error, never a silent string-comparison miss.
    - INITIAL_STATUS is CREATED.
"""

from __future__ import annotations

from enum import Enum

from tracking_kernel.exceptions import InvalidRoleError, InvalidStatusError


class ItemStatus(str, Enum):
    """Lifecycle status of a tracked item.

    Contract: Forward path is CREATED -> STORED -> VERIFIED -> DISPATCHED -> CLOSED.
    CLOSED is terminal.  Which edges a given actor may take is decided by
    the transition policy, not by this enum.
    """

    CREATED = "created"
    STORED = "stored"
    VERIFIED = "verified"
    DISPATCHED = "dispatched"
    CLOSED = "closed"


class Role(str, Enum):
    """Actor role, as resolved by the authentication collaborator."""

    ADMIN = "admin"          # full authority
    OPERATOR = "operator"    # operations
    QC = "qc"                # quality control
    VIEWER = "viewer"        # read-only


INITIAL_STATUS = ItemStatus.CREATED


def parse_status(value: ItemStatus | str) -> ItemStatus:
    """
    Coerce a boundary value to an ItemStatus.

    Accepts a member, its value, or its name in any case ("stored",
    "STORED", ItemStatus.STORED).

    Raises:
        InvalidStatusError: If the value names no status.
    """
    if isinstance(value, ItemStatus):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        try:
            return ItemStatus(normalized)
        except ValueError:
            pass
    raise InvalidStatusError(value)


def parse_role(value: Role | str) -> Role:
    """
    Coerce a boundary value to a Role.

    Raises:
        InvalidRoleError: If the value names no role.
    """
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        try:
            return Role(normalized)
        except ValueError:
            pass
    raise InvalidRoleError(value)
