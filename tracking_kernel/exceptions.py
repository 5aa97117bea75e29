"""
Typed Exception Hierarchy for the Tracking Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the transition engine (HTTP handlers, scanners, the CLI) must
react to each failure differently: a missing item is a 404, a role without
permission is a 403, a lost race is a 409.  Parsing message strings for that
is fragile, so every failure has:

  1. A TYPED exception class (catch by type, not message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. An ``http_status`` class attribute (what the boundary layer returns)
  4. Structured DATA stored as attributes (not just a message string)

Example:
    try:
        engine.scan(code, ItemStatus.STORED, actor)
    except TransitionForbiddenError as e:
        return {"error": e.code, "role": e.role, "to": e.to_status}, e.http_status

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TrackingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidStatusError
    |   +-- InvalidRoleError
    |   +-- InvalidItemLabelError
    |
    +-- ItemError
    |   +-- ItemNotFoundError
    |   +-- ItemCodeConflictError
    |
    +-- TransitionError
    |   +-- DuplicateTransitionError
    |   +-- TransitionForbiddenError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |   +-- TransitionConflictError
    |
    +-- StorageError
    |   +-- StorageFailureError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- HistoryChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | HTTP | When Raised
-------------|--------------------------|------|-----------------------------------
Validation   | INVALID_STATUS           | 400  | Unknown status value
             | INVALID_ROLE             | 400  | Unknown role value
             | INVALID_ITEM_LABEL       | 400  | Blank or over-long label
-------------|--------------------------|------|-----------------------------------
Item         | ITEM_NOT_FOUND           | 404  | No item matches the code / id
             | ITEM_CODE_CONFLICT       | 409  | Derived code already exists
-------------|--------------------------|------|-----------------------------------
Transition   | DUPLICATE_TRANSITION     | 409  | Requested status == current status
             | TRANSITION_FORBIDDEN     | 403  | Role lacks permission / inactive
-------------|--------------------------|------|-----------------------------------
Concurrency  | CONCURRENT_MODIFICATION  | 409  | Conditional update matched no row
             | TRANSITION_CONFLICT      | 409  | Retry budget exhausted
-------------|--------------------------|------|-----------------------------------
Storage      | STORAGE_FAILURE          | 500  | Database failure unrelated to rules
-------------|--------------------------|------|-----------------------------------
Immutability | IMMUTABILITY_VIOLATION   | 500  | Update/delete of a transition event
-------------|--------------------------|------|-----------------------------------
Audit        | HISTORY_CHAIN_BROKEN     | 500  | Stored history is not a linear chain

===============================================================================
"""


class TrackingKernelError(Exception):
    """
    Base exception for all tracking kernel errors.

    All subclasses must have ``code`` and ``http_status`` class attributes.
    """

    code: str = "TRACKING_KERNEL_ERROR"
    http_status: int = 500


def http_status_for(exc: BaseException) -> int:
    """Map any exception to the transport status the boundary should return."""
    if isinstance(exc, TrackingKernelError):
        return exc.http_status
    return 500


# Validation exceptions


class ValidationError(TrackingKernelError):
    """Base exception for malformed input rejected before any storage access."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400


class InvalidStatusError(ValidationError):
    """Value is not a member of the item status enumeration."""

    code: str = "INVALID_STATUS"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid item status: {value!r}")


class InvalidRoleError(ValidationError):
    """Value is not a member of the actor role enumeration."""

    code: str = "INVALID_ROLE"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid actor role: {value!r}")


class InvalidItemLabelError(ValidationError):
    """Item label is blank or exceeds the column width."""

    code: str = "INVALID_ITEM_LABEL"

    def __init__(self, label: object, reason: str):
        self.label = label
        self.reason = reason
        super().__init__(f"Invalid item label {label!r}: {reason}")


# Item exceptions


class ItemError(TrackingKernelError):
    """Base exception for item-related errors."""

    code: str = "ITEM_ERROR"


class ItemNotFoundError(ItemError):
    """No item matches the given code or identifier."""

    code: str = "ITEM_NOT_FOUND"
    http_status: int = 404

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Item not found: {ref}")


class ItemCodeConflictError(ItemError):
    """The scannable code derived for a new item already exists."""

    code: str = "ITEM_CODE_CONFLICT"
    http_status: int = 409

    def __init__(self, item_code: str):
        self.item_code = item_code
        super().__init__(f"Item code already exists: {item_code}")


# Transition exceptions


class TransitionError(TrackingKernelError):
    """Base exception for rejected status transitions."""

    code: str = "TRANSITION_ERROR"
    http_status: int = 400


class DuplicateTransitionError(TransitionError):
    """Requested status equals the item's current status."""

    code: str = "DUPLICATE_TRANSITION"
    http_status: int = 409

    def __init__(self, item_id: str, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Item {item_id} is already in status '{status}'")


class TransitionForbiddenError(TransitionError):
    """
    Actor may not perform the requested transition.

    The message names the role and the attempted transition only; it never
    includes data about other actors.
    """

    code: str = "TRANSITION_FORBIDDEN"
    http_status: int = 403

    def __init__(
        self,
        role: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ):
        self.role = role
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = (
            f"Role '{role}' may not transition item "
            f"from '{from_status}' to '{to_status}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Concurrency exceptions


class ConcurrencyError(TrackingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    http_status: int = 409


class ConcurrentModificationError(ConcurrencyError):
    """
    A conditional write found the row changed by another transaction.

    Raised by the storage layer; the transition engine catches it and
    retries against the fresh status.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        message = (
            f"Concurrent modification on {entity_type} {entity_id}: "
            "row was changed by another transaction"
        )
        if expected is not None:
            message = f"{message} (expected status '{expected}')"
        super().__init__(message)


class TransitionConflictError(ConcurrencyError):
    """
    Concurrent writers kept winning until the retry budget ran out.

    Safe for the caller to retry the whole request: the engine always
    re-fetches the current status.
    """

    code: str = "TRANSITION_CONFLICT"

    def __init__(self, item_id: str, attempts: int):
        self.item_id = item_id
        self.attempts = attempts
        super().__init__(
            f"Transition on item {item_id} lost the race {attempts} time(s); "
            "retry the request"
        )


# Storage exceptions


class StorageError(TrackingKernelError):
    """Base exception for storage failures unrelated to business rules."""

    code: str = "STORAGE_ERROR"
    http_status: int = 500


class StorageFailureError(StorageError):
    """A durable read or write failed (connectivity, locks, disk)."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage failure during {operation}: {reason}")


# Immutability exceptions


class ImmutabilityError(TrackingKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(TrackingKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class HistoryChainBrokenError(AuditError):
    """
    An item's stored history is not a linear chain.

    Critical: the event log or the item row was changed outside the engine.
    """

    code: str = "HISTORY_CHAIN_BROKEN"

    def __init__(self, item_id: str, seq: int, expected: str, actual: str):
        self.item_id = item_id
        self.seq = seq
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History chain broken for item {item_id} at seq {seq}: "
            f"expected '{expected}', found '{actual}'"
        )
