"""
TransitionEngine -- the single entry point for changing an item's status.

Responsibility:
    Resolve the item, decide whether the requested transition is allowed for
    the actor, and commit the status change together with its history event
    as one atomic unit of work.

Architecture position:
    Kernel > Services -- imperative shell.  Owns transaction boundaries
    (it is the one class here that calls ``commit()``).  Holds no mutable
    state between calls; each call opens its own sessions from the factory,
    so one instance is safe to share across threads.

Invariants enforced:
    - Duplicate first: ``requested == current`` raises
      DuplicateTransitionError before the policy is consulted.
    - Fail closed: inactive actors and transitions missing from the policy
      table raise TransitionForbiddenError.
    - No write is attempted for not-found, duplicate or forbidden outcomes.
    - Decide-then-write: the status read inside the unit of work must equal
      the status the decision was made against; otherwise the decision is
      discarded and re-made against the fresh status.
    - Event ``seq`` is ``version + 1`` of the re-read item; the conditional
      update bumps ``version`` in the same unit of work, so after commit
      ``item.version == event.seq``.
    - Bounded retries: after ``max_attempts`` lost races the caller gets
      TransitionConflictError; nothing is ever overwritten.

Failure modes:
    - InvalidStatusError: requested status is not a status.
    - ItemNotFoundError / DuplicateTransitionError / TransitionForbiddenError.
    - TransitionConflictError: retry budget exhausted.
    - StorageFailureError: any SQLAlchemyError, after rollback.

Audit relevance:
    Every call is logged under one correlation_id with actor_id and item_ref
    bound in LogContext: transition_requested, then one of
    transition_committed / transition_rejected / transition_conflict /
    storage_failure.  Lost races log transition_retry.

Usage:
    engine = TransitionEngine(get_session_factory(), clock=SystemClock())
    result = engine.scan("ITM-...", ItemStatus.STORED, actor)
    assert result.item.status == result.event.to_status
"""

from __future__ import annotations

import time
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tracking_kernel.config import KernelSettings
from tracking_kernel.db.engine import mark_read_only
from tracking_kernel.domain.actor import ActorContext
from tracking_kernel.domain.clock import Clock, SystemClock
from tracking_kernel.domain.dtos import ItemRecord, TransitionEventRecord, TransitionResult
from tracking_kernel.domain.lifecycle import INITIAL_STATUS, ItemStatus, Role, parse_status
from tracking_kernel.domain.transition_policy import is_allowed, may_register
from tracking_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateTransitionError,
    ItemNotFoundError,
    StorageFailureError,
    TransitionConflictError,
    TransitionForbiddenError,
)
from tracking_kernel.logging_config import LogContext, get_logger
from tracking_kernel.services.event_log import EventLog
from tracking_kernel.services.item_store import ItemStore

logger = get_logger("services.transition_engine")


def describe_transition(
    from_status: ItemStatus,
    to_status: ItemStatus,
    role: Role,
    note: str | None = None,
) -> str:
    """Human-readable action text stored on the transition event."""
    text = f"{role.value} moved item from {from_status.value} to {to_status.value}"
    if note:
        text = f"{text}: {note.strip()}"
    return text


class TransitionEngine:
    """
    Validates and applies item status transitions.

    Contract:
        ``execute()`` either returns a TransitionResult whose item and event
        were committed together, or raises a typed error having written
        nothing.

    Non-goals:
        - Does NOT authenticate actors; the ActorContext is trusted.
        - Does NOT keep any in-process lock; the database is the
          serialization point.
    """

    DEFAULT_MAX_ATTEMPTS = 3

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    @classmethod
    def from_settings(
        cls,
        settings: KernelSettings,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> TransitionEngine:
        return cls(
            session_factory,
            clock=clock,
            max_attempts=settings.max_transition_attempts,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ------------------------------------------------------------------
    # Entry shapes
    # ------------------------------------------------------------------

    def scan(
        self,
        code: str,
        requested_status: ItemStatus | str,
        actor: ActorContext,
        note: str | None = None,
    ) -> TransitionResult:
        """Transition the item identified by its scannable code."""
        return self.execute(code, requested_status, actor, note=note)

    def update_status(
        self,
        item_id: UUID,
        requested_status: ItemStatus | str,
        actor: ActorContext,
        note: str | None = None,
    ) -> TransitionResult:
        """Transition the item identified by its internal id."""
        return self.execute(item_id, requested_status, actor, note=note)

    def register_item(self, label: str, actor: ActorContext) -> ItemRecord:
        """
        Create a new item in status CREATED, in its own unit of work.

        Raises:
            TransitionForbiddenError: Actor is inactive or its role may not
                register items.
            InvalidItemLabelError: Blank or over-long label.
            StorageFailureError: Database failure.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.id),
        ):
            if not actor.is_active or not may_register(actor.role):
                reason = "actor is inactive" if not actor.is_active else "role may not register items"
                logger.info(
                    "registration_rejected",
                    extra={"actor_role": actor.role.value, "reason": reason},
                )
                raise TransitionForbiddenError(
                    actor.role.value, "none", INITIAL_STATUS.value, reason=reason
                )

            session = self._session_factory()
            try:
                item = ItemStore(session, self._clock).create(label, created_by_id=actor.id)
                session.commit()
                record = ItemRecord.from_model(item)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("storage_failure", extra={"operation": "register_item"}, exc_info=True)
                raise StorageFailureError("register_item", str(exc)) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            with LogContext.bind(item_id=str(record.id)):
                logger.info("item_registered", extra={"item_code": record.code})
            return record

    # ------------------------------------------------------------------
    # Core operation
    # ------------------------------------------------------------------

    def execute(
        self,
        ref: UUID | str,
        requested_status: ItemStatus | str,
        actor: ActorContext,
        note: str | None = None,
    ) -> TransitionResult:
        """
        Validate and apply one status transition.

        Args:
            ref: Item id or scannable code.
            requested_status: Target status (member or string value).
            actor: Authenticated actor performing the transition.
            note: Optional free text appended to the event's action.

        Returns:
            TransitionResult with the committed item and event.

        Raises:
            InvalidStatusError, ItemNotFoundError, DuplicateTransitionError,
            TransitionForbiddenError, TransitionConflictError,
            StorageFailureError.
        """
        requested = parse_status(requested_status)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.id),
            item_ref=str(ref),
        ):
            logger.info(
                "transition_requested",
                extra={
                    "requested_status": requested.value,
                    "actor_role": actor.role.value,
                },
            )
            start = time.monotonic()
            try:
                result = self._execute(ref, requested, actor, note)
            except (ItemNotFoundError, DuplicateTransitionError, TransitionForbiddenError) as exc:
                logger.info(
                    "transition_rejected",
                    extra={"reason_code": exc.code, "requested_status": requested.value},
                )
                raise
            except TransitionConflictError as exc:
                logger.warning(
                    "transition_conflict",
                    extra={"attempts": exc.attempts, "requested_status": requested.value},
                )
                raise

            duration_ms = round((time.monotonic() - start) * 1000, 2)
            logger.info(
                "transition_committed",
                extra={
                    "from_status": result.event.from_status.value,
                    "to_status": result.event.to_status.value,
                    "item_code": result.item.code,
                    "seq": result.event.seq,
                    "attempts": result.attempts,
                    "duration_ms": duration_ms,
                },
            )
            return result

    def _execute(
        self,
        ref: UUID | str,
        requested: ItemStatus,
        actor: ActorContext,
        note: str | None,
    ) -> TransitionResult:
        snapshot = self._read_item(ref)
        observed = snapshot.status
        with LogContext.bind(item_id=str(snapshot.id)):
            for attempt in range(1, self._max_attempts + 1):
                self._authorize(snapshot.id, observed, requested, actor)

                outcome = self._apply(snapshot.id, observed, requested, actor, note, attempt)
                if isinstance(outcome, TransitionResult):
                    return outcome

                logger.info(
                    "transition_retry",
                    extra={
                        "attempt": attempt,
                        "observed_status": observed.value,
                        "fresh_status": outcome.value,
                    },
                )
                observed = outcome

        raise TransitionConflictError(str(snapshot.id), self._max_attempts)

    def _authorize(
        self,
        item_id: UUID,
        current: ItemStatus,
        requested: ItemStatus,
        actor: ActorContext,
    ) -> None:
        if requested == current:
            raise DuplicateTransitionError(str(item_id), current.value)
        if not actor.is_active:
            raise TransitionForbiddenError(
                actor.role.value, current.value, requested.value, reason="actor is inactive"
            )
        if not is_allowed(actor.role, current, requested):
            raise TransitionForbiddenError(actor.role.value, current.value, requested.value)

    def _read_item(self, ref: UUID | str) -> ItemRecord:
        """Short read-only transaction: resolve the reference to a snapshot."""
        session = self._session_factory()
        try:
            mark_read_only(session)
            return ItemRecord.from_model(ItemStore(session, self._clock).resolve(ref))
        except SQLAlchemyError as exc:
            logger.error("storage_failure", extra={"operation": "resolve_item"}, exc_info=True)
            raise StorageFailureError("resolve_item", str(exc)) from exc
        finally:
            session.close()

    def _apply(
        self,
        item_id: UUID,
        observed: ItemStatus,
        requested: ItemStatus,
        actor: ActorContext,
        note: str | None,
        attempt: int,
    ) -> TransitionResult | ItemStatus:
        """
        One unit of work.

        Returns the committed TransitionResult, or the fresh status when the
        decision turned out stale and must be re-made.
        """
        session = self._session_factory()
        try:
            store = ItemStore(session, self._clock)
            item = store.get_for_update(item_id)
            current = item.status_enum
            if current != observed:
                session.rollback()
                return current

            event = EventLog(session, self._clock).append(
                item_id=item_id,
                from_status=current,
                to_status=requested,
                actor_id=actor.id,
                action=describe_transition(current, requested, actor.role, note),
                actor_role=actor.role,
                seq=item.version + 1,
            )
            updated = store.conditional_update_status(item_id, current, requested, actor.id)
            event_record = TransitionEventRecord.from_model(event)
            item_record = ItemRecord.from_model(updated)
            session.commit()
            return TransitionResult(item=item_record, event=event_record, attempts=attempt)
        except ConcurrentModificationError:
            session.rollback()
            return self._fresh_status(session, item_id)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("storage_failure", extra={"operation": "apply_transition"}, exc_info=True)
            raise StorageFailureError("apply_transition", str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _fresh_status(self, session: Session, item_id: UUID) -> ItemStatus:
        try:
            status = ItemStore(session, self._clock).get_by_id(item_id).status_enum
            session.rollback()
            return status
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("storage_failure", extra={"operation": "reread_item"}, exc_info=True)
            raise StorageFailureError("reread_item", str(exc)) from exc
