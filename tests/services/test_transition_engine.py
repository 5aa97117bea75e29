"""
TransitionEngine tests.

Verifies:
- Happy path: status and event committed together, version == seq
- Duplicate requests are rejected before the policy and never write
- Every (role, from, to) outside the table is Forbidden and never writes
- Inactive actors, unknown items and invalid statuses
- Stale decisions are re-made against the fresh status
- Lost conditional updates retry, then surface TransitionConflictError
- Storage failures roll back and surface StorageFailureError
- Structured logging carries correlation_id, actor_id and item_ref
"""

from itertools import product
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tracking_kernel.config import KernelSettings
from tracking_kernel.db.engine import session_scope
from tracking_kernel.domain.actor import ActorContext
from tracking_kernel.domain.lifecycle import ItemStatus, Role
from tracking_kernel.domain.transition_policy import is_allowed
from tracking_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateTransitionError,
    InvalidStatusError,
    ItemNotFoundError,
    StorageFailureError,
    TransitionConflictError,
    TransitionForbiddenError,
    http_status_for,
)
from tracking_kernel.models import Item, TransitionEvent
from tracking_kernel.services.event_log import EventLog
from tracking_kernel.services.item_store import ItemStore
from tracking_kernel.services.transition_engine import TransitionEngine, describe_transition

S = ItemStatus


def _row_counts(session_factory) -> tuple[int, int]:
    with session_scope(session_factory, read_only=True) as sess:
        items = sess.execute(select(func.count()).select_from(Item)).scalar_one()
        events = sess.execute(select(func.count()).select_from(TransitionEvent)).scalar_one()
    return items, events


class TestHappyPath:
    def test_scan_by_code(self, transition_engine, create_item, operator, load_item):
        record = create_item("Pallet 7")

        result = transition_engine.scan(record.code, S.STORED, operator)

        assert result.item.status is S.STORED
        assert result.event.from_status is S.CREATED
        assert result.event.to_status is S.STORED
        assert result.event.actor_id == operator.id
        assert result.event.actor_role is Role.OPERATOR
        assert result.event.seq == 1
        assert result.item.version == 1
        assert result.attempts == 1

        item, events = load_item(record.id)
        assert item.status is S.STORED
        assert item.updated_by_id == operator.id
        assert [e.id for e in events] == [result.event.id]

    def test_update_status_by_id_and_string_status(self, transition_engine, create_item, admin):
        record = create_item()
        result = transition_engine.update_status(record.id, "closed", admin)
        assert result.item.status is S.CLOSED

    def test_full_lifecycle(self, transition_engine, create_item, operator, qc, load_item):
        record = create_item()
        transition_engine.scan(record.code, S.STORED, operator)
        transition_engine.scan(record.code, S.VERIFIED, qc)
        transition_engine.scan(record.code, S.DISPATCHED, operator)
        final = transition_engine.scan(record.code, S.CLOSED, operator)

        assert final.item.status is S.CLOSED
        assert final.item.version == 4

        _, events = load_item(record.id)
        assert [(e.from_status, e.to_status) for e in events] == [
            (S.CREATED, S.STORED),
            (S.STORED, S.VERIFIED),
            (S.VERIFIED, S.DISPATCHED),
            (S.DISPATCHED, S.CLOSED),
        ]
        assert [e.seq for e in events] == [1, 2, 3, 4]

    def test_note_recorded_in_action(self, transition_engine, create_item, operator):
        record = create_item()
        result = transition_engine.scan(record.code, S.STORED, operator, note="bay 12")
        assert result.event.action == "operator moved item from created to stored: bay 12"

    def test_describe_transition(self):
        assert describe_transition(S.STORED, S.VERIFIED, Role.QC) == (
            "qc moved item from stored to verified"
        )


class TestScenarios:
    def test_operator_cannot_verify(self, transition_engine, create_item, operator, load_item):
        record = create_item(status=S.STORED)

        with pytest.raises(TransitionForbiddenError) as exc_info:
            transition_engine.scan(record.code, S.VERIFIED, operator)

        err = exc_info.value
        assert err.role == "operator"
        assert err.from_status == "stored"
        assert err.to_status == "verified"
        assert "operator" in str(err) and "verified" in str(err)
        assert http_status_for(err) == 403

        item, events = load_item(record.id)
        assert item.status is S.STORED
        assert len(events) == 1

    def test_repeat_scan_is_duplicate(self, transition_engine, create_item, admin, qc, load_item):
        record = create_item(status=S.VERIFIED)

        for actor in (admin, qc):
            with pytest.raises(DuplicateTransitionError) as exc_info:
                transition_engine.scan(record.code, S.VERIFIED, actor)
            assert exc_info.value.status == "verified"
            assert http_status_for(exc_info.value) == 409

        item, events = load_item(record.id)
        assert item.version == 2
        assert len(events) == 2

    def test_unknown_code(self, transition_engine, create_item, session_factory, operator):
        create_item(status=S.STORED)
        before = _row_counts(session_factory)

        with pytest.raises(ItemNotFoundError) as exc_info:
            transition_engine.scan("ITM-" + "F" * 32, S.STORED, operator)

        assert http_status_for(exc_info.value) == 404
        assert _row_counts(session_factory) == before == (1, 1)

    def test_unknown_id(self, transition_engine, create_item, session_factory, admin):
        create_item(status=S.VERIFIED)
        before = _row_counts(session_factory)

        with pytest.raises(ItemNotFoundError):
            transition_engine.update_status(uuid4(), S.DISPATCHED, admin)

        assert _row_counts(session_factory) == before == (1, 2)

    def test_duplicate_checked_before_policy(self, transition_engine, create_item, viewer):
        record = create_item()
        with pytest.raises(DuplicateTransitionError):
            transition_engine.scan(record.code, S.CREATED, viewer)

    def test_closed_is_terminal_for_admin(self, transition_engine, create_item, admin):
        record = create_item(status=S.CLOSED)
        with pytest.raises(TransitionForbiddenError):
            transition_engine.scan(record.code, S.DISPATCHED, admin)


class TestForbiddenNeverWrites:
    FORBIDDEN = [
        (role, from_status, to_status)
        for role, from_status, to_status in product(Role, S, S)
        if from_status != to_status and not is_allowed(role, from_status, to_status)
    ]

    @pytest.mark.parametrize("role,from_status,to_status", FORBIDDEN)
    def test_forbidden_triple(
        self, transition_engine, create_item, make_actor, load_item, role, from_status, to_status
    ):
        record = create_item(status=from_status)
        with pytest.raises(TransitionForbiddenError):
            transition_engine.update_status(record.id, to_status, make_actor(role))

        item, events = load_item(record.id)
        assert item.status is from_status
        assert item.version == record.version
        assert len(events) == record.version


class TestInputValidation:
    def test_invalid_status_rejected_before_storage(self, transition_engine, operator, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("storage must not be touched")

        monkeypatch.setattr(ItemStore, "resolve", _fail)
        with pytest.raises(InvalidStatusError) as exc_info:
            transition_engine.scan("ITM-" + "A" * 32, "lost", operator)
        assert http_status_for(exc_info.value) == 400

    def test_inactive_actor_forbidden(self, transition_engine, create_item, make_actor, load_item):
        record = create_item()
        inactive = make_actor(Role.ADMIN, is_active=False)

        with pytest.raises(TransitionForbiddenError) as exc_info:
            transition_engine.scan(record.code, S.STORED, inactive)
        assert exc_info.value.reason == "actor is inactive"

        _, events = load_item(record.id)
        assert events == []

    def test_max_attempts_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            TransitionEngine(session_factory, max_attempts=0)

    def test_from_settings(self, session_factory):
        engine = TransitionEngine.from_settings(
            KernelSettings(max_transition_attempts=5), session_factory
        )
        assert engine.max_attempts == 5


class TestRegisterItem:
    def test_operator_registers(self, transition_engine, operator):
        record = transition_engine.register_item("Tote 3", operator)
        assert record.status is S.CREATED
        assert record.version == 0
        assert record.created_by_id == operator.id

    @pytest.mark.parametrize("role", [Role.QC, Role.VIEWER])
    def test_roles_without_created_edges_cannot_register(self, transition_engine, make_actor, role):
        with pytest.raises(TransitionForbiddenError):
            transition_engine.register_item("Tote 4", make_actor(role))

    def test_inactive_cannot_register(self, transition_engine, make_actor):
        with pytest.raises(TransitionForbiddenError):
            transition_engine.register_item("Tote 5", make_actor(Role.ADMIN, is_active=False))


class TestStaleDecision:
    def test_decision_remade_against_fresh_status(
        self, transition_engine, create_item, operator, qc, load_item, monkeypatch
    ):
        """A QC verification lands between the pre-read and the unit of work."""
        record = create_item(status=S.STORED)
        original = ItemStore.get_for_update
        injected = []

        def _racing_get_for_update(self, item_id):
            if not injected:
                injected.append(True)
                transition_engine.scan(record.code, S.VERIFIED, qc)
            return original(self, item_id)

        monkeypatch.setattr(ItemStore, "get_for_update", _racing_get_for_update)

        result = transition_engine.scan(record.code, S.DISPATCHED, operator)

        assert result.attempts == 2
        assert result.event.from_status is S.VERIFIED
        assert result.event.seq == 3

        item, events = load_item(record.id)
        assert item.status is S.DISPATCHED
        assert [e.to_status for e in events] == [S.STORED, S.VERIFIED, S.DISPATCHED]

    def test_fresh_status_makes_request_forbidden(
        self, transition_engine, create_item, operator, admin, load_item, monkeypatch
    ):
        record = create_item(status=S.STORED)
        original = ItemStore.get_for_update
        injected = []

        def _racing_get_for_update(self, item_id):
            if not injected:
                injected.append(True)
                transition_engine.scan(record.code, S.CLOSED, admin)
            return original(self, item_id)

        monkeypatch.setattr(ItemStore, "get_for_update", _racing_get_for_update)

        with pytest.raises(TransitionForbiddenError) as exc_info:
            transition_engine.scan(record.code, S.DISPATCHED, operator)
        assert exc_info.value.from_status == "closed"

        item, events = load_item(record.id)
        assert item.status is S.CLOSED
        assert len(events) == 2

    def test_fresh_status_equals_request_is_duplicate(
        self, transition_engine, create_item, operator, admin, monkeypatch
    ):
        record = create_item(status=S.STORED)
        original = ItemStore.get_for_update
        injected = []

        def _racing_get_for_update(self, item_id):
            if not injected:
                injected.append(True)
                transition_engine.scan(record.code, S.DISPATCHED, admin)
            return original(self, item_id)

        monkeypatch.setattr(ItemStore, "get_for_update", _racing_get_for_update)

        with pytest.raises(DuplicateTransitionError):
            transition_engine.scan(record.code, S.DISPATCHED, operator)


class TestConditionalUpdateConflicts:
    def test_single_lost_update_is_retried(
        self, transition_engine, create_item, operator, load_item, monkeypatch
    ):
        record = create_item()
        original = ItemStore.conditional_update_status
        calls = []

        def _lose_once(self, item_id, expected_status, new_status, actor_id=None):
            calls.append(expected_status)
            if len(calls) == 1:
                raise ConcurrentModificationError("Item", str(item_id), expected_status.value)
            return original(self, item_id, expected_status, new_status, actor_id)

        monkeypatch.setattr(ItemStore, "conditional_update_status", _lose_once)

        result = transition_engine.scan(record.code, S.STORED, operator)

        assert result.attempts == 2
        item, events = load_item(record.id)
        assert item.status is S.STORED
        assert len(events) == 1

    def test_retry_budget_exhausted(
        self, session_factory, deterministic_clock, create_item, operator, load_item, monkeypatch
    ):
        record = create_item()
        engine = TransitionEngine(session_factory, clock=deterministic_clock, max_attempts=3)
        calls = []

        def _always_lose(self, item_id, expected_status, new_status, actor_id=None):
            calls.append(expected_status)
            raise ConcurrentModificationError("Item", str(item_id), expected_status.value)

        monkeypatch.setattr(ItemStore, "conditional_update_status", _always_lose)

        with pytest.raises(TransitionConflictError) as exc_info:
            engine.scan(record.code, S.STORED, operator)

        assert exc_info.value.attempts == 3
        assert len(calls) == 3
        assert http_status_for(exc_info.value) == 409

        item, events = load_item(record.id)
        assert item.status is S.CREATED
        assert events == []


class TestStorageFailure:
    def test_failed_append_rolls_back(
        self, transition_engine, create_item, operator, load_item, monkeypatch
    ):
        record = create_item()

        def _disk_error(self, *args, **kwargs):
            raise OperationalError("INSERT INTO transition_events", {}, Exception("disk I/O error"))

        monkeypatch.setattr(EventLog, "append", _disk_error)

        with pytest.raises(StorageFailureError) as exc_info:
            transition_engine.scan(record.code, S.STORED, operator)

        assert exc_info.value.operation == "apply_transition"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert http_status_for(exc_info.value) == 500

        item, events = load_item(record.id)
        assert item.status is S.CREATED
        assert events == []

    def test_failed_update_discards_appended_event(
        self, transition_engine, create_item, operator, load_item, monkeypatch
    ):
        record = create_item()

        def _lock_timeout(self, *args, **kwargs):
            raise OperationalError("UPDATE items", {}, Exception("database is locked"))

        monkeypatch.setattr(ItemStore, "conditional_update_status", _lock_timeout)

        with pytest.raises(StorageFailureError):
            transition_engine.scan(record.code, S.STORED, operator)

        _, events = load_item(record.id)
        assert events == []

    def test_http_status_for_foreign_exception(self):
        assert http_status_for(RuntimeError("boom")) == 500


class TestLogging:
    def test_committed_transition_logged_with_context(
        self, transition_engine, create_item, operator, captured_logs
    ):
        record = create_item()
        transition_engine.scan(record.code, S.STORED, operator)

        logs = captured_logs()
        committed = [r for r in logs if r["message"] == "transition_committed"]
        assert len(committed) == 1
        entry = committed[0]
        assert entry["actor_id"] == str(operator.id)
        assert entry["item_ref"] == record.code
        assert entry["from_status"] == "created"
        assert entry["to_status"] == "stored"
        assert "correlation_id" in entry

        requested = [r for r in logs if r["message"] == "transition_requested"]
        assert requested[0]["correlation_id"] == entry["correlation_id"]

    def test_rejection_logged(self, transition_engine, create_item, viewer, captured_logs):
        record = create_item()
        with pytest.raises(TransitionForbiddenError):
            transition_engine.scan(record.code, S.STORED, viewer)

        rejected = [r for r in captured_logs() if r["message"] == "transition_rejected"]
        assert rejected[0]["reason_code"] == "TRANSITION_FORBIDDEN"

    def test_context_cleared_after_call(self, transition_engine, create_item, operator):
        from tracking_kernel.logging_config import LogContext

        record = create_item()
        transition_engine.scan(record.code, S.STORED, operator)
        assert LogContext.get_all() == {}
