"""
BaseService -- abstract base for session-bound kernel services.

Responsibility:
    Common constructor and session-handling contract for the storage
    services (ItemStore, EventLog).  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller.  The TransitionEngine (or
    ``session_scope()``) owns commit/rollback, which is what lets the event
    append and the status update land in one atomic unit of work.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from tracking_kernel.db.base import Base
from tracking_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel storage services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - Timestamps come from the injected clock.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
