"""
Pure domain layer.

This package contains the lifecycle vocabulary, the transition policy and
immutable DTOs, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)
"""

from tracking_kernel.domain.actor import ActorContext
from tracking_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from tracking_kernel.domain.codes import CODE_PREFIX, derive_code, is_scannable_code
from tracking_kernel.domain.dtos import ItemRecord, TransitionEventRecord, TransitionResult
from tracking_kernel.domain.lifecycle import (
    INITIAL_STATUS,
    ItemStatus,
    Role,
    parse_role,
    parse_status,
)
from tracking_kernel.domain.transition_policy import (
    TRANSITION_TABLE,
    allowed_targets,
    is_allowed,
    is_terminal,
    may_register,
)

__all__ = [
    "ActorContext",
    "CODE_PREFIX",
    "Clock",
    "DeterministicClock",
    "INITIAL_STATUS",
    "ItemRecord",
    "ItemStatus",
    "Role",
    "SystemClock",
    "TRANSITION_TABLE",
    "TransitionEventRecord",
    "TransitionResult",
    "allowed_targets",
    "derive_code",
    "is_allowed",
    "is_scannable_code",
    "is_terminal",
    "may_register",
    "parse_role",
    "parse_status",
]
