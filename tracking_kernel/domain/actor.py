"""
ActorContext -- the resolved identity performing a transition.

Produced by the authentication collaborator (which has already validated
credentials) and consumed verbatim by the transition engine.  The kernel
never sees passwords or tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from tracking_kernel.domain.lifecycle import Role, parse_role


@dataclass(frozen=True)
class ActorContext:
    """
    Authenticated actor.

    Contract: frozen.  ``role`` is coerced to a ``Role`` at construction, so
    an unknown role raises ``InvalidRoleError`` here rather than later.
    """

    id: UUID
    role: Role
    is_active: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.id, UUID):
            object.__setattr__(self, "id", UUID(str(self.id)))
        object.__setattr__(self, "role", parse_role(self.role))
