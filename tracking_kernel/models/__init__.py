"""ORM models for the tracking kernel."""

from tracking_kernel.models.item import Item
from tracking_kernel.models.transition_event import TransitionEvent

__all__ = [
    "Item",
    "TransitionEvent",
]
