"""Services for the tracking kernel (write side)."""

from tracking_kernel.services.event_log import EventLog
from tracking_kernel.services.item_store import ItemStore
from tracking_kernel.services.transition_engine import TransitionEngine, describe_transition

__all__ = [
    "EventLog",
    "ItemStore",
    "TransitionEngine",
    "describe_transition",
]
