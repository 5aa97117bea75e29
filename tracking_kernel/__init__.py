"""
Tracking Kernel - Status Transition Engine

An append-only item lifecycle tracker with:
- Fixed role-based transition policy
- Atomic status update + audit event writes
- Conditional (compare-and-swap) status updates under concurrency
- Immutable, linear per-item event history
"""

__version__ = "0.1.0"
