"""Read-only selectors for the tracking kernel."""

from tracking_kernel.selectors.history_selector import HistorySelector

__all__ = ["HistorySelector"]
