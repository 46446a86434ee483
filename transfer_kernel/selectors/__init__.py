"""Read-only selectors."""

from transfer_kernel.selectors.store_request_selector import (
    HistoryEntry,
    Page,
    StatusStats,
    StoreRequestFilter,
    StoreRequestSelector,
    StoreRequestSummary,
)

__all__ = [
    "HistoryEntry",
    "Page",
    "StatusStats",
    "StoreRequestFilter",
    "StoreRequestSelector",
    "StoreRequestSummary",
]
