"""Read-only currency reference data for the workflow service."""

from __future__ import annotations

from typing import Protocol

from transfer_kernel.domain.currency import RateTable


class ExchangeRateSource(Protocol):
    def rate_table(self) -> RateTable:
        """Snapshot of currencies and rates, taken once per operation."""
        ...


class StaticRateSource:
    """Serves a fixed table.  ``ReferenceDataLoader`` is the database-backed source."""

    def __init__(self, table: RateTable):
        self._table = table

    def rate_table(self) -> RateTable:
        return self._table
