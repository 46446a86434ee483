"""
Reference Data Loader - builds the currency snapshot for the pure layer.

The ReferenceDataLoader queries the ``currencies`` and ``exchange_rates``
tables and returns a ``RateTable`` that the domain resolves rates against.
This keeps database access out of the pure domain layer, and makes every
operation resolve rates from a single consistent snapshot.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from transfer_kernel.domain.currency import CurrencyResolver, RateTable
from transfer_kernel.logging_config import get_logger
from transfer_kernel.models.reference import CurrencyModel, ExchangeRateModel

logger = get_logger("services.reference_data_loader")


class ReferenceDataLoader:
    """
    Loads currency reference data from the database.

    Also usable as the workflow service's ``ExchangeRateSource``: it exposes
    ``rate_table()`` which returns a fresh snapshot per call.
    """

    def __init__(self, session: Session):
        self._session = session

    def rate_table(self, include_inactive: bool = False) -> RateTable:
        """Snapshot every currency and (by default) every active rate."""
        currencies = [
            row.to_dto()
            for row in self._session.execute(
                select(CurrencyModel).order_by(CurrencyModel.code)
            ).scalars()
        ]

        stmt = select(ExchangeRateModel).order_by(
            ExchangeRateModel.from_currency_id,
            ExchangeRateModel.to_currency_id,
            ExchangeRateModel.effective_date,
            ExchangeRateModel.created_at,
        )
        if not include_inactive:
            stmt = stmt.where(ExchangeRateModel.is_active.is_(True))
        rates = [row.to_dto() for row in self._session.execute(stmt).scalars()]

        table = RateTable(currencies, rates)
        logger.debug(
            "rate_table_loaded",
            extra={
                "currency_count": len(currencies),
                "rate_count": len(rates),
                "default_currency": table.default_currency_id,
            },
        )
        return table

    def resolver(self) -> CurrencyResolver:
        return CurrencyResolver(self.rate_table())
