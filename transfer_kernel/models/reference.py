"""
Module: transfer_kernel.models.reference
Responsibility: ORM persistence for currency reference data consumed by the
    currency resolver: currencies and directional exchange rates.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - ``rate`` is a positive exact decimal (checked at insert by
      db/immutability.py and again when the snapshot is built).
    - At most one default currency (enforced by the owner of the data; the
      loader refuses a snapshot with two).

Non-goals:
    - No inverse-rate consistency; reverse directions are separate rows.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from transfer_kernel.db.base import TrackedBase
from transfer_kernel.db.types import PreciseDecimal


class CurrencyModel(TrackedBase):
    """A currency row; ``code`` is the external identifier used everywhere else."""

    __tablename__ = "currencies"

    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    decimal_places: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self):
        from transfer_kernel.domain.currency import Currency

        return Currency(
            id=self.code,
            code=self.code,
            name=self.name,
            decimal_places=self.decimal_places,
            is_default=self.is_default,
        )

    def __repr__(self) -> str:
        marker = " (default)" if self.is_default else ""
        return f"<CurrencyModel {self.code}{marker}>"


class ExchangeRateModel(TrackedBase):
    """
    One directional conversion factor effective from ``effective_date``.

    ``from_amount * rate = to_amount``.
    """

    __tablename__ = "exchange_rates"

    __table_args__ = (
        Index("idx_rate_lookup", "from_currency_id", "to_currency_id", "effective_date"),
    )

    from_currency_id: Mapped[str] = mapped_column(String(100), nullable=False)
    to_currency_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 18), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from transfer_kernel.domain.currency import ExchangeRate

        return ExchangeRate(
            id=self.id,
            from_currency_id=self.from_currency_id,
            to_currency_id=self.to_currency_id,
            rate=self.rate,
            effective_date=self.effective_date,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return (
            f"<ExchangeRateModel {self.from_currency_id}/{self.to_currency_id} "
            f"= {self.rate} from {self.effective_date}>"
        )
