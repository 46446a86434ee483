"""
Currency -- reference-data snapshot and rate resolution.

Responsibility:
    Holds an immutable snapshot of currencies and exchange rates
    (``RateTable``) and resolves the multiplicative rate that converts an
    amount in one currency into another on a given effective date
    (``CurrencyResolver``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The snapshot is
    built by the caller, either in memory or from the reference tables via
    ``transfer_kernel.services.reference_data_loader``.

Invariants enforced:
    - Same currency resolves to exactly 1 with no lookup.
    - Only *active* rates take part in resolution.
    - The selected rate is the one with the latest ``effective_date`` that
      is on or before the as-of date.
    - Resolution is a pure function of (from, to, as_of, snapshot), so it is
      idempotent within one snapshot.

Failure modes:
    - NoApplicableRateError when no active rate is effective yet.
    - InvalidExchangeRateError when a rate row is zero or negative.

Non-goals:
    - No inverse-rate or triangulated lookups: a rate row is directional.
    - No enforcement of "one active rate per pair" -- that belongs to the
      owner of the reference data.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from transfer_kernel.exceptions import (
    InvalidExchangeRateError,
    NoApplicableRateError,
)

ONE = Decimal("1")


@dataclass(frozen=True)
class Currency:
    """A currency known to the system (externally owned)."""

    id: str
    code: str
    name: str = ""
    decimal_places: int = 2
    is_default: bool = False


@dataclass(frozen=True)
class ExchangeRate:
    """
    One directional conversion factor: ``amount_from * rate = amount_to``.

    Raises:
        InvalidExchangeRateError: if ``rate`` is not positive.
    """

    from_currency_id: str
    to_currency_id: str
    rate: Decimal
    effective_date: date
    is_active: bool = True
    id: UUID | None = None

    def __post_init__(self):
        if self.rate <= 0:
            raise InvalidExchangeRateError(str(self.rate), "rate must be positive")


class RateTable:
    """
    Immutable snapshot of currency reference data.

    Contract:
        Built once from iterables of currencies and rates; never mutated.
        Inactive rates are kept for inspection but ignored by resolution.

    Guarantees:
        - ``rates_for()`` returns rates ordered by effective date (stable for
          equal dates, in the order they were supplied).
        - At most one default currency; a second one is a ValueError.
    """

    def __init__(
        self,
        currencies: Iterable[Currency] = (),
        rates: Iterable[ExchangeRate] = (),
    ):
        self._currencies: dict[str, Currency] = {}
        default_id: str | None = None
        for currency in currencies:
            self._currencies[currency.id] = currency
            if currency.is_default:
                if default_id is not None and default_id != currency.id:
                    raise ValueError(
                        f"More than one default currency: {default_id}, {currency.id}"
                    )
                default_id = currency.id
        self._default_currency_id = default_id

        by_pair: dict[tuple[str, str], list[ExchangeRate]] = {}
        for rate in rates:
            by_pair.setdefault(
                (rate.from_currency_id, rate.to_currency_id), []
            ).append(rate)
        self._rates: dict[tuple[str, str], tuple[ExchangeRate, ...]] = {
            pair: tuple(sorted(items, key=lambda r: r.effective_date))
            for pair, items in by_pair.items()
        }

    @property
    def default_currency_id(self) -> str | None:
        return self._default_currency_id

    def currency(self, currency_id: str) -> Currency | None:
        return self._currencies.get(currency_id)

    def has_currency(self, currency_id: str) -> bool:
        return currency_id in self._currencies

    def rates_for(self, from_currency: str, to_currency: str) -> tuple[ExchangeRate, ...]:
        return self._rates.get((from_currency, to_currency), ())

    def __len__(self) -> int:
        return sum(len(r) for r in self._rates.values())


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class CurrencyResolver:
    """
    Resolves conversion rates against a ``RateTable`` snapshot.

    Side-effect-free: the same (from, to, as_of) always yields the same rate
    for the same snapshot.
    """

    def __init__(self, table: RateTable):
        self._table = table

    @property
    def table(self) -> RateTable:
        return self._table

    @property
    def default_currency_id(self) -> str | None:
        return self._table.default_currency_id

    def resolve(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date | datetime,
    ) -> Decimal:
        """
        Return the rate converting ``from_currency`` amounts into ``to_currency``.

        Raises:
            NoApplicableRateError: if no active rate is effective on ``as_of``.
        """
        if from_currency == to_currency:
            return ONE

        day = _as_date(as_of)
        selected: ExchangeRate | None = None
        for rate in self._table.rates_for(from_currency, to_currency):
            if not rate.is_active:
                continue
            if rate.effective_date > day:
                break
            selected = rate

        if selected is None:
            raise NoApplicableRateError(from_currency, to_currency, day.isoformat())
        return selected.rate

    def to_default(self, currency: str, as_of: date | datetime) -> Decimal:
        """Rate converting ``currency`` into the system default currency."""
        default_id = self._table.default_currency_id
        if default_id is None:
            raise NoApplicableRateError(currency, "<default>", _as_date(as_of).isoformat())
        return self.resolve(currency, default_id, as_of)
