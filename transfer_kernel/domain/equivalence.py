"""
Currency equivalence for store request lines and headers.

Responsibility:
    Picks the exchange rate frozen onto each line and the header, and
    computes line cost, line equivalent amount (system default currency) and
    the header total value.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Rate lookups go
    through a ``CurrencyResolver`` snapshot passed in by the caller.

Invariants enforced:
    - All arithmetic is exact ``Decimal``; nothing is rounded here.
    - Explicit rates must be positive.
    - The header total is in the lines' own currency only when every line
      shares one currency; otherwise it is the sum of default-currency
      equivalents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol

from transfer_kernel.domain.currency import CurrencyResolver
from transfer_kernel.exceptions import InvalidExchangeRateError

ZERO = Decimal("0")


class PricedLine(Protocol):
    requested_quantity: Decimal
    approved_quantity: Decimal | None
    unit_cost: Decimal
    currency_id: str
    exchange_rate: Decimal


def _check_rate(rate: Decimal) -> Decimal:
    if rate <= 0:
        raise InvalidExchangeRateError(str(rate), "rate must be positive")
    return rate


def resolve_header_rate(
    currency_id: str,
    request_date: date,
    resolver: CurrencyResolver,
    explicit_rate: Decimal | None = None,
) -> Decimal:
    """Rate from the header currency to the system default currency."""
    if explicit_rate is not None:
        return _check_rate(explicit_rate)
    return resolver.to_default(currency_id, request_date)


def resolve_line_rate(
    line_currency_id: str,
    header_currency_id: str,
    header_rate: Decimal,
    request_date: date,
    resolver: CurrencyResolver,
    explicit_rate: Decimal | None = None,
) -> Decimal:
    """Rate frozen onto a line when it is created or edited in draft.

    Explicit rate first, then the header rate for lines in the header
    currency, then a lookup to the default currency on the request date.
    """
    if explicit_rate is not None:
        return _check_rate(explicit_rate)
    if line_currency_id == header_currency_id:
        return header_rate
    return resolver.to_default(line_currency_id, request_date)


def effective_quantity(line: PricedLine) -> Decimal:
    """Approved quantity once recorded, requested quantity before that."""
    if line.approved_quantity is not None:
        return line.approved_quantity
    return line.requested_quantity


def line_total_cost(line: PricedLine) -> Decimal:
    return effective_quantity(line) * line.unit_cost


def line_equivalent_amount(line: PricedLine) -> Decimal:
    return effective_quantity(line) * line.unit_cost * line.exchange_rate


@dataclass(frozen=True)
class ValueSummary:
    """Header totals.

    ``currency_id`` is the shared line currency when ``total_value`` is in
    that currency, or None when the total is in the default currency.
    """

    total_items: int
    total_value: Decimal
    currency_id: str | None


def summarize(lines: Iterable[PricedLine]) -> ValueSummary:
    lines = list(lines)
    currencies = {line.currency_id for line in lines}
    if len(currencies) <= 1:
        total = sum((line_total_cost(line) for line in lines), ZERO)
        currency = next(iter(currencies)) if currencies else None
        return ValueSummary(len(lines), total, currency)
    total = sum((line_equivalent_amount(line) for line in lines), ZERO)
    return ValueSummary(len(lines), total, None)
