"""
Tests for currency reference data and rate resolution.

Rates are picked as the latest active rate effective on or before the
as-of date; same-currency conversion is always exactly 1.
"""

from datetime import date, datetime, UTC
from decimal import Decimal

import pytest

from transfer_kernel.domain.currency import Currency, CurrencyResolver, ExchangeRate, RateTable
from transfer_kernel.exceptions import InvalidExchangeRateError, NoApplicableRateError

from tests.conftest import EUR, IQD, USD


class TestRateTable:
    def test_default_currency(self, rate_table):
        assert rate_table.default_currency_id == IQD

    def test_two_defaults_rejected(self):
        with pytest.raises(ValueError, match="More than one default currency"):
            RateTable([
                Currency(id="A", code="A", is_default=True),
                Currency(id="B", code="B", is_default=True),
            ])

    def test_rates_ordered_by_effective_date(self):
        table = RateTable(rates=[
            ExchangeRate("X", "Y", Decimal("3"), date(2024, 3, 1)),
            ExchangeRate("X", "Y", Decimal("1"), date(2024, 1, 1)),
            ExchangeRate("X", "Y", Decimal("2"), date(2024, 2, 1)),
        ])
        assert [r.rate for r in table.rates_for("X", "Y")] == [
            Decimal("1"), Decimal("2"), Decimal("3"),
        ]
        assert len(table) == 3

    def test_unknown_pair_has_no_rates(self, rate_table):
        assert rate_table.rates_for(IQD, USD) == ()

    def test_non_positive_rate_rejected(self):
        with pytest.raises(InvalidExchangeRateError):
            ExchangeRate(USD, IQD, Decimal("0"), date(2024, 1, 1))
        with pytest.raises(InvalidExchangeRateError):
            ExchangeRate(USD, IQD, Decimal("-2"), date(2024, 1, 1))


class TestResolve:
    def test_same_currency_is_one(self, resolver):
        assert resolver.resolve(USD, USD, date(1990, 1, 1)) == Decimal("1")

    def test_latest_effective_rate_wins(self, resolver):
        assert resolver.resolve(USD, IQD, date(2024, 1, 1)) == Decimal("2500")

    def test_rate_effective_on_the_day_applies(self, resolver):
        assert resolver.resolve(USD, IQD, date(2023, 6, 1)) == Decimal("2500")
        assert resolver.resolve(USD, IQD, date(2023, 5, 31)) == Decimal("1450")

    def test_future_rate_ignored(self, resolver):
        assert resolver.resolve(USD, IQD, date(2024, 12, 31)) == Decimal("2500")
        assert resolver.resolve(USD, IQD, date(2025, 1, 1)) == Decimal("9999")

    def test_inactive_rate_ignored(self, resolver):
        assert resolver.resolve(EUR, IQD, date(2024, 1, 1)) == Decimal("2700")

    def test_datetime_as_of_uses_its_date(self, resolver):
        as_of = datetime(2023, 6, 1, 0, 30, tzinfo=UTC)
        assert resolver.resolve(USD, IQD, as_of) == Decimal("2500")

    def test_no_rate_before_first_effective_date(self, resolver):
        with pytest.raises(NoApplicableRateError) as exc_info:
            resolver.resolve(USD, IQD, date(2022, 12, 31))
        assert exc_info.value.code == "NO_APPLICABLE_RATE"
        assert exc_info.value.from_currency == USD
        assert exc_info.value.to_currency == IQD

    def test_no_inverse_lookup(self, resolver):
        with pytest.raises(NoApplicableRateError):
            resolver.resolve(IQD, USD, date(2024, 1, 1))

    def test_resolution_is_idempotent(self, resolver):
        first = resolver.resolve(USD, IQD, date(2024, 1, 1))
        assert all(
            resolver.resolve(USD, IQD, date(2024, 1, 1)) == first for _ in range(5)
        )


class TestToDefault:
    def test_converts_into_default_currency(self, resolver):
        assert resolver.to_default(EUR, date(2024, 1, 1)) == Decimal("2700")

    def test_default_currency_to_itself(self, resolver):
        assert resolver.to_default(IQD, date(2000, 1, 1)) == Decimal("1")

    def test_no_default_currency(self):
        resolver = CurrencyResolver(RateTable([Currency(id=USD, code=USD)]))
        with pytest.raises(NoApplicableRateError) as exc_info:
            resolver.to_default(USD, date(2024, 1, 1))
        assert exc_info.value.to_currency == "<default>"
