"""Tests for currency normalization."""

from decimal import Decimal

import pytest

from konto.services.currency import CurrencyNormalizer


@pytest.fixture
def normalizer():
    return CurrencyNormalizer(rates={("USD", "EUR"): Decimal("0.90")})


def test_same_currency_is_identity(normalizer):
    assert normalizer.to_display(Decimal("123.45"), "EUR", "EUR") == Decimal("123.45")


def test_missing_currency_defaults_to_eur(normalizer):
    assert normalizer.to_display(Decimal("10"), None, "EUR") == Decimal("10")


def test_direct_rate(normalizer):
    assert normalizer.to_display(Decimal("100"), "USD", "EUR") == Decimal("90.00")


def test_inverse_rate(normalizer):
    converted = normalizer.to_display(Decimal("90"), "EUR", "USD")
    assert converted.quantize(Decimal("0.01")) == Decimal("100.00")


def test_unknown_pair_is_unconvertible_not_zero(normalizer):
    assert normalizer.to_display(Decimal("100"), "GBP", "EUR") is None


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        CurrencyNormalizer(rates={("USD", "EUR"): Decimal("0")})


def test_sum_sets_unconvertible_amounts_aside(normalizer):
    result = normalizer.sum_to_display(
        [
            (Decimal("100"), "EUR", "account:1"),
            (Decimal("100"), "USD", "account:2"),
            (Decimal("100"), "GBP", "account:3"),
        ],
        "EUR",
    )
    assert result.total == Decimal("190.00")
    assert len(result.unconvertible) == 1
    assert result.unconvertible[0].reference == "account:3"
    assert result.unconvertible[0].currency == "GBP"


def test_rates_loaded_from_database(db_session, make_rate):
    make_rate("EUR", "CHF", "0.95")
    normalizer = CurrencyNormalizer.from_db(db_session)
    assert normalizer.to_display(Decimal("100"), "EUR", "CHF") == Decimal("95.00")
