"""Tests for account type, subtype and usage classification."""

import pytest

from konto.services.classifier import (
    AccountType,
    PassthroughType,
    Subtype,
    Usage,
    classify_subtype,
    classify_type,
    classify_usage,
)


class TestClassifyType:
    """Provider codes first, then name keywords."""

    @pytest.mark.parametrize("code,expected", [
        ("checking", AccountType.CHECKING),
        ("card", AccountType.CHECKING),
        ("livreta", AccountType.SAVINGS),
        ("pel", AccountType.SAVINGS),
        ("loan", AccountType.LOAN),
        ("pea", AccountType.INVESTMENT),
        ("lifeinsurance", AccountType.INVESTMENT),
        ("realEstate", AccountType.INVESTMENT),
    ])
    def test_known_provider_codes(self, code, expected):
        assert classify_type(code, "whatever") == expected

    def test_unknown_code_is_passed_through(self):
        result = classify_type("joint", "Compte joint")
        assert result == PassthroughType("joint")
        assert result.value == "joint"

    def test_provider_code_wins_over_name(self):
        assert classify_type("checking", "Livret A") == AccountType.CHECKING

    @pytest.mark.parametrize("name,expected", [
        ("Livret A", AccountType.SAVINGS),
        ("Compte Epargne Logement", AccountType.SAVINGS),
        ("PEA Bourse", AccountType.INVESTMENT),
        ("Assurance vie", AccountType.INVESTMENT),
        ("Prêt immobilier", AccountType.LOAN),
        ("Mortgage", AccountType.LOAN),
        ("Compte courant", AccountType.CHECKING),
    ])
    def test_name_fallback(self, name, expected):
        assert classify_type(None, name) == expected

    def test_savings_keyword_checked_before_loan(self):
        # "épargne" and "crédit" both present
        assert classify_type(None, "Crédit épargne") == AccountType.SAVINGS

    def test_empty_inputs(self):
        assert classify_type(None, None) == AccountType.CHECKING
        assert classify_type("", "") == AccountType.CHECKING


class TestClassifySubtype:

    @pytest.mark.parametrize("provider", ["blockchain", "coinbase", "binance"])
    def test_crypto_provider_always_crypto(self, provider):
        assert classify_subtype(AccountType.INVESTMENT, provider, "PEA gold stock") == Subtype.CRYPTO

    def test_accepts_plain_string_type(self):
        assert classify_subtype("investment", "coinbase", "") == Subtype.CRYPTO

    def test_non_investment_has_no_subtype(self):
        assert classify_subtype(AccountType.CHECKING, "coinbase", "Bitcoin") is None
        assert classify_subtype(PassthroughType("joint"), None, "PEA") is None
        assert classify_subtype(None, None, None) is None

    def test_name_keywords(self):
        assert classify_subtype(AccountType.INVESTMENT, "powens", "PEA Boursorama") == Subtype.STOCKS
        assert classify_subtype(AccountType.INVESTMENT, "powens", "Compte Or physique") == Subtype.GOLD
        assert classify_subtype(AccountType.INVESTMENT, "powens", "Assurance vie") == Subtype.OTHER


class TestClassifyUsage:

    def test_company_means_professional_without_provider_usage(self):
        assert classify_usage(None, 42) == Usage.PROFESSIONAL

    def test_company_id_zero_is_still_a_company(self):
        assert classify_usage(None, 0) == Usage.PROFESSIONAL

    def test_nothing_means_personal(self):
        assert classify_usage(None, None) == Usage.PERSONAL

    def test_explicit_provider_usage_wins(self):
        assert classify_usage("professional", None) == Usage.PROFESSIONAL
        assert classify_usage("private", 42) == Usage.PERSONAL
