"""Unit tests for funding domain models."""

from decimal import Decimal

import pytest

from card_provisioning.models.exceptions import ValidationError
from card_provisioning.models.funding import (
    FundingAttempt,
    FundingEvent,
    Provider,
    ProviderStatus,
    ProviderStatusResult,
    format_amount,
    from_minor_units,
    make_event_key,
    to_decimal,
    to_minor_units,
)


class TestProvider:
    def test_parse_is_case_insensitive(self):
        assert Provider.parse("MTN") is Provider.MTN
        assert Provider.parse("AirtelTigo") is Provider.AIRTELTIGO
        assert Provider.parse(Provider.CRYPTO) is Provider.CRYPTO

    def test_parse_unknown_provider(self):
        with pytest.raises(ValidationError) as exc_info:
            Provider.parse("paypal")

        assert "Unknown provider: paypal" in str(exc_info.value)
        assert "Available providers:" in str(exc_info.value)

    def test_mobile_money_rails(self):
        assert Provider.MTN.is_mobile_money
        assert Provider.VODAFONE.is_mobile_money
        assert not Provider.CRYPTO.is_mobile_money


class TestAmounts:
    def test_to_decimal_avoids_float_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("50") == Decimal("50")

    @pytest.mark.parametrize("value", ["abc", True])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)

    def test_minor_units_use_currency_exponent(self):
        assert to_minor_units(Decimal("50"), "USD") == 5000
        assert to_minor_units(Decimal("1000"), "XOF") == 1000
        assert to_minor_units(Decimal("0.5"), "ETH") == 500000

    def test_minor_units_truncate(self):
        assert to_minor_units(Decimal("10.999"), "USD") == 1099

    def test_from_minor_units(self):
        assert from_minor_units(5000, "USD") == Decimal("50.00")

    def test_format_amount(self):
        assert format_amount(Decimal("50"), "usd") == "50.00 USD"
        assert format_amount(1000, "XOF") == "1,000 XOF"


class TestEventKey:
    def test_joins_natural_identifiers(self):
        assert make_event_key("mtn", "tx-998") == "mtn-tx-998"

    def test_is_normalized(self):
        assert make_event_key("MTN", " TX-998 ") == make_event_key("mtn", "tx-998")

    def test_skips_empty_parts(self):
        assert make_event_key("crypto", None, "", "0xabc") == "crypto-0xabc"

    def test_requires_an_identifier(self):
        with pytest.raises(ValidationError):
            make_event_key(None, "  ")


class TestFundingAttempt:
    def test_create_normalizes_values(self):
        attempt = FundingAttempt.create(
            reference=" ref-1 ", amount="50", currency="usd", provider="mtn"
        )

        assert attempt.reference == "ref-1"
        assert attempt.amount == Decimal("50")
        assert attempt.currency == "USD"
        assert attempt.provider is Provider.MTN
        assert attempt.display_amount == "50.00 USD"

    @pytest.mark.parametrize(
        "reference,amount,currency,message",
        [
            ("", 50, "USD", "reference is required"),
            ("ref", 0, "USD", "amount must be greater than 0"),
            ("ref", -5, "USD", "amount must be greater than 0"),
            ("ref", None, "USD", "amount must be greater than 0"),
            ("ref", 50, "", "Invalid currency code"),
            ("ref", 50, "US-D", "Invalid currency code"),
        ],
    )
    def test_create_rejects_invalid_attempts(self, reference, amount, currency, message):
        with pytest.raises(ValidationError, match=message):
            FundingAttempt.create(reference=reference, amount=amount, currency=currency)

    def test_create_rejects_non_finite_amount(self):
        with pytest.raises(ValidationError):
            FundingAttempt.create(reference="ref", amount="NaN", currency="USD")


class TestFundingEvent:
    def test_rejects_missing_key(self):
        with pytest.raises(ValidationError):
            FundingEvent(
                event_key="",
                user_address_or_id="u1",
                amount=100,
                currency="USD",
                funding_type="mtn",
                source_tx_id="tx",
            )

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError):
            FundingEvent(
                event_key="k",
                user_address_or_id="u1",
                amount=0,
                currency="USD",
                funding_type="mtn",
                source_tx_id="tx",
            )

    def test_belongs_to_is_case_insensitive(self):
        event = FundingEvent(
            event_key="k",
            user_address_or_id="0xABCDEF",
            amount=100,
            currency="USD",
            funding_type="crypto",
            source_tx_id="tx",
        )

        assert event.belongs_to(None, "0xabcdef")
        assert not event.belongs_to("someone-else", None)

    def test_confirmed_attempt_prefers_financial_transaction_id(self):
        attempt = FundingAttempt.create(
            reference="ref-1", amount=Decimal("100"), currency="GHS", provider="mtn"
        )
        result = ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference="ref-1",
            transaction_id="ref-1",
            financial_transaction_id="998",
        )

        event = FundingEvent.from_confirmed_attempt(attempt, result, "user-1", card_type="Gold")

        assert event.event_key == "mtn-998"
        assert event.amount == 10000
        assert event.currency == "GHS"
        assert event.funding_type == "mtn"
        assert event.source_tx_id == "998"
        assert event.user_address_or_id == "user-1"
        assert event.card_type == "Gold"

    def test_confirmed_attempt_key_is_stable_across_checks(self):
        attempt = FundingAttempt.create(
            reference="crypto_abc", amount=50, currency="USD", provider="crypto"
        )
        result = ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference="crypto_abc",
            transaction_id="crypto_1234",
        )

        first = FundingEvent.from_confirmed_attempt(attempt, result, "user-1")
        second = FundingEvent.from_confirmed_attempt(attempt, result, "user-1")

        assert first.event_key == second.event_key == "crypto-crypto_1234"

    def test_confirmed_attempt_uses_provider_amount(self):
        attempt = FundingAttempt.create(
            reference="ref-1", amount=10000, currency="GHS", provider="mtn"
        )
        result = ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference="ref-1",
            financial_transaction_id="998",
            amount=Decimal("1"),
            currency="GHS",
        )

        event = FundingEvent.from_confirmed_attempt(attempt, result, "user-1")

        assert event.amount == 100
        assert event.currency == "GHS"

    def test_confirmed_attempt_uses_provider_currency(self):
        attempt = FundingAttempt.create(
            reference="ref-1", amount=100, currency="GHS", provider="mtn"
        )
        result = ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference="ref-1",
            amount=Decimal("25.5"),
            currency="eur",
        )

        event = FundingEvent.from_confirmed_attempt(attempt, result, "user-1")

        assert event.amount == 2550
        assert event.currency == "EUR"

    def test_confirmed_attempt_without_provider_amount(self):
        attempt = FundingAttempt.create(
            reference="0xabc", amount=50, currency="USD", provider="crypto"
        )
        result = ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL, reference="0xabc", transaction_id="0xabc"
        )

        event = FundingEvent.from_confirmed_attempt(attempt, result, "user-1")

        assert event.amount == 5000
        assert event.currency == "USD"
