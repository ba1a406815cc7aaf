"""
Tests for money and amount validation helpers
"""
from decimal import Decimal

import pytest

from bookingcrm.domain.ledger import PaymentLabel, TransactionCategory, derive_flags, income_category
from bookingcrm.utils.money import cents_to_str, format_money, from_cents, to_cents
from bookingcrm.utils.validation import (
    validate_and_normalize_amount, validate_decimal_amount, validate_time_of_day,
)


def test_to_cents():
    assert to_cents("600") == 60000
    assert to_cents("450.5") == 45050
    assert to_cents(Decimal("0.10")) == 10
    assert to_cents(0.1) == 10


def test_from_cents_and_wire_format():
    assert from_cents(45000) == Decimal("450.00")
    assert cents_to_str(45050) == "450.50"


def test_format_money():
    assert format_money(120000) == "$1,200"
    assert format_money(-5000) == "-$50"
    assert format_money(12345, "EUR", decimals=2) == "€123.45"
    assert format_money(100000, "CHF") == "1,000 CHF"


def test_amount_validation():
    assert validate_decimal_amount("100,50") == (True, None)
    assert validate_decimal_amount("100.505") == (False, "At most 2 decimal places")
    assert validate_decimal_amount("abc") == (False, "Invalid amount")
    assert validate_and_normalize_amount(" 99,9 ") == "99.9"
    with pytest.raises(ValueError):
        validate_and_normalize_amount("1.234")


def test_time_of_day_validation():
    assert validate_time_of_day("09:30") == "09:30"
    with pytest.raises(ValueError):
        validate_time_of_day("24:00")


def test_income_category():
    assert income_category(PaymentLabel.TIP) == TransactionCategory.TIP
    assert income_category(PaymentLabel.DEPOSIT) == TransactionCategory.BOOKING
    assert income_category(PaymentLabel.CANCELLATION_FEE) == TransactionCategory.BOOKING


def test_derive_flags():
    assert derive_flags([], 60000) == (False, False)
    assert derive_flags([(PaymentLabel.DEPOSIT, 15000)], 60000) == (True, False)
    assert derive_flags([(PaymentLabel.DEPOSIT, 15000), (PaymentLabel.PAYMENT, 45000)], 60000) == (True, True)
    assert derive_flags([(PaymentLabel.PAYMENT, 60000)], 60000) == (False, True)
