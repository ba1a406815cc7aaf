"""
Payment ledger domain - labels, transaction categories and flag derivation.

Ledger rows are the source of truth for money received against a booking.
The booking's deposit_received / payment_received booleans are caches of
these facts and are always recomputed from the rows.
"""
from enum import Enum
from typing import Iterable


class PaymentLabel(str, Enum):
    DEPOSIT = "Deposit"
    PAYMENT = "Payment"
    TIP = "Tip"
    ADJUSTMENT = "Adjustment"
    CANCELLATION_FEE = "Cancellation Fee"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    E_TRANSFER = "e-Transfer"
    CRYPTO = "Crypto"
    VENMO = "Venmo"
    CASH_APP = "Cash App"
    ZELLE = "Zelle"
    GIFT_CARD = "Gift Card"
    OTHER = "Other"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategory(str, Enum):
    BOOKING = "booking"
    TIP = "tip"
    GIFT = "gift"
    SUPPLIES = "supplies"
    TRAVEL = "travel"
    ADVERTISING = "advertising"
    CLOTHING = "clothing"
    HEALTH = "health"
    RENT = "rent"
    PHONE = "phone"
    REFUND = "refund"
    OTHER = "other"


class LedgerValidationError(ValueError):
    """Invalid payment for the ledger"""
    pass


def income_category(label: PaymentLabel) -> TransactionCategory:
    """Category of the income transaction mirroring a ledger payment."""
    if PaymentLabel(label) == PaymentLabel.TIP:
        return TransactionCategory.TIP
    return TransactionCategory.BOOKING


def derive_flags(
    labels_and_amounts: Iterable[tuple[PaymentLabel, int]],
    total: int,
) -> tuple[bool, bool]:
    """
    Compute (deposit_received, payment_received) from ledger rows.

    Amounts are integer cents so the comparison against the total is exact.
    """
    paid = 0
    has_deposit = False
    for label, amount in labels_and_amounts:
        paid += amount
        if PaymentLabel(label) == PaymentLabel.DEPOSIT:
            has_deposit = True
    return has_deposit, paid >= total
