"""
Payment ledger use cases

Every ledger mutation ends with reconcile(), which recomputes the booking's
deposit_received / payment_received flags from the ledger rows. The flags
are never trusted as input.
"""
import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from bookingcrm.domain.booking import BookingStatus, booking_total
from bookingcrm.domain.ledger import (
    LedgerValidationError, PaymentLabel, TransactionCategory, TransactionType,
    derive_flags, income_category,
)
from bookingcrm.infrastructure.db.models import (
    AppMetadata, BookingModel, BookingPaymentModel, TransactionModel, new_id,
)
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)

LEDGER_MIGRATION_KEY = "payments_ledger_migrated"


class PaymentLedger:
    """
    Append-only record of money received against bookings

    Usage:
        ledger = PaymentLedger(db)
        payment_id = ledger.record_payment(booking.id, 15000, PaymentLabel.DEPOSIT)
    """

    def __init__(self, db: Session, clock: Clock = local_now):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def payments_for(self, booking_id: str) -> list[BookingPaymentModel]:
        return (
            self.db.query(BookingPaymentModel)
            .filter(BookingPaymentModel.booking_id == booking_id)
            .order_by(BookingPaymentModel.date.asc())
            .all()
        )

    def total_paid(self, booking_id: str) -> int:
        """Sum of all ledger amounts for the booking, in cents."""
        total = (
            self.db.query(func.coalesce(func.sum(BookingPaymentModel.amount), 0))
            .filter(BookingPaymentModel.booking_id == booking_id)
            .scalar()
        )
        return int(total or 0)

    def deposits_paid(self, booking_id: str) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(BookingPaymentModel.amount), 0))
            .filter(
                BookingPaymentModel.booking_id == booking_id,
                BookingPaymentModel.label == PaymentLabel.DEPOSIT,
            )
            .scalar()
        )
        return int(total or 0)

    def balance(self, booking: BookingModel) -> int:
        """Outstanding amount; negative when overpaid (tips)."""
        return self.total_of(booking) - self.total_paid(booking.id)

    @staticmethod
    def total_of(booking: BookingModel) -> int:
        return booking_total(booking.base_rate, booking.extras, booking.travel_fee)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_payment(
        self,
        booking_id: str,
        amount: int,
        label: PaymentLabel,
        method: str | None = None,
        notes: str | None = None,
        client_alias: str | None = None,
        paid_at: datetime | None = None,
    ) -> str:
        """
        Append a payment to the ledger

        Args:
            booking_id: booking the money was received for
            amount: amount in cents, must be positive
            label: Deposit / Payment / Tip / Adjustment / Cancellation Fee
            method: payment method (optional)
            notes: free text (optional)
            client_alias: used in the mirrored transaction's notes
            paid_at: payment date (default: now)

        Returns:
            payment_id

        Raises:
            LedgerValidationError: unknown booking or non-positive amount
        """
        label = PaymentLabel(label)
        if amount <= 0:
            raise LedgerValidationError("Payment amount must be greater than zero")

        with self.store.atomic():
            booking = self.store.get(BookingModel, booking_id)
            if booking is None:
                raise LedgerValidationError(f"Booking {booking_id} not found")

            paid_at = paid_at or self.clock()
            payment = self.store.put(BookingPaymentModel(
                id=new_id(),
                booking_id=booking_id,
                amount=amount,
                method=method,
                label=label,
                date=paid_at,
                notes=notes,
            ))

            self.store.put(TransactionModel(
                id=new_id(),
                booking_id=booking_id,
                payment_id=payment.id,
                amount=amount,
                type=TransactionType.INCOME,
                category=income_category(label),
                payment_method=method,
                date=paid_at,
                notes=f"{label.value} - {client_alias or 'client'}",
            ))

            self.reconcile(booking)

        logger.info("Recorded %s of %d cents for booking %s", label.value, amount, booking_id)
        return payment.id

    def remove_payment(self, payment_id: str) -> bool:
        """
        Delete a ledger row together with its mirrored income transaction

        Returns:
            False if the payment does not exist
        """
        with self.store.atomic():
            payment = self.store.get(BookingPaymentModel, payment_id)
            if payment is None:
                return False

            mirrored = self._mirrored_transaction(payment)
            if mirrored is not None:
                self.store.delete(mirrored)
            booking_id = payment.booking_id
            self.store.delete(payment)

            booking = self.store.get(BookingModel, booking_id)
            if booking is not None:
                self.reconcile(booking)

        logger.info("Removed payment %s from booking %s", payment_id, booking_id)
        return True

    def _mirrored_transaction(self, payment: BookingPaymentModel) -> TransactionModel | None:
        linked = self.store.first(TransactionModel, "payment_id", payment.id)
        if linked is not None:
            return linked
        # Rows written before transactions carried payment_id: match on booking + amount
        return (
            self.db.query(TransactionModel)
            .filter(
                TransactionModel.booking_id == payment.booking_id,
                TransactionModel.payment_id.is_(None),
                TransactionModel.type == TransactionType.INCOME,
                TransactionModel.amount == payment.amount,
            )
            .first()
        )

    def reconcile(self, booking: BookingModel) -> None:
        """Recompute the convenience flags from ledger rows."""
        rows = (
            self.db.query(BookingPaymentModel.label, BookingPaymentModel.amount)
            .filter(BookingPaymentModel.booking_id == booking.id)
            .all()
        )
        deposit_received, payment_received = derive_flags(rows, self.total_of(booking))
        booking.deposit_received = deposit_received
        booking.payment_received = payment_received
        self.db.flush()

    def complete_booking_payment(self, booking: BookingModel, client_alias: str | None = None) -> int:
        """
        Settle a finished booking

        Records a Payment for whatever is still outstanding, then marks the
        booking paid regardless (free-form discounts can leave the recorded
        total above what the client actually owed).

        Returns:
            Amount recorded, in cents (0 if nothing was outstanding)
        """
        with self.store.atomic():
            remaining = self.balance(booking)
            recorded = 0
            if remaining > 0:
                self.record_payment(
                    booking.id,
                    remaining,
                    PaymentLabel.PAYMENT,
                    method=booking.payment_method,
                    client_alias=client_alias,
                )
                recorded = remaining
            booking.payment_received = True
            self.db.flush()
        return recorded

    def record_refund(self, booking_id: str, amount: int, notes: str) -> str:
        """Expense offsetting deposit income (deposit returned or credited)."""
        with self.store.atomic():
            txn = self.store.put(TransactionModel(
                id=new_id(),
                booking_id=booking_id,
                amount=amount,
                type=TransactionType.EXPENSE,
                category=TransactionCategory.REFUND,
                date=self.clock(),
                notes=notes,
            ))
        return txn.id

    # ------------------------------------------------------------------
    # One-time backfill
    # ------------------------------------------------------------------

    def migrate_legacy_flags(self) -> int:
        """
        Backfill ledger rows from the legacy boolean flags

        Bookings that already have ledger rows are left alone. No income
        transactions are written: the legacy flow recorded those already.
        Runs at most once per installation.

        Returns:
            Number of ledger rows created
        """
        if self.store.get(AppMetadata, LEDGER_MIGRATION_KEY) is not None:
            return 0

        created = 0
        with self.store.atomic():
            for b in self.store.all(BookingModel):
                if self.store.count(BookingPaymentModel, "booking_id", b.id) > 0:
                    continue

                deposit_paid = 0
                if b.deposit_received and b.deposit_amount > 0:
                    self.store.put(BookingPaymentModel(
                        id=new_id(),
                        booking_id=b.id,
                        amount=b.deposit_amount,
                        method=b.deposit_method,
                        label=PaymentLabel.DEPOSIT,
                        date=b.confirmed_at or b.created_at,
                    ))
                    deposit_paid = b.deposit_amount
                    created += 1

                if b.payment_received and b.status in (BookingStatus.COMPLETED, BookingStatus.IN_PROGRESS):
                    remaining = self.total_of(b) - deposit_paid
                    if remaining > 0:
                        self.store.put(BookingPaymentModel(
                            id=new_id(),
                            booking_id=b.id,
                            amount=remaining,
                            method=b.payment_method,
                            label=PaymentLabel.PAYMENT,
                            date=b.completed_at or self.clock(),
                        ))
                        created += 1

            self.store.put(AppMetadata(key=LEDGER_MIGRATION_KEY, value="1", updated_at=self.clock()))

        logger.info("Payment ledger migration created %d row(s)", created)
        return created
