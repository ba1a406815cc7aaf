"""Tests for the payment ledger - rows, mirrored transactions and derived flags."""
import pytest

from bookingcrm.application.ledger import LEDGER_MIGRATION_KEY, PaymentLedger
from bookingcrm.domain.booking import BookingStatus
from bookingcrm.domain.ledger import (
    LedgerValidationError, PaymentLabel, TransactionCategory, TransactionType,
)
from bookingcrm.infrastructure.db.models import (
    AppMetadata, BookingPaymentModel, TransactionModel, new_id,
)


@pytest.fixture
def ledger(db_session, clock):
    return PaymentLedger(db_session, clock=clock)


class TestRecordPayment:
    def test_deposit_sets_deposit_flag_only(self, ledger, db_session, make_booking):
        booking = make_booking(base_rate=60000, deposit_amount=15000)
        ledger.record_payment(booking.id, 15000, PaymentLabel.DEPOSIT, method="Cash")

        db_session.refresh(booking)
        assert booking.deposit_received is True
        assert booking.payment_received is False
        assert ledger.total_paid(booking.id) == 15000
        assert ledger.balance(booking) == 45000

    def test_mirrors_income_transaction(self, ledger, db_session, make_booking):
        booking = make_booking()
        payment_id = ledger.record_payment(booking.id, 2000, PaymentLabel.TIP, client_alias="Alex")

        txn = db_session.query(TransactionModel).filter(TransactionModel.payment_id == payment_id).one()
        assert txn.type == TransactionType.INCOME
        assert txn.category == TransactionCategory.TIP
        assert txn.amount == 2000
        assert txn.booking_id == booking.id
        assert txn.notes == "Tip - Alex"

    def test_full_payment_sets_payment_flag(self, ledger, db_session, make_booking):
        booking = make_booking(base_rate=50000, extras=10000)
        ledger.record_payment(booking.id, 60000, PaymentLabel.PAYMENT)
        db_session.refresh(booking)
        assert booking.payment_received is True

    def test_rejects_non_positive_amount(self, ledger, make_booking):
        booking = make_booking()
        with pytest.raises(LedgerValidationError, match="greater than zero"):
            ledger.record_payment(booking.id, 0, PaymentLabel.PAYMENT)

    def test_rejects_unknown_booking(self, ledger):
        with pytest.raises(LedgerValidationError, match="not found"):
            ledger.record_payment(new_id(), 100, PaymentLabel.PAYMENT)


class TestRemovePayment:
    def test_removes_row_and_transaction_and_reconciles(self, ledger, db_session, make_booking):
        booking = make_booking(base_rate=60000)
        payment_id = ledger.record_payment(booking.id, 60000, PaymentLabel.PAYMENT)

        assert ledger.remove_payment(payment_id) is True

        db_session.refresh(booking)
        assert booking.payment_received is False
        assert db_session.query(BookingPaymentModel).count() == 0
        assert db_session.query(TransactionModel).count() == 0

    def test_unknown_payment(self, ledger):
        assert ledger.remove_payment(new_id()) is False

    def test_legacy_transaction_matched_by_amount(self, ledger, db_session, make_booking, clock):
        booking = make_booking()
        payment = BookingPaymentModel(
            id=new_id(), booking_id=booking.id, amount=30000,
            label=PaymentLabel.PAYMENT, date=clock(),
        )
        other = TransactionModel(
            id=new_id(), booking_id=booking.id, amount=10000,
            type=TransactionType.INCOME, category=TransactionCategory.BOOKING, date=clock(), notes="",
        )
        legacy = TransactionModel(
            id=new_id(), booking_id=booking.id, amount=30000,
            type=TransactionType.INCOME, category=TransactionCategory.BOOKING, date=clock(), notes="",
        )
        db_session.add_all([payment, other, legacy])
        db_session.commit()

        ledger.remove_payment(payment.id)

        remaining = db_session.query(TransactionModel).all()
        assert [t.id for t in remaining] == [other.id]


class TestCompleteBookingPayment:
    def test_records_outstanding_balance(self, ledger, db_session, make_booking):
        booking = make_booking(base_rate=60000, deposit_amount=15000, payment_method="e-Transfer")
        ledger.record_payment(booking.id, 15000, PaymentLabel.DEPOSIT)

        recorded = ledger.complete_booking_payment(booking)

        assert recorded == 45000
        last = ledger.payments_for(booking.id)[-1]
        assert last.label == PaymentLabel.PAYMENT
        assert last.method == "e-Transfer"
        assert booking.payment_received is True

    def test_overpaid_booking_records_nothing(self, ledger, db_session, make_booking):
        booking = make_booking(base_rate=60000)
        ledger.record_payment(booking.id, 70000, PaymentLabel.PAYMENT)

        assert ledger.complete_booking_payment(booking) == 0
        assert len(ledger.payments_for(booking.id)) == 1
        assert booking.payment_received is True


def test_refund_is_expense(ledger, db_session, make_booking):
    booking = make_booking()
    ledger.record_refund(booking.id, 15000, "Deposit returned - Alex")
    txn = db_session.query(TransactionModel).one()
    assert txn.type == TransactionType.EXPENSE
    assert txn.category == TransactionCategory.REFUND
    assert txn.amount == 15000


class TestLegacyMigration:
    def test_backfills_from_flags(self, ledger, db_session, make_booking):
        done = make_booking(
            status=BookingStatus.COMPLETED, base_rate=60000, deposit_amount=15000,
            deposit_received=True, payment_received=True,
        )
        upcoming = make_booking(deposit_amount=10000, deposit_received=True)
        cancelled = make_booking(status=BookingStatus.CANCELLED, payment_received=True)

        created = ledger.migrate_legacy_flags()

        assert created == 3
        rows = {(p.booking_id, p.label, p.amount) for p in db_session.query(BookingPaymentModel)}
        assert rows == {
            (done.id, PaymentLabel.DEPOSIT, 15000),
            (done.id, PaymentLabel.PAYMENT, 45000),
            (upcoming.id, PaymentLabel.DEPOSIT, 10000),
        }
        assert not any(p.booking_id == cancelled.id for p in db_session.query(BookingPaymentModel))
        # no income is duplicated
        assert db_session.query(TransactionModel).count() == 0
        assert db_session.get(AppMetadata, LEDGER_MIGRATION_KEY) is not None

    def test_runs_once(self, ledger, make_booking):
        make_booking(deposit_amount=10000, deposit_received=True)
        assert ledger.migrate_legacy_flags() == 1
        make_booking(deposit_amount=10000, deposit_received=True)
        assert ledger.migrate_legacy_flags() == 0

    def test_skips_bookings_with_rows(self, ledger, make_booking):
        booking = make_booking(deposit_amount=10000, deposit_received=True)
        ledger.record_payment(booking.id, 10000, PaymentLabel.DEPOSIT)
        assert ledger.migrate_legacy_flags() == 0
