import re
from decimal import Decimal

import pytest

from apps.bookings.domain.entities import PaymentStatus
from apps.finances.domain.entities import PaymentMethod, PaymentType, TransactionStatus
from apps.finances.domain.queries import PaymentQuery
from shared.domain.exceptions import (
    InvalidStateTransition,
    NotFound,
    RefundExceedsAvailable,
    ValidationError,
)


@pytest.fixture
def booking(book):
    return book(hours=48, days=3)


def paid(core, booking, amount="165.00"):
    payment = core.record_attempt(booking.id, Decimal(amount))
    return core.mark_completed(payment.id, {"transaction_id": "gw-1", "payment_id": "pi-1"})


def ledger_state(core, booking):
    payments = core.payments_for(PaymentQuery(booking_id=booking.id))
    return [p.snapshot() for p in payments], core.get_booking(booking.id).snapshot()


class TestRecordAttempt:

    def test_attempt_is_pending_with_commission_split(self, core, booking):
        payment = core.record_attempt(booking.id, Decimal("165.00"), method="debit_card", gateway="stripe")

        assert payment.status is TransactionStatus.PENDING
        assert payment.method is PaymentMethod.DEBIT_CARD
        assert payment.currency == "USD"
        assert payment.commission_amount == Decimal("4.95")
        assert payment.net_amount == Decimal("160.05")
        assert re.fullmatch(r"TXN20260302\d{6}", payment.transaction_id)
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PENDING

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_amount_must_be_positive(self, core, booking, amount):
        with pytest.raises(ValidationError):
            core.record_attempt(booking.id, amount)

    def test_currency_must_match_the_booking(self, core, booking):
        with pytest.raises(ValidationError):
            core.record_attempt(booking.id, Decimal("10.00"), currency="EUR")
        with pytest.raises(ValidationError):
            core.record_attempt(booking.id, Decimal("10.00"), currency="XYZ")

    def test_refunds_cannot_be_recorded_directly(self, core, booking):
        with pytest.raises(ValidationError):
            core.record_attempt(booking.id, Decimal("10.00"), type=PaymentType.REFUND)

    def test_deposit_carries_no_commission(self, core, booking):
        deposit = core.record_attempt(booking.id, Decimal("300.00"), type="deposit")

        assert deposit.commission_amount == Decimal("0.00")
        assert deposit.net_amount == Decimal("300.00")

    def test_unknown_booking(self, core):
        with pytest.raises(NotFound):
            core.record_attempt("6f1c1c1e-7a8e-4a5c-9a51-0d7f2f3b9c11", Decimal("10.00"))

    def test_unknown_method(self, core, booking):
        with pytest.raises(ValidationError):
            core.record_attempt(booking.id, Decimal("10.00"), method="cheque")


class TestSettlement:

    def test_completed_payment_marks_booking_paid(self, core, booking):
        payment = paid(core, booking)

        assert payment.status is TransactionStatus.COMPLETED
        assert payment.gateway_transaction_id == "gw-1"
        assert payment.gateway_payment_id == "pi-1"
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PAID

    def test_partial_payment(self, core, booking):
        paid(core, booking, "100.00")

        assert core.get_booking(booking.id).payment_status is PaymentStatus.PARTIAL

    def test_two_partials_settle_the_booking(self, core, booking):
        paid(core, booking, "100.00")
        paid(core, booking, "65.00")

        assert core.get_booking(booking.id).payment_status is PaymentStatus.PAID

    def test_failed_attempt_marks_booking_failed_until_a_new_attempt(self, core, booking):
        attempt = core.record_attempt(booking.id, Decimal("165.00"))
        core.mark_processing(attempt.id)
        failed = core.mark_failed(attempt.id, reason="card_declined")

        assert failed.failure_reason == "card_declined"
        assert core.get_booking(booking.id).payment_status is PaymentStatus.FAILED

        core.record_attempt(booking.id, Decimal("165.00"))
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PENDING

    def test_settled_payments_cannot_change_outcome(self, core, booking):
        payment = paid(core, booking)

        with pytest.raises(InvalidStateTransition):
            core.mark_failed(payment.id, reason="late decline")
        with pytest.raises(InvalidStateTransition):
            core.mark_processing(payment.id)

    def test_failed_payment_cannot_complete(self, core, booking):
        attempt = core.record_attempt(booking.id, Decimal("165.00"))
        core.mark_failed(attempt.id)

        with pytest.raises(InvalidStateTransition):
            core.mark_completed(attempt.id)

    def test_cancelled_transfer_leaves_booking_pending(self, core, booking):
        attempt = core.record_attempt(booking.id, Decimal("165.00"), method="bank_transfer", gateway="bank")

        cancelled = core.ledger.cancel_attempt(attempt.id, reason="transfer never arrived")

        assert cancelled.status is TransactionStatus.CANCELLED
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PENDING

    def test_recompute_is_idempotent(self, core, booking, clock):
        paid(core, booking)
        first = core.recompute_booking_payment_status(booking.id)
        before = core.get_booking(booking.id).snapshot()

        clock.advance(hours=1)
        second = core.recompute_booking_payment_status(booking.id)

        assert first is second is PaymentStatus.PAID
        assert core.get_booking(booking.id).snapshot() == before


class TestRefunds:

    def test_partial_then_full_refund(self, core, booking):
        payment = paid(core, booking)

        first = core.refund(payment.id, Decimal("50.00"), reason="Late pickup")

        assert first.type is PaymentType.REFUND
        assert first.status is TransactionStatus.COMPLETED
        assert first.amount == Decimal("-50.00")
        assert first.original_payment_id == payment.id
        assert first.commission_amount == Decimal("0.00")
        assert core.refundable_amount(payment.id) == Decimal("115.00")
        assert core.ledger.get_payment(payment.id).status is TransactionStatus.PARTIALLY_REFUNDED
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PARTIAL

        core.refund(payment.id)

        assert core.refundable_amount(payment.id) == Decimal("0.00")
        assert core.ledger.get_payment(payment.id).status is TransactionStatus.REFUNDED
        assert core.get_booking(booking.id).payment_status is PaymentStatus.REFUNDED

    def test_refund_above_available_changes_nothing(self, core, booking):
        payment = paid(core, booking)
        core.refund(payment.id, Decimal("100.00"))
        before = ledger_state(core, booking)

        with pytest.raises(RefundExceedsAvailable) as exc_info:
            core.refund(payment.id, Decimal("65.01"))

        assert exc_info.value.context["available"] == "65.00"
        assert ledger_state(core, booking) == before

    def test_refund_amount_must_be_positive(self, core, booking):
        payment = paid(core, booking)

        with pytest.raises(ValidationError):
            core.refund(payment.id, Decimal("0"))

    def test_pending_payment_cannot_be_refunded(self, core, booking):
        attempt = core.record_attempt(booking.id, Decimal("165.00"))

        with pytest.raises(InvalidStateTransition):
            core.refund(attempt.id)
        assert core.refundable_amount(attempt.id) == Decimal("0.00")

    def test_refund_record_cannot_be_refunded(self, core, booking):
        refund = core.refund(paid(core, booking).id, Decimal("10.00"))

        with pytest.raises(InvalidStateTransition):
            core.refund(refund.id)

    def test_refunds_are_listed_by_original_payment(self, core, booking):
        payment = paid(core, booking)
        core.refund(payment.id, Decimal("10.00"))
        core.refund(payment.id, Decimal("20.00"))

        refunds = core.payments_for(PaymentQuery(original_payment_id=payment.id))

        assert sorted(r.amount for r in refunds) == [Decimal("-20.00"), Decimal("-10.00")]

    def test_unknown_and_malformed_payment_ids(self, core):
        with pytest.raises(NotFound):
            core.refund("6f1c1c1e-7a8e-4a5c-9a51-0d7f2f3b9c11")
        with pytest.raises(ValidationError):
            core.refundable_amount("TXN123")
