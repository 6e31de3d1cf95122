"""Tests for the invoice payment ledger."""

from collections.abc import Callable
from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from structlog.testing import capture_logs

from fieldservice_billing.domain.documents import Invoice
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.domain.history import HistoryEntryType
from fieldservice_billing.domain.value_objects import (
    DeliveryChannel,
    DocumentType,
    InvoiceStatus,
    Money,
    PaymentMethod,
    PaymentStatus,
)
from fieldservice_billing.exceptions import (
    DocumentNotFoundError,
    IntegrityViolationError,
    InvalidAmountError,
    InvalidPaymentStateError,
    OverpaymentError,
    PaymentNotFoundError,
    PersistenceError,
    ValidationError,
)
from fieldservice_billing.repositories.sqlite import (
    SQLiteDocumentRepository,
    SQLiteHistoryRepository,
    SQLitePaymentRepository,
)
from fieldservice_billing.schemas import PaymentRequest
from fieldservice_billing.services.dispatch import SendDispatcher
from fieldservice_billing.services.payments import PaymentLedgerService

InvoiceFactory = Callable[..., Invoice]


def pay(amount: str, method: PaymentMethod = PaymentMethod.CASH, **kwargs) -> PaymentRequest:
    return PaymentRequest(amount=Decimal(amount), method=method, **kwargs)


def money(value: str) -> Money:
    return Money(Decimal(value))


class TestRecordPayment:
    def test_partial_then_full_payment(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice("200.00")

        first = ledger.record_payment(invoice.id, pay("120"))

        assert first.invoice.amount_paid == money("120")
        assert first.invoice.balance == money("80")
        assert first.invoice.status == InvoiceStatus.PARTIAL

        second = ledger.record_payment(invoice.id, pay("80", PaymentMethod.CREDIT_CARD))

        assert second.invoice.amount_paid == money("200")
        assert second.invoice.balance.is_zero
        assert second.invoice.status == InvoiceStatus.PAID
        assert second.invoice.paid_at is not None

    def test_overpayment_rejected_and_nothing_written(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")

        with pytest.raises(OverpaymentError) as exc_info:
            ledger.record_payment(invoice.id, pay("250"))

        assert isinstance(exc_info.value, ValidationError)
        assert list(payment_repo.list_by_invoice(invoice.id)) == []
        stored = document_repo.get(DocumentType.INVOICE, invoice.id)
        assert stored.amount_paid.is_zero  # type: ignore[union-attr]
        assert stored.status == InvoiceStatus.DRAFT  # type: ignore[union-attr]

    def test_exact_balance_accepted(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice("200.00")
        ledger.record_payment(invoice.id, pay("150"))

        with pytest.raises(OverpaymentError):
            ledger.record_payment(invoice.id, pay("50.01", PaymentMethod.CHECK))

        result = ledger.record_payment(invoice.id, pay("50.00", PaymentMethod.CHECK))
        assert result.invoice.status == InvoiceStatus.PAID

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount_rejected(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory, amount: str
    ) -> None:
        invoice = saved_invoice()

        with pytest.raises(ValidationError):
            ledger.record_payment(invoice.id, {"amount": amount, "method": "cash"})

    def test_sub_cent_amount_rejected(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()

        with pytest.raises(ValidationError):
            ledger.record_payment(invoice.id, {"amount": "10.005", "method": "cash"})

    def test_missing_invoice(self, ledger: PaymentLedgerService) -> None:
        with pytest.raises(DocumentNotFoundError):
            ledger.record_payment(uuid4(), pay("10"))

    def test_payment_number_assigned(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()

        result = ledger.record_payment(invoice.id, pay("10"))

        assert result.payment.payment_number == "PAY-0001"

    def test_records_history(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        history_repo: SQLiteHistoryRepository,
    ) -> None:
        invoice = saved_invoice()

        ledger.record_payment(invoice.id, pay("40", PaymentMethod.E_TRANSFER))

        entries = [
            entry
            for entry in history_repo.list_by_job("job-100")
            if entry.entry_type == HistoryEntryType.PAYMENT
        ]
        assert len(entries) == 1
        assert entries[0].title == "Payment of $40.00 received"


class TestIdempotency:
    def test_same_idempotency_key_replays(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")

        first = ledger.record_payment(invoice.id, pay("120", idempotency_key="tap-1"))
        second = ledger.record_payment(invoice.id, pay("120", idempotency_key="tap-1"))

        assert second.replayed is True
        assert second.payment.id == first.payment.id
        assert second.invoice.amount_paid == money("120")
        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 1

    def test_identical_retry_inside_window_replays(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")

        ledger.record_payment(invoice.id, pay("60", reference="CHQ-101"))
        retry = ledger.record_payment(invoice.id, pay("60", reference="CHQ-101"))

        assert retry.replayed is True
        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 1

    def test_different_keys_are_different_payments(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")

        ledger.record_payment(invoice.id, pay("60", idempotency_key="a"))
        ledger.record_payment(invoice.id, pay("60", idempotency_key="b"))

        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 2

    def test_window_disabled(
        self,
        document_repo: SQLiteDocumentRepository,
        payment_repo: SQLitePaymentRepository,
        saved_invoice: InvoiceFactory,
        settings,
    ) -> None:
        settings.duplicate_payment_window_seconds = 0
        service = PaymentLedgerService(document_repo, payment_repo, settings=settings)
        invoice = saved_invoice("200.00")

        service.record_payment(invoice.id, pay("60"))
        service.record_payment(invoice.id, pay("60"))

        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 2


class TestRefund:
    def test_full_refund_returns_invoice_to_unpaid(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice("200.00")
        paid = ledger.record_payment(invoice.id, pay("200"))
        assert paid.invoice.status == InvoiceStatus.PAID

        result = ledger.refund_payment(paid.payment.id)

        assert result.payment.status == PaymentStatus.REFUNDED
        assert result.invoice.amount_paid.is_zero
        assert result.invoice.balance == money("200")
        assert result.invoice.status == InvoiceStatus.UNPAID
        assert result.invoice.paid_at is None

    def test_refund_is_inverse_of_record(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice("200.00")
        ledger.record_payment(invoice.id, pay("50"))
        before = ledger.recalculate_invoice(invoice.id)
        before_state = (before.amount_paid, before.balance, before.status)

        recorded = ledger.record_payment(invoice.id, pay("70", PaymentMethod.DEBIT_CARD))
        after = ledger.refund_payment(recorded.payment.id).invoice

        assert (after.amount_paid, after.balance, after.status) == before_state

    def test_refund_twice_rejected(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()
        paid = ledger.record_payment(invoice.id, pay("100"))
        ledger.refund_payment(paid.payment.id)

        with pytest.raises(InvalidPaymentStateError):
            ledger.refund_payment(paid.payment.id)

    def test_refund_missing_payment(self, ledger: PaymentLedgerService) -> None:
        with pytest.raises(PaymentNotFoundError):
            ledger.refund_payment(uuid4())

    def test_refund_records_history(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        history_repo: SQLiteHistoryRepository,
    ) -> None:
        invoice = saved_invoice()
        paid = ledger.record_payment(invoice.id, pay("100"))

        ledger.refund_payment(paid.payment.id)

        types = [entry.entry_type for entry in history_repo.list_by_job("job-100")]
        assert HistoryEntryType.REFUND in types


class TestDeleteAndDispute:
    def test_delete_payment_recomputes(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        first = ledger.record_payment(invoice.id, pay("120"))
        ledger.record_payment(invoice.id, pay("80", PaymentMethod.CHECK))

        result = ledger.delete_payment(first.payment.id)

        assert result.invoice.amount_paid == money("80")
        assert result.invoice.status == InvoiceStatus.PARTIAL
        assert payment_repo.get(first.payment.id) is None

    def test_disputed_payment_still_counts(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice("200.00")
        paid = ledger.record_payment(invoice.id, pay("200"))

        result = ledger.dispute_payment(paid.payment.id)

        assert result.payment.status == PaymentStatus.DISPUTED
        assert result.invoice.status == InvoiceStatus.PAID

    def test_disputed_payment_cannot_be_disputed_again(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()
        paid = ledger.record_payment(invoice.id, pay("10"))
        ledger.dispute_payment(paid.payment.id)

        with pytest.raises(InvalidPaymentStateError):
            ledger.dispute_payment(paid.payment.id)

    def test_refunded_payment_cannot_be_disputed(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()
        paid = ledger.record_payment(invoice.id, pay("10"))
        ledger.refund_payment(paid.payment.id)

        with pytest.raises(InvalidPaymentStateError) as exc_info:
            ledger.dispute_payment(paid.payment.id)

        assert exc_info.value.context["status"] == "refunded"


class TestVerifyLedger:
    def test_consistent_ledger(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()
        ledger.record_payment(invoice.id, pay("30"))

        check = ledger.verify_ledger(invoice.id)

        assert check.is_consistent
        assert check.derived_amount_paid == money("30")

    def test_detects_drift_without_correcting(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice()
        ledger.record_payment(invoice.id, pay("30"))
        stored = document_repo.get(DocumentType.INVOICE, invoice.id)
        stored.amount_paid = money("99")  # type: ignore[union-attr]
        document_repo.update(stored)  # type: ignore[arg-type]

        with capture_logs() as logs:
            check = ledger.verify_ledger(invoice.id)

        assert not check.is_consistent
        assert any(log["event"] == "ledger_mismatch" for log in logs)
        unchanged = document_repo.get(DocumentType.INVOICE, invoice.id)
        assert unchanged.amount_paid == money("99")  # type: ignore[union-attr]

        with pytest.raises(IntegrityViolationError):
            ledger.verify_ledger(invoice.id, raise_on_mismatch=True)

        repaired = ledger.recalculate_invoice(invoice.id)
        assert repaired.amount_paid == money("30")


class TestNotifications:
    def test_confirmation_sent(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory, gateway
    ) -> None:
        invoice = saved_invoice()

        result = ledger.record_payment(
            invoice.id,
            pay("25"),
            notify={"channel": "sms", "recipient": "(416) 555-0100", "client_name": "Sam"},
        )

        assert result.notified
        assert gateway.sent[-1]["to"] == "+14165550100"
        assert "$25.00" in gateway.sent[-1]["body"]

    def test_notification_failure_keeps_payment(
        self,
        document_repo: SQLiteDocumentRepository,
        payment_repo: SQLitePaymentRepository,
        saved_invoice: InvoiceFactory,
        settings,
    ) -> None:
        failing_gateway = MagicMock()
        failing_gateway.send_email.side_effect = ConnectionError("relay down")
        dispatcher = SendDispatcher(document_repo, failing_gateway, settings=settings)
        service = PaymentLedgerService(
            document_repo, payment_repo, dispatcher=dispatcher, settings=settings
        )
        invoice = saved_invoice()

        result = service.record_payment(
            invoice.id,
            pay("25"),
            notify={"channel": DeliveryChannel.EMAIL, "recipient": "sam@example.com"},
        )

        assert not result.notified
        assert "relay down" in result.notification_error  # type: ignore[operator]
        assert result.invoice.amount_paid == money("25")
        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 1

    def test_invalid_recipient_does_not_undo_payment(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()

        result = ledger.record_payment(
            invoice.id, pay("25"), notify={"channel": "email", "recipient": "not-an-email"}
        )

        assert result.notification_error is not None
        assert result.invoice.amount_paid == money("25")

    def test_unvalidated_sub_cent_request_rejected(
        self, ledger: PaymentLedgerService, saved_invoice: InvoiceFactory
    ) -> None:
        invoice = saved_invoice()
        request = PaymentRequest.model_construct(
            amount=Decimal("0.001"), method=PaymentMethod.CASH
        )

        with pytest.raises(InvalidAmountError):
            ledger.record_payment(invoice.id, request)


def _failing_invoice_write():
    return PersistenceError("Database write failed: disk I/O error")


class TestPartialWriteFailures:
    def test_failed_invoice_write_rolls_back_payment(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")

        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.record_payment(invoice.id, pay("200"))

        assert list(payment_repo.list_by_invoice(invoice.id)) == []
        assert ledger.verify_ledger(invoice.id).is_consistent

    def test_no_overpayment_after_failed_write(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.record_payment(invoice.id, pay("200"))

        result = ledger.record_payment(invoice.id, pay("150"))
        assert result.invoice.amount_paid == money("150")

        with pytest.raises(OverpaymentError):
            ledger.record_payment(invoice.id, pay("100", PaymentMethod.CHECK))

        check = ledger.verify_ledger(invoice.id)
        assert check.is_consistent
        assert check.derived_amount_paid == money("150")

    def test_balance_check_uses_payment_history(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        # A payment on file that the stored invoice row never picked up.
        payment_repo.add(
            Payment(invoice_id=invoice.id, amount=money("200"), method=PaymentMethod.CHECK)
        )

        with pytest.raises(OverpaymentError) as exc_info:
            ledger.record_payment(invoice.id, pay("150"))

        assert exc_info.value.context["balance"] == "0.00"
        assert len(list(payment_repo.list_by_invoice(invoice.id))) == 1

    def test_retry_with_same_key_after_failure(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.record_payment(invoice.id, pay("120", idempotency_key="ticket-9"))

        result = ledger.record_payment(invoice.id, pay("120", idempotency_key="ticket-9"))

        assert not result.replayed
        assert result.invoice.amount_paid == money("120")
        assert result.invoice.status == InvoiceStatus.PARTIAL

    def test_replay_repairs_stale_invoice(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        payment_repo.add(
            Payment(
                invoice_id=invoice.id,
                amount=money("120"),
                method=PaymentMethod.CASH,
                idempotency_key="ticket-9",
            )
        )

        result = ledger.record_payment(invoice.id, pay("120", idempotency_key="ticket-9"))

        assert result.replayed
        assert result.invoice.amount_paid == money("120")
        assert result.invoice.status == InvoiceStatus.PARTIAL
        stored = document_repo.get(DocumentType.INVOICE, invoice.id)
        assert stored.amount_paid == money("120")  # type: ignore[union-attr]
        assert ledger.verify_ledger(invoice.id).is_consistent

    def test_failed_refund_leaves_payment_paid(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        paid = ledger.record_payment(invoice.id, pay("80"))

        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.refund_payment(paid.payment.id)

        assert payment_repo.get(paid.payment.id).status == PaymentStatus.PAID  # type: ignore[union-attr]
        assert ledger.verify_ledger(invoice.id).is_consistent

        refunded = ledger.refund_payment(paid.payment.id)
        assert refunded.invoice.amount_paid.is_zero

    def test_failed_delete_keeps_payment(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        paid = ledger.record_payment(invoice.id, pay("80"))

        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.delete_payment(paid.payment.id)

        assert payment_repo.get(paid.payment.id) is not None
        assert ledger.verify_ledger(invoice.id).is_consistent

    def test_failed_dispute_leaves_payment_paid(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
        document_repo: SQLiteDocumentRepository,
    ) -> None:
        invoice = saved_invoice("200.00")
        paid = ledger.record_payment(invoice.id, pay("80"))

        with patch.object(document_repo, "update", side_effect=_failing_invoice_write()):
            with pytest.raises(PersistenceError):
                ledger.dispute_payment(paid.payment.id)

        assert payment_repo.get(paid.payment.id).status == PaymentStatus.PAID  # type: ignore[union-attr]


class TestVerifyLedgerOverpaid:
    def test_flags_payments_above_total(
        self,
        ledger: PaymentLedgerService,
        saved_invoice: InvoiceFactory,
        payment_repo: SQLitePaymentRepository,
    ) -> None:
        invoice = saved_invoice("100.00")
        ledger.record_payment(invoice.id, pay("100"))
        payment_repo.add(
            Payment(invoice_id=invoice.id, amount=money("40"), method=PaymentMethod.CHECK)
        )

        check = ledger.verify_ledger(invoice.id)

        assert not check.is_consistent
        assert any("exceeds invoice total" in problem for problem in check.problems)
