"""Payment ledger for invoices.

amount_paid, balance and status on an invoice are always derived from its
payment history. Every mutation (record, refund, delete, dispute) rewrites
them from the full list of payments rather than adjusting them
incrementally, so a retried or replayed call cannot drift the numbers.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.documents import Invoice, derive_payment_status
from fieldservice_billing.domain.payments import Payment, amount_received
from fieldservice_billing.domain.value_objects import (
    DocumentType,
    InvoiceStatus,
    Money,
    PaymentStatus,
)
from fieldservice_billing.exceptions import (
    DocumentNotFoundError,
    IntegrityViolationError,
    InvalidAmountError,
    InvalidPaymentStateError,
    OverpaymentError,
    PaymentNotFoundError,
)
from fieldservice_billing.logging_config import LogContext, get_logger
from fieldservice_billing.repositories.interfaces import (
    DocumentRepository,
    PaymentRepository,
    SequenceGenerator,
)
from fieldservice_billing.schemas import NotificationTarget, PaymentRequest, parse_input
from fieldservice_billing.services.dispatch import SendDispatcher
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.interfaces import LedgerCheck, LedgerResult
from fieldservice_billing.services.numbering import allocate_number

logger = get_logger(__name__)

NotifyTarget = NotificationTarget | Mapping[str, Any] | None


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PaymentLedgerService:
    def __init__(
        self,
        documents: DocumentRepository,
        payments: PaymentRepository,
        sequence: SequenceGenerator | None = None,
        dispatcher: SendDispatcher | None = None,
        history: HistoryRecorder | None = None,
        guard: OperationGuard | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._documents = documents
        self._payments = payments
        self._sequence = sequence
        self._dispatcher = dispatcher
        self._history = history or HistoryRecorder(None)
        self._settings = settings or get_settings()
        self._guard = guard or OperationGuard(self._settings.operation_timeout_seconds)

    def record_payment(
        self,
        invoice_id: UUID,
        request: PaymentRequest | Mapping[str, Any],
        notify: NotifyTarget = None,
    ) -> LedgerResult:
        """Record a payment against an invoice.

        Replays (same idempotency key, or the same amount, method and
        reference inside the duplicate window) return the payment already on
        file with replayed=True. Amounts above the outstanding balance are
        rejected with OverpaymentError and nothing is written.
        """
        request = parse_input(PaymentRequest, request)
        amount = Money(request.amount)
        if not amount.is_positive:
            raise InvalidAmountError(str(request.amount), "must be greater than zero")
        if amount.has_sub_cent_precision:
            raise InvalidAmountError(str(request.amount), "must be in whole cents")

        with LogContext(invoice_id=str(invoice_id)):
            with self._guard.hold("ledger", invoice_id):
                invoice = self._get_invoice(invoice_id)

                existing = self._find_replay(invoice, amount, request)
                if existing is not None:
                    # Heals an invoice left behind by an earlier failed attempt.
                    with self._payments.atomic():
                        invoice = self._apply_ledger(invoice)
                    logger.info(
                        "payment_replayed",
                        payment_id=str(existing.id),
                        amount=str(amount),
                    )
                    return LedgerResult(invoice=invoice, payment=existing, replayed=True)

                outstanding = self._outstanding(invoice)
                if amount > outstanding:
                    logger.warning(
                        "overpayment_rejected",
                        amount=str(amount),
                        balance=str(outstanding),
                    )
                    raise OverpaymentError(invoice.id, str(amount), str(outstanding))

                number, _ = allocate_number(self._sequence, self._settings, "payment")
                with self._payments.atomic():
                    payment = self._payments.add(
                        Payment(
                            invoice_id=invoice.id,
                            amount=amount,
                            method=request.method,
                            payment_number=number,
                            reference=request.reference,
                            notes=request.notes,
                            payment_date=request.payment_date or _utc_now().date(),
                            idempotency_key=request.idempotency_key,
                        )
                    )
                    invoice = self._apply_ledger(invoice)
                logger.info(
                    "payment_recorded",
                    payment_id=str(payment.id),
                    payment_number=payment.payment_number,
                    amount=str(amount),
                    method=payment.method.value,
                    amount_paid=str(invoice.amount_paid),
                    status=invoice.status.value,
                )
                self._history.payment_recorded(invoice, payment)

        error = self._confirm(
            notify,
            f"Payment received for invoice {invoice.number}",
            f"we received your payment of ${payment.amount} for invoice "
            f"{invoice.number}. Remaining balance: ${invoice.balance}.",
        )
        return LedgerResult(invoice=invoice, payment=payment, notification_error=error)

    def refund_payment(self, payment_id: UUID, notify: NotifyTarget = None) -> LedgerResult:
        """Mark a paid payment as refunded and re-derive the invoice."""
        payment = self._get_payment(payment_id)
        with LogContext(invoice_id=str(payment.invoice_id)):
            with self._guard.hold("ledger", payment.invoice_id):
                payment = self._get_payment(payment_id)
                if not payment.is_refundable:
                    raise InvalidPaymentStateError(payment.id, payment.status.value, "refund")
                invoice = self._get_invoice(payment.invoice_id)

                received = amount_received(list(self._payments.list_by_invoice(invoice.id)))
                if (received - payment.amount).is_negative:
                    raise InvalidAmountError(
                        str(payment.amount), "refund exceeds the amount paid on the invoice"
                    )

                payment.mark_refunded()
                with self._payments.atomic():
                    self._payments.update(payment)
                    invoice = self._apply_ledger(invoice)
                logger.info(
                    "payment_refunded",
                    payment_id=str(payment.id),
                    amount=str(payment.amount),
                    amount_paid=str(invoice.amount_paid),
                    status=invoice.status.value,
                )
                self._history.payment_refunded(invoice, payment)

        error = self._confirm(
            notify,
            f"Refund issued for invoice {invoice.number}",
            f"a refund of ${payment.amount} for invoice {invoice.number} has been issued.",
        )
        return LedgerResult(invoice=invoice, payment=payment, notification_error=error)

    def delete_payment(self, payment_id: UUID) -> LedgerResult:
        payment = self._get_payment(payment_id)
        with LogContext(invoice_id=str(payment.invoice_id)):
            with self._guard.hold("ledger", payment.invoice_id):
                invoice = self._get_invoice(payment.invoice_id)
                with self._payments.atomic():
                    self._payments.delete(payment.id)
                    invoice = self._apply_ledger(invoice)
                logger.info(
                    "payment_deleted",
                    payment_id=str(payment.id),
                    amount=str(payment.amount),
                    amount_paid=str(invoice.amount_paid),
                    status=invoice.status.value,
                )
                self._history.payment_deleted(invoice, payment)
        return LedgerResult(invoice=invoice, payment=payment)

    def dispute_payment(self, payment_id: UUID) -> LedgerResult:
        """Flag a chargeback. The money still counts as received until refunded."""
        payment = self._get_payment(payment_id)
        with self._guard.hold("ledger", payment.invoice_id):
            payment = self._get_payment(payment_id)
            if payment.status != PaymentStatus.PAID:
                raise InvalidPaymentStateError(payment.id, payment.status.value, "dispute")
            invoice = self._get_invoice(payment.invoice_id)
            payment.mark_disputed()
            with self._payments.atomic():
                self._payments.update(payment)
                invoice = self._apply_ledger(invoice)
        logger.info("payment_disputed", payment_id=str(payment.id))
        return LedgerResult(invoice=invoice, payment=payment)

    def recalculate_invoice(self, invoice_id: UUID) -> Invoice:
        with self._guard.hold("ledger", invoice_id):
            return self._apply_ledger(self._get_invoice(invoice_id))

    def verify_ledger(self, invoice_id: UUID, raise_on_mismatch: bool = False) -> LedgerCheck:
        """Compare the stored amount_paid and status with the payment history.

        Mismatches are logged, never corrected here; call recalculate_invoice
        to repair.
        """
        invoice = self._get_invoice(invoice_id)
        derived = amount_received(list(self._payments.list_by_invoice(invoice.id)))
        derived_status = derive_payment_status(invoice.total, derived)
        problems: list[str] = []

        if invoice.amount_paid != derived:
            problems.append(
                f"amount_paid {invoice.amount_paid} differs from payments total {derived}"
            )
        pre_ledger = invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.SENT)
        if pre_ledger:
            if not derived.is_zero:
                problems.append(f"status {invoice.status.value} but payments total {derived}")
            derived_status = invoice.status
        elif invoice.status != derived_status:
            problems.append(
                f"status {invoice.status.value} should be {derived_status.value}"
            )
        if derived > invoice.total:
            problems.append(f"payments total {derived} exceeds invoice total {invoice.total}")
        totals_ok = invoice.totals_match_items()
        if not totals_ok:
            problems.append(f"stored total {invoice.total} differs from line items")

        check = LedgerCheck(
            invoice_id=invoice.id,
            stored_amount_paid=invoice.amount_paid,
            derived_amount_paid=derived,
            stored_status=invoice.status,
            derived_status=derived_status,
            totals_match_items=totals_ok,
            problems=problems,
        )
        if problems:
            logger.error("ledger_mismatch", invoice_id=str(invoice.id), problems=problems)
            if raise_on_mismatch:
                raise IntegrityViolationError(
                    f"Invoice {invoice.number} ledger is inconsistent: {'; '.join(problems)}",
                    context={"invoice_id": str(invoice.id), "problems": problems},
                )
        return check

    def list_payments(self, invoice_id: UUID) -> list[Payment]:
        return list(self._payments.list_by_invoice(invoice_id))

    def _find_replay(
        self, invoice: Invoice, amount: Money, request: PaymentRequest
    ) -> Payment | None:
        if request.idempotency_key:
            existing = self._payments.get_by_idempotency_key(
                invoice.id, request.idempotency_key
            )
            if existing is not None:
                return existing

        window = self._settings.duplicate_payment_window_seconds
        if window <= 0:
            return None
        since = _utc_now() - timedelta(seconds=window)
        for payment in self._payments.list_by_invoice(invoice.id):
            if payment.idempotency_key and request.idempotency_key:
                continue
            if payment.matches_intent(amount, request.method, request.reference, since):
                return payment
        return None

    def _outstanding(self, invoice: Invoice) -> Money:
        received = amount_received(list(self._payments.list_by_invoice(invoice.id)))
        return (invoice.total - received).max_zero()

    def _apply_ledger(self, invoice: Invoice) -> Invoice:
        received = amount_received(list(self._payments.list_by_invoice(invoice.id)))
        if received.is_negative:
            raise IntegrityViolationError(
                f"Invoice {invoice.number} has negative payments total {received}",
                context={"invoice_id": str(invoice.id)},
            )
        invoice.apply_ledger(received)
        self._documents.update(invoice)
        return invoice

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self._documents.get(DocumentType.INVOICE, invoice_id)
        if invoice is None:
            raise DocumentNotFoundError(DocumentType.INVOICE, invoice_id)
        return invoice  # type: ignore[return-value]

    def _get_payment(self, payment_id: UUID) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    def _confirm(self, target: NotifyTarget, subject: str, message: str) -> str | None:
        if target is None:
            return None
        if self._dispatcher is None:
            return "no dispatcher configured"
        try:
            target = parse_input(NotificationTarget, target)
            greeting = f"Hi {target.client_name}, " if target.client_name else "Hello, "
            self._dispatcher.notify(target.channel, target.recipient, subject, greeting + message)
        except Exception as e:
            logger.warning("payment_notification_failed", subject=subject, error=str(e))
            return str(e)
        return None
