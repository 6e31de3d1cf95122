"""Job history recording.

History is a side channel: a failure to write an entry is logged and
dropped, it never fails the operation that produced it.
"""

from typing import Any

from fieldservice_billing.domain.documents import Document, Invoice
from fieldservice_billing.domain.history import HistoryEntry, HistoryEntryType
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.logging_config import get_logger
from fieldservice_billing.repositories.interfaces import HistorySink

logger = get_logger(__name__)

_METHOD_LABELS = {
    "cash": "Cash",
    "check": "Check",
    "credit_card": "Credit card",
    "debit_card": "Debit card",
    "bank_transfer": "Bank transfer",
    "e_transfer": "E-transfer",
    "other": "Other",
}


class HistoryRecorder:
    def __init__(self, sink: HistorySink | None) -> None:
        self._sink = sink

    def record(
        self,
        job_id: str | None,
        entry_type: HistoryEntryType,
        title: str,
        description: str,
        meta: dict[str, Any] | None = None,
    ) -> HistoryEntry | None:
        if self._sink is None or not job_id:
            return None
        try:
            return self._sink.record(
                job_id, entry_type.value, title, description, meta or {}
            )
        except Exception as e:
            logger.warning(
                "history_record_failed",
                job_id=job_id,
                entry_type=entry_type.value,
                error=str(e),
            )
            return None

    def payment_recorded(self, invoice: Invoice, payment: Payment) -> None:
        method = _METHOD_LABELS.get(payment.method.value, payment.method.value)
        self.record(
            invoice.job_id,
            HistoryEntryType.PAYMENT,
            f"Payment of ${payment.amount} received",
            f"{method} payment {payment.payment_number} applied to invoice {invoice.number}",
            {
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "amount": str(payment.amount),
                "method": payment.method.value,
                "reference": payment.reference,
            },
        )

    def payment_refunded(self, invoice: Invoice, payment: Payment) -> None:
        self.record(
            invoice.job_id,
            HistoryEntryType.REFUND,
            f"Refund of ${payment.amount} issued",
            f"Payment {payment.payment_number} on invoice {invoice.number} refunded",
            {
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "amount": str(payment.amount),
            },
        )

    def payment_deleted(self, invoice: Invoice, payment: Payment) -> None:
        self.record(
            invoice.job_id,
            HistoryEntryType.PAYMENT,
            f"Payment of ${payment.amount} removed",
            f"Payment {payment.payment_number} deleted from invoice {invoice.number}",
            {"invoice_id": str(invoice.id), "payment_id": str(payment.id)},
        )

    def document_saved(self, document: Document, created: bool) -> None:
        kind = document.document_type.value
        entry_type = (
            HistoryEntryType.ESTIMATE if kind == "estimate" else HistoryEntryType.INVOICE
        )
        verb = "created" if created else "updated"
        self.record(
            document.job_id,
            entry_type,
            f"{kind.capitalize()} {document.number} {verb}",
            f"Total ${document.total}",
            {"document_id": str(document.id), "total": str(document.total)},
        )

    def estimate_converted(self, estimate: Document, invoice: Invoice) -> None:
        self.record(
            invoice.job_id or estimate.job_id,
            HistoryEntryType.ESTIMATE_CONVERSION,
            f"Estimate {estimate.number} converted to invoice",
            f"Invoice {invoice.number} created for ${invoice.total}",
            {"estimate_id": str(estimate.id), "invoice_id": str(invoice.id)},
        )

    def document_sent(self, document: Document, channel: str, recipient: str) -> None:
        kind = document.document_type.value
        self.record(
            document.job_id,
            HistoryEntryType.COMMUNICATION,
            f"{kind.capitalize()} {document.number} sent by {channel}",
            f"Sent to {recipient}",
            {"document_id": str(document.id), "channel": channel, "recipient": recipient},
        )
