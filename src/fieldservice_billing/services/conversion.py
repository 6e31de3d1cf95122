"""Estimate to invoice conversion.

Conversion is keyed on the estimate id: converting the same estimate twice
returns the invoice made the first time. The two writes involved (create the
invoice, stamp the estimate) are ordered so that a failure between them is
either compensated or repaired on the next attempt. An estimate past its
valid_until date is marked expired and can no longer be converted.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.documents import Estimate, Invoice
from fieldservice_billing.domain.value_objects import (
    DocumentType,
    EstimateStatus,
    InvoiceStatus,
    Money,
)
from fieldservice_billing.exceptions import (
    DocumentNotFoundError,
    IntegrityViolationError,
    InvalidDocumentStateError,
)
from fieldservice_billing.logging_config import LogContext, get_logger
from fieldservice_billing.repositories.interfaces import (
    DocumentRepository,
    SequenceGenerator,
)
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.interfaces import ConversionResult
from fieldservice_billing.services.numbering import allocate_number

logger = get_logger(__name__)


class DocumentConversionService:
    def __init__(
        self,
        repository: DocumentRepository,
        sequence: SequenceGenerator | None = None,
        history: HistoryRecorder | None = None,
        guard: OperationGuard | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._sequence = sequence
        self._history = history or HistoryRecorder(None)
        self._settings = settings or get_settings()
        self._guard = guard or OperationGuard(self._settings.operation_timeout_seconds)

    def convert_estimate_to_invoice(self, estimate_id: UUID) -> ConversionResult:
        with LogContext(estimate_id=str(estimate_id)):
            with self._guard.hold("convert", estimate_id):
                estimate = self._get_estimate(estimate_id)

                existing = self._existing_invoice(estimate)
                if existing is not None:
                    if estimate.converted_invoice_id != existing.id:
                        self._stamp(estimate, existing)
                        logger.warning("conversion_stamp_repaired", invoice_id=str(existing.id))
                    logger.info("conversion_reused", invoice_id=str(existing.id))
                    return ConversionResult(
                        invoice=existing, estimate_id=estimate.id, created=False
                    )

                if estimate.is_expired():
                    self._expire(estimate)
                    raise InvalidDocumentStateError(
                        estimate.id, EstimateStatus.EXPIRED.value, "convert"
                    )

                invoice = self._create_invoice(estimate)
                try:
                    self._stamp(estimate, invoice)
                except Exception as e:
                    self._compensate(invoice, e)
                    raise

        logger.info(
            "estimate_converted",
            estimate_id=str(estimate.id),
            invoice_id=str(invoice.id),
            invoice_number=invoice.number,
            total=str(invoice.total),
        )
        self._history.estimate_converted(estimate, invoice)
        return ConversionResult(invoice=invoice, estimate_id=estimate.id, created=True)

    def expire_estimates(self, as_of: date | None = None) -> list[Estimate]:
        """Mark every open estimate past its valid_until date as expired."""
        as_of = as_of or date.today()
        expired: list[Estimate] = []
        for estimate in self._repository.list_expired_estimates(as_of):
            # Unstamped conversions are left for repair_unlinked_conversions.
            if self._repository.get_invoice_for_estimate(estimate.id) is not None:
                continue
            with self._guard.hold("convert", estimate.id):
                self._expire(estimate)
            expired.append(estimate)
        if expired:
            logger.info("estimates_expired", count=len(expired), as_of=as_of.isoformat())
        return expired

    def find_unlinked_conversions(self) -> list[tuple[UUID, Invoice]]:
        """Invoices made from an estimate that was never stamped as converted."""
        unlinked: list[tuple[UUID, Invoice]] = []
        for invoice in self._repository.list_converted_invoices():
            if invoice.estimate_id is None:
                continue
            estimate = self._repository.get(DocumentType.ESTIMATE, invoice.estimate_id)
            if estimate is None:
                logger.warning(
                    "conversion_source_missing",
                    invoice_id=str(invoice.id),
                    estimate_id=str(invoice.estimate_id),
                )
                continue
            if estimate.converted_invoice_id != invoice.id:  # type: ignore[attr-defined]
                unlinked.append((estimate.id, invoice))
        if unlinked:
            logger.warning("unlinked_conversions_found", count=len(unlinked))
        return unlinked

    def repair_unlinked_conversions(self) -> int:
        repaired = 0
        for estimate_id, invoice in self.find_unlinked_conversions():
            estimate = self._get_estimate(estimate_id)
            self._stamp(estimate, invoice)
            repaired += 1
            logger.info(
                "conversion_stamp_repaired",
                estimate_id=str(estimate_id),
                invoice_id=str(invoice.id),
            )
        return repaired

    def _existing_invoice(self, estimate: Estimate) -> Invoice | None:
        if estimate.converted_invoice_id is not None:
            linked = self._repository.get(DocumentType.INVOICE, estimate.converted_invoice_id)
            if linked is not None:
                return linked  # type: ignore[return-value]
            logger.warning(
                "converted_invoice_missing",
                invoice_id=str(estimate.converted_invoice_id),
            )
        return self._repository.get_invoice_for_estimate(estimate.id)

    def _create_invoice(self, estimate: Estimate) -> Invoice:
        number, provisional = allocate_number(
            self._sequence, self._settings, DocumentType.INVOICE
        )
        issue_date = date.today()
        invoice = Invoice(
            number=number,
            items=[item.clone() for item in estimate.items],
            tax_rate=estimate.tax_rate,
            notes=estimate.notes,
            client_id=estimate.client_id,
            job_id=estimate.job_id,
            number_is_provisional=provisional,
            status=InvoiceStatus.DRAFT,
            amount_paid=Money.zero(),
            estimate_id=estimate.id,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self._settings.invoice_due_days),
        )
        invoice.recalculate()
        return self._repository.add(invoice)  # type: ignore[return-value]

    def _expire(self, estimate: Estimate) -> None:
        if estimate.status == EstimateStatus.EXPIRED:
            return
        estimate.mark_expired()
        self._repository.update(estimate)
        logger.info(
            "estimate_expired",
            estimate_id=str(estimate.id),
            valid_until=estimate.valid_until.isoformat() if estimate.valid_until else None,
        )

    def _stamp(self, estimate: Estimate, invoice: Invoice) -> None:
        estimate.mark_converted(invoice.id)
        self._repository.update(estimate)

    def _compensate(self, invoice: Invoice, cause: Exception) -> None:
        logger.error(
            "conversion_stamp_failed",
            invoice_id=str(invoice.id),
            error=str(cause),
        )
        try:
            self._repository.delete(DocumentType.INVOICE, invoice.id)
        except Exception as e:
            logger.critical(
                "conversion_compensation_failed",
                invoice_id=str(invoice.id),
                error=str(e),
            )
            raise IntegrityViolationError(
                f"Invoice {invoice.number} was created but its estimate could not be "
                "stamped or the invoice removed",
                context={"invoice_id": str(invoice.id), "estimate_id": str(invoice.estimate_id)},
            ) from e
        logger.info("conversion_compensated", invoice_id=str(invoice.id))

    def _get_estimate(self, estimate_id: UUID) -> Estimate:
        estimate = self._repository.get(DocumentType.ESTIMATE, estimate_id)
        if estimate is None:
            raise DocumentNotFoundError(DocumentType.ESTIMATE, estimate_id)
        return estimate  # type: ignore[return-value]
