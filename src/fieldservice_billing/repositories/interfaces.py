from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import date
from typing import Any
from uuid import UUID

from fieldservice_billing.domain.documents import Document, Estimate, Invoice
from fieldservice_billing.domain.history import DocumentCommunication, HistoryEntry
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.domain.value_objects import DocumentType


class DocumentRepository(ABC):
    """Estimates and invoices, each with their line items.

    (document_type, number) is unique. add() returns the stored record so
    callers never re-query to discover what was created.
    """

    @abstractmethod
    def add(self, document: Document) -> Document:
        pass

    @abstractmethod
    def get(self, document_type: DocumentType, document_id: UUID) -> Document | None:
        pass

    @abstractmethod
    def get_by_number(
        self, document_type: DocumentType, number: str
    ) -> Document | None:
        pass

    @abstractmethod
    def update(self, document: Document) -> None:
        pass

    @abstractmethod
    def delete(self, document_type: DocumentType, document_id: UUID) -> None:
        pass

    @abstractmethod
    def get_invoice_for_estimate(self, estimate_id: UUID) -> Invoice | None:
        pass

    @abstractmethod
    def list_converted_invoices(self) -> Iterable[Invoice]:
        pass

    @abstractmethod
    def list_expired_estimates(self, as_of: date) -> Iterable[Estimate]:
        """Open (draft or sent) estimates whose valid_until is before `as_of`."""

    @abstractmethod
    def list_provisional(self, document_type: DocumentType) -> Iterable[Document]:
        pass


class PaymentRepository(ABC):
    @abstractmethod
    def add(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    def get(self, payment_id: UUID) -> Payment | None:
        pass

    @abstractmethod
    def get_by_idempotency_key(
        self, invoice_id: UUID, idempotency_key: str
    ) -> Payment | None:
        pass

    @abstractmethod
    def list_by_invoice(self, invoice_id: UUID) -> Iterable[Payment]:
        pass

    @abstractmethod
    def update(self, payment: Payment) -> None:
        pass

    @abstractmethod
    def delete(self, payment_id: UUID) -> None:
        pass

    @abstractmethod
    def atomic(self) -> AbstractContextManager[None]:
        """Group payment and invoice writes so they commit or fail together."""
        pass


class HistoryRepository(ABC):
    @abstractmethod
    def add(self, entry: HistoryEntry) -> None:
        pass

    @abstractmethod
    def list_by_job(self, job_id: str) -> Iterable[HistoryEntry]:
        pass


class CommunicationRepository(ABC):
    @abstractmethod
    def add(self, communication: DocumentCommunication) -> None:
        pass

    @abstractmethod
    def list_by_document(
        self, document_type: DocumentType, document_id: UUID
    ) -> Iterable[DocumentCommunication]:
        pass


class HistorySink(ABC):
    """Fire-and-forget job history. Callers never let a failure here escape."""

    @abstractmethod
    def record(
        self,
        job_id: str | None,
        entry_type: str,
        title: str,
        description: str,
        meta: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        pass


class SequenceGenerator(ABC):
    """Authoritative, collision-free, increasing document numbers."""

    @abstractmethod
    def next_number(self, document_type: str) -> str:
        pass
