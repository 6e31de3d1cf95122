from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from fieldservice_billing.domain.documents import Document, Invoice
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.domain.value_objects import (
    DeliveryChannel,
    InvoiceStatus,
    Money,
)


class BuilderStep(str, Enum):
    ITEMS = "items"
    UPSELL = "upsell"
    SEND = "send"
    PREVIEW = "preview"

    @property
    def is_terminal(self) -> bool:
        return self in (BuilderStep.SEND, BuilderStep.PREVIEW)


class CloseOutcome(str, Enum):
    DISCARDED = "discarded"
    CLOSED = "closed"
    CONFIRMATION_REQUIRED = "confirmation_required"
    SAVED_AS_DRAFT = "saved_as_draft"


@dataclass
class DeliveryReceipt:
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class SendResult:
    document: Document
    channel: DeliveryChannel
    recipient: str
    first_send: bool
    message_id: str | None = None


@dataclass
class LedgerResult:
    """Outcome of a ledger mutation.

    The financial change is final once a LedgerResult exists; a failed
    confirmation only shows up in notification_error.
    """

    invoice: Invoice
    payment: Payment
    replayed: bool = False
    notification_error: str | None = None

    @property
    def notified(self) -> bool:
        return self.notification_error is None


@dataclass
class ConversionResult:
    invoice: Invoice
    estimate_id: UUID
    created: bool


@dataclass
class LedgerCheck:
    invoice_id: UUID
    stored_amount_paid: Money
    derived_amount_paid: Money
    stored_status: InvoiceStatus
    derived_status: InvoiceStatus
    totals_match_items: bool
    problems: list[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.problems


class NotificationGateway(ABC):
    """Email/SMS transport. Returns a receipt, raises only on transport failure."""

    @abstractmethod
    def send_email(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        pass

    @abstractmethod
    def send_sms(self, to: str, body: str) -> DeliveryReceipt:
        pass
