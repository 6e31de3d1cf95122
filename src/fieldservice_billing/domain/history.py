"""Job history and delivery log domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from fieldservice_billing.domain.value_objects import (
    CommunicationStatus,
    DeliveryChannel,
    DocumentType,
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class HistoryEntryType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    ESTIMATE = "estimate"
    INVOICE = "invoice"
    ESTIMATE_CONVERSION = "estimate-conversion"
    COMMUNICATION = "communication"


@dataclass
class HistoryEntry:
    job_id: str | None
    entry_type: HistoryEntryType
    title: str
    description: str
    id: UUID = field(default_factory=uuid4)
    meta: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utc_now)


@dataclass
class DocumentCommunication:
    """One delivery attempt of a document, successful or not."""

    document_type: DocumentType
    document_id: UUID
    channel: DeliveryChannel
    recipient: str
    status: CommunicationStatus
    id: UUID = field(default_factory=uuid4)
    provider_message_id: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utc_now)

    @property
    def succeeded(self) -> bool:
        return self.status == CommunicationStatus.SENT
