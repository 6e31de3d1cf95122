from fieldservice_billing.services.builder import DocumentBuilder
from fieldservice_billing.services.conversion import DocumentConversionService
from fieldservice_billing.services.dispatch import (
    SendDispatcher,
    normalize_phone,
    validate_recipient,
)
from fieldservice_billing.services.drafts import (
    DocumentDraft,
    reconcile_provisional_numbers,
)
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.interfaces import (
    BuilderStep,
    CloseOutcome,
    ConversionResult,
    DeliveryReceipt,
    LedgerCheck,
    LedgerResult,
    NotificationGateway,
    SendResult,
)
from fieldservice_billing.services.notifications import (
    HttpNotificationGateway,
    LoggingNotificationGateway,
)
from fieldservice_billing.services.payments import PaymentLedgerService

__all__ = [
    "BuilderStep",
    "CloseOutcome",
    "ConversionResult",
    "DeliveryReceipt",
    "DocumentBuilder",
    "DocumentConversionService",
    "DocumentDraft",
    "HistoryRecorder",
    "HttpNotificationGateway",
    "LedgerCheck",
    "LedgerResult",
    "LoggingNotificationGateway",
    "NotificationGateway",
    "OperationGuard",
    "PaymentLedgerService",
    "SendDispatcher",
    "SendResult",
    "normalize_phone",
    "reconcile_provisional_numbers",
    "validate_recipient",
]
