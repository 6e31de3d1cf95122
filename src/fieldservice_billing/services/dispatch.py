"""Document delivery by email or SMS."""

from __future__ import annotations

import re
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.documents import Document, Invoice
from fieldservice_billing.domain.history import DocumentCommunication
from fieldservice_billing.domain.value_objects import (
    CommunicationStatus,
    DeliveryChannel,
    DocumentType,
)
from fieldservice_billing.exceptions import (
    DeliveryError,
    DocumentNotFoundError,
    InvalidRecipientError,
)
from fieldservice_billing.logging_config import LogContext, get_logger
from fieldservice_billing.repositories.interfaces import (
    CommunicationRepository,
    DocumentRepository,
)
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.interfaces import (
    DeliveryReceipt,
    NotificationGateway,
    SendResult,
)

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MAX_EMAIL_LENGTH = 254
MAX_RECIPIENT_LENGTH = 100
MIN_PHONE_DIGITS = 10


def is_valid_email(value: str) -> bool:
    return len(value) <= MAX_EMAIL_LENGTH and EMAIL_PATTERN.match(value) is not None


def normalize_phone(value: str) -> str | None:
    """E.164 form of a North American number, or None if it is too short."""
    digits = re.sub(r"\D", "", value)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    if digits.startswith("1"):
        return f"+{digits}"
    return f"+1{digits}"


def validate_recipient(channel: DeliveryChannel, recipient: str) -> str:
    """Return the normalized recipient or raise InvalidRecipientError."""
    channel = DeliveryChannel(channel)
    value = (recipient or "").strip()
    if channel == DeliveryChannel.EMAIL:
        if is_valid_email(value):
            return value
        raise InvalidRecipientError(channel, value)

    if len(value) > MAX_RECIPIENT_LENGTH:
        raise InvalidRecipientError(channel, value[:MAX_RECIPIENT_LENGTH])
    phone = normalize_phone(value)
    if phone is None:
        raise InvalidRecipientError(channel, value)
    return phone


class SendDispatcher:
    def __init__(
        self,
        repository: DocumentRepository,
        gateway: NotificationGateway,
        communications: CommunicationRepository | None = None,
        history: HistoryRecorder | None = None,
        guard: OperationGuard | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._communications = communications
        self._history = history or HistoryRecorder(None)
        self._settings = settings or get_settings()
        self._guard = guard or OperationGuard(self._settings.operation_timeout_seconds)

    def send(
        self,
        document_type: DocumentType,
        document_id: UUID,
        channel: DeliveryChannel,
        recipient: str,
        client_name: str = "",
    ) -> SendResult:
        """Deliver a persisted document and apply the first-send transition.

        The document is read, never saved from here, so whatever was last
        persisted is what the customer receives. Delivery failures leave the
        status untouched and are not retried.
        """
        document_type = DocumentType(document_type)
        channel = DeliveryChannel(channel)
        recipient = validate_recipient(channel, recipient)
        client_name = (client_name or "").strip()[:MAX_RECIPIENT_LENGTH]

        with LogContext(document_id=str(document_id), channel=channel.value):
            with self._guard.hold("send", f"{document_type.value}:{document_id}"):
                document = self._repository.get(document_type, document_id)
                if document is None:
                    raise DocumentNotFoundError(document_type, document_id)

                subject, body = self._compose(document, channel, client_name)
                receipt = self._deliver(channel, recipient, subject, body)
                self._log_communication(document, channel, recipient, receipt)
                if not receipt.success:
                    logger.warning(
                        "document_send_failed",
                        number=document.number,
                        recipient=recipient,
                        error=receipt.error,
                    )
                    raise DeliveryError(channel, recipient, receipt.error or "unknown error")

                first_send = document.mark_sent()  # type: ignore[attr-defined]
                if first_send:
                    self._repository.update(document)
                logger.info(
                    "document_sent",
                    number=document.number,
                    recipient=recipient,
                    first_send=first_send,
                    message_id=receipt.message_id,
                )
                self._history.document_sent(document, channel.value, recipient)
                return SendResult(
                    document=document,
                    channel=channel,
                    recipient=recipient,
                    first_send=first_send,
                    message_id=receipt.message_id,
                )

    def notify(
        self, channel: DeliveryChannel, recipient: str, subject: str, body: str
    ) -> DeliveryReceipt:
        """Send a free-form message. Raises DeliveryError if it does not go out."""
        channel = DeliveryChannel(channel)
        recipient = validate_recipient(channel, recipient)
        receipt = self._deliver(channel, recipient, subject, body)
        if not receipt.success:
            raise DeliveryError(channel, recipient, receipt.error or "unknown error")
        logger.info("notification_sent", channel=channel.value, message_id=receipt.message_id)
        return receipt

    def _deliver(
        self, channel: DeliveryChannel, recipient: str, subject: str, body: str
    ) -> DeliveryReceipt:
        try:
            if channel == DeliveryChannel.EMAIL:
                return self._gateway.send_email(recipient, subject, body)
            return self._gateway.send_sms(recipient, body)
        except Exception as e:
            return DeliveryReceipt(success=False, error=str(e) or type(e).__name__)

    def _compose(
        self, document: Document, channel: DeliveryChannel, client_name: str
    ) -> tuple[str, str]:
        kind = document.document_type.value
        company = self._settings.company_name
        greeting = f"Hi {client_name}" if client_name else "Hello"
        subject = f"{kind.capitalize()} {document.number} from {company}"

        amount_line = f"Total: ${document.total}"
        if isinstance(document, Invoice):
            amount_line = f"Amount due: ${document.balance}"
            if document.due_date is not None:
                amount_line += f" by {document.due_date.isoformat()}"

        if channel == DeliveryChannel.SMS:
            return subject, (
                f"{greeting}, your {kind} {document.number} from {company} is ready. "
                f"{amount_line}."
            )

        lines = [
            f"{greeting},",
            "",
            f"Please find your {kind} {document.number} below.",
            "",
        ]
        for item in document.items:
            label = item.name or item.description
            lines.append(f"  {label} x {item.quantity}: ${item.unit_price}")
        lines += [
            "",
            f"Subtotal: ${document.subtotal}",
            f"Tax: ${document.tax_total}",
            amount_line,
        ]
        if document.notes:
            lines += ["", document.notes]
        lines += ["", "Thank you,", company]
        return subject, "\n".join(lines)

    def _log_communication(
        self,
        document: Document,
        channel: DeliveryChannel,
        recipient: str,
        receipt: DeliveryReceipt,
    ) -> None:
        if self._communications is None:
            return
        communication = DocumentCommunication(
            document_type=document.document_type,
            document_id=document.id,
            channel=channel,
            recipient=recipient,
            status=CommunicationStatus.SENT if receipt.success else CommunicationStatus.FAILED,
            provider_message_id=receipt.message_id,
            error=receipt.error,
        )
        try:
            self._communications.add(communication)
        except Exception as e:
            logger.warning("communication_log_failed", error=str(e))
