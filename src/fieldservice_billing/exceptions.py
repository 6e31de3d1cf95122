"""Exception hierarchy for Field Service Billing.

All package exceptions inherit from FieldServiceBillingError. The four
families mirror how callers react to them:

- ValidationError: bad input, nothing was mutated, fix and resubmit.
- PersistenceError: the store refused or was unavailable, safe to retry.
- DeliveryError: a notification transport failed.
- IntegrityViolationError: stored state disagrees with what it derives from.
"""

from typing import Any
from uuid import UUID


class FieldServiceBillingError(Exception):
    """Base exception for all Field Service Billing errors.

    Includes an error_code for API responses and extra context.
    """

    error_code: str = "FSB_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(FieldServiceBillingError):
    """Base exception for validation errors."""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class InvalidAmountError(ValidationError):
    """Raised when an invalid monetary amount is provided."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str) -> None:
        super().__init__(
            f"Invalid amount '{amount}': {reason}",
            context={"amount": amount, "reason": reason},
        )


class OverpaymentError(ValidationError):
    """Raised when a payment exceeds the invoice's outstanding balance."""

    error_code = "OVERPAYMENT"

    def __init__(self, invoice_id: UUID | str, amount: str, balance: str) -> None:
        super().__init__(
            f"Payment of {amount} exceeds outstanding balance {balance}",
            context={
                "invoice_id": str(invoice_id),
                "amount": amount,
                "balance": balance,
            },
        )


class InvalidRecipientError(ValidationError):
    """Raised when a recipient is not dispatchable on the chosen channel."""

    error_code = "INVALID_RECIPIENT"

    def __init__(self, channel: str, recipient: str) -> None:
        channel = getattr(channel, "value", channel)
        label = "email address" if channel == "email" else "phone number"
        super().__init__(
            f"Invalid {label}: {recipient!r}",
            context={"channel": channel, "recipient": recipient},
        )


class InvalidLineItemError(ValidationError):
    """Raised when a line item field is out of range."""

    error_code = "INVALID_LINE_ITEM"

    def __init__(self, field: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid line item {field} '{value}': {reason}",
            context={"field": field, "value": str(value), "reason": reason},
        )


class EmptyDocumentError(ValidationError):
    """Raised when a step requires at least one line item."""

    error_code = "EMPTY_DOCUMENT"

    def __init__(self) -> None:
        super().__init__("Add at least one line item before continuing")


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(FieldServiceBillingError):
    """Base exception for store failures. The operation may be retried."""

    error_code = "PERSISTENCE_ERROR"
    status_code = 503


class DocumentNotFoundError(PersistenceError):
    """Raised when an estimate or invoice cannot be found."""

    error_code = "DOCUMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, document_type: str, document_id: UUID | str) -> None:
        document_type = getattr(document_type, "value", document_type)
        super().__init__(
            f"{str(document_type).capitalize()} not found: {document_id}",
            context={"document_type": document_type, "document_id": str(document_id)},
        )


class PaymentNotFoundError(PersistenceError):
    """Raised when a payment cannot be found."""

    error_code = "PAYMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, payment_id: UUID | str) -> None:
        super().__init__(
            f"Payment not found: {payment_id}",
            context={"payment_id": str(payment_id)},
        )


class LineItemNotFoundError(PersistenceError):
    """Raised when a draft has no line item with the given id."""

    error_code = "LINE_ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, item_id: UUID | str) -> None:
        super().__init__(
            f"Line item not found: {item_id}",
            context={"item_id": str(item_id)},
        )


class DuplicateDocumentNumberError(PersistenceError):
    """Raised when (document type, number) is already taken."""

    error_code = "DUPLICATE_DOCUMENT_NUMBER"
    status_code = 409

    def __init__(self, document_type: str, number: str) -> None:
        document_type = getattr(document_type, "value", document_type)
        super().__init__(
            f"{str(document_type).capitalize()} number already exists: {number}",
            context={"document_type": document_type, "number": number},
        )


class OperationInProgressError(PersistenceError):
    """Raised when an identical operation is still in flight."""

    error_code = "OPERATION_IN_PROGRESS"
    status_code = 409

    def __init__(self, operation: str, key: str) -> None:
        super().__init__(
            f"{operation} already in progress for {key}",
            context={"operation": operation, "key": key},
        )


# =============================================================================
# Delivery Errors
# =============================================================================


class DeliveryError(FieldServiceBillingError):
    """Raised when the notification transport rejects or fails a message."""

    error_code = "DELIVERY_ERROR"
    status_code = 502

    def __init__(self, channel: str, recipient: str, reason: str) -> None:
        channel = getattr(channel, "value", channel)
        super().__init__(
            f"Failed to deliver {channel} to {recipient}: {reason}",
            context={"channel": channel, "recipient": recipient, "reason": reason},
        )


# =============================================================================
# Integrity Errors
# =============================================================================


class IntegrityViolationError(FieldServiceBillingError):
    """Raised when stored state cannot be re-derived from its sources."""

    error_code = "INTEGRITY_VIOLATION"
    status_code = 500


# =============================================================================
# Workflow Errors
# =============================================================================


class WorkflowError(FieldServiceBillingError):
    """Base exception for operations invalid in the current state."""

    error_code = "WORKFLOW_ERROR"
    status_code = 409


class InvalidStepTransitionError(WorkflowError):
    """Raised when the builder cannot perform an action from its current step."""

    error_code = "INVALID_STEP_TRANSITION"

    def __init__(self, step: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} from step '{step}'",
            context={"step": step, "action": action},
        )


class InvalidDocumentStateError(WorkflowError):
    """Raised when a document's status forbids the requested operation."""

    error_code = "INVALID_DOCUMENT_STATE"

    def __init__(self, document_id: UUID | str, status: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} document {document_id} with status '{status}'",
            context={"document_id": str(document_id), "status": status},
        )


class InvalidPaymentStateError(WorkflowError):
    """Raised when a payment's status forbids the requested operation."""

    error_code = "INVALID_PAYMENT_STATE"

    def __init__(self, payment_id: UUID | str, status: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} payment {payment_id} with status '{status}'",
            context={"payment_id": str(payment_id), "status": status},
        )
