from fieldservice_billing.domain.calculator import (
    DocumentTotals,
    calculate_totals,
    grand_total,
    line_total,
    margin,
    margin_percent,
    subtotal,
    tax_total,
)
from fieldservice_billing.domain.documents import (
    Document,
    Estimate,
    Invoice,
    LineItem,
    UpsellItem,
    derive_payment_status,
)
from fieldservice_billing.domain.history import (
    DocumentCommunication,
    HistoryEntry,
    HistoryEntryType,
)
from fieldservice_billing.domain.payments import Payment, amount_received
from fieldservice_billing.domain.value_objects import (
    CommunicationStatus,
    DeliveryChannel,
    DocumentType,
    EstimateStatus,
    InvoiceStatus,
    Money,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "CommunicationStatus",
    "DeliveryChannel",
    "Document",
    "DocumentCommunication",
    "DocumentTotals",
    "DocumentType",
    "Estimate",
    "EstimateStatus",
    "HistoryEntry",
    "HistoryEntryType",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "Money",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "UpsellItem",
    "amount_received",
    "calculate_totals",
    "derive_payment_status",
    "grand_total",
    "line_total",
    "margin",
    "margin_percent",
    "subtotal",
    "tax_total",
]
