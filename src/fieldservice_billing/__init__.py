from fieldservice_billing.domain.documents import Estimate, Invoice, LineItem, UpsellItem
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.domain.value_objects import (
    DeliveryChannel,
    DocumentType,
    Money,
    PaymentMethod,
)

__all__ = [
    "DeliveryChannel",
    "DocumentType",
    "Estimate",
    "Invoice",
    "LineItem",
    "Money",
    "Payment",
    "PaymentMethod",
    "UpsellItem",
]

__version__ = "0.1.0"
