"""Estimate, invoice and line item domain models."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from fieldservice_billing.domain.calculator import DocumentTotals, calculate_totals
from fieldservice_billing.domain.value_objects import (
    DocumentType,
    EstimateStatus,
    InvoiceStatus,
    Money,
    to_decimal,
)
from fieldservice_billing.exceptions import InvalidDocumentStateError, InvalidLineItemError

HUNDRED = Decimal("100")


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Money
    id: UUID = field(default_factory=uuid4)
    name: str = ""
    discount_percent: Decimal = Decimal("0")
    taxable: bool = True
    our_cost: Money = field(default_factory=Money.zero)
    source_upsell_id: UUID | None = None

    def __post_init__(self) -> None:
        self.quantity = to_decimal(self.quantity)
        self.discount_percent = to_decimal(self.discount_percent)
        if not isinstance(self.unit_price, Money):
            self.unit_price = Money(self.unit_price)
        if not isinstance(self.our_cost, Money):
            self.our_cost = Money(self.our_cost)

        if self.quantity <= 0:
            raise InvalidLineItemError("quantity", self.quantity, "must be greater than 0")
        if self.unit_price.is_negative:
            raise InvalidLineItemError(
                "unit_price", self.unit_price.amount, "cannot be negative"
            )
        if not Decimal("0") <= self.discount_percent <= HUNDRED:
            raise InvalidLineItemError(
                "discount_percent", self.discount_percent, "must be between 0 and 100"
            )
        if self.our_cost.is_negative:
            raise InvalidLineItemError("our_cost", self.our_cost.amount, "cannot be negative")

    def clone(self) -> "LineItem":
        """Return the same line with a fresh identity, for another document."""
        return LineItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            name=self.name,
            discount_percent=self.discount_percent,
            taxable=self.taxable,
            our_cost=self.our_cost,
            source_upsell_id=self.source_upsell_id,
        )


@dataclass
class UpsellItem:
    """An add-on (usually a warranty) offered during document creation.

    Catalog entries are templates; selecting one adds a LineItem to the
    document, the catalog entry itself is never owned by the document.
    """

    title: str
    price: Money
    id: UUID = field(default_factory=uuid4)
    description: str = ""
    category: str = "warranty"
    selected: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.price, Money):
            self.price = Money(self.price)
        if self.price.is_negative:
            raise InvalidLineItemError("price", self.price.amount, "cannot be negative")

    def to_line_item(self) -> LineItem:
        return LineItem(
            description=self.description or self.title,
            quantity=Decimal("1"),
            unit_price=self.price,
            name=self.title,
            taxable=True,
            source_upsell_id=self.id,
        )


@dataclass
class Document:
    document_type: ClassVar[DocumentType]

    number: str = ""
    items: list[LineItem] = field(default_factory=list)
    tax_rate: Decimal = Decimal("0")
    notes: str = ""
    client_id: str | None = None
    job_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    subtotal: Money = field(default_factory=Money.zero)
    tax_total: Money = field(default_factory=Money.zero)
    total: Money = field(default_factory=Money.zero)
    number_is_provisional: bool = False
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    sent_at: datetime | None = None

    def __post_init__(self) -> None:
        self.tax_rate = to_decimal(self.tax_rate)
        if not Decimal("0") <= self.tax_rate <= HUNDRED:
            raise InvalidLineItemError("tax_rate", self.tax_rate, "must be between 0 and 100")

    def derived_totals(self) -> DocumentTotals:
        return calculate_totals(self.items, self.tax_rate).settled()

    def recalculate(self) -> DocumentTotals:
        """Refresh the stored totals from the line items."""
        totals = self.derived_totals()
        self.subtotal = totals.subtotal
        self.tax_total = totals.tax_total
        self.total = totals.total
        return totals

    def totals_match_items(self) -> bool:
        totals = self.derived_totals()
        return (
            self.subtotal == totals.subtotal
            and self.tax_total == totals.tax_total
            and self.total == totals.total
        )

    def touch(self) -> None:
        self.updated_at = _utc_now()


@dataclass
class Estimate(Document):
    document_type: ClassVar[DocumentType] = DocumentType.ESTIMATE

    status: EstimateStatus = EstimateStatus.DRAFT
    converted_invoice_id: UUID | None = None
    valid_until: date | None = None

    def mark_sent(self) -> bool:
        """Apply the first-send transition. Returns False if already past draft."""
        if self.status != EstimateStatus.DRAFT:
            return False
        self.status = EstimateStatus.SENT
        self.sent_at = _utc_now()
        return True

    @property
    def is_converted(self) -> bool:
        return self.status == EstimateStatus.CONVERTED or self.converted_invoice_id is not None

    def is_expired(self, as_of: date | None = None) -> bool:
        """True once valid_until has passed on an estimate not yet converted."""
        if self.status == EstimateStatus.EXPIRED:
            return True
        if self.is_converted or self.valid_until is None:
            return False
        return (as_of or date.today()) > self.valid_until

    def mark_expired(self) -> None:
        if self.is_converted:
            raise InvalidDocumentStateError(self.id, self.status.value, "expire")
        self.status = EstimateStatus.EXPIRED
        self.touch()

    def mark_converted(self, invoice_id: UUID) -> None:
        self.status = EstimateStatus.CONVERTED
        self.converted_invoice_id = invoice_id
        self.touch()


def derive_payment_status(total: Money, amount_paid: Money) -> InvoiceStatus:
    """Payment status is a pure function of (total, amount_paid)."""
    if amount_paid.is_zero:
        return InvoiceStatus.UNPAID
    if amount_paid < total:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PAID


@dataclass
class Invoice(Document):
    document_type: ClassVar[DocumentType] = DocumentType.INVOICE

    status: InvoiceStatus = InvoiceStatus.DRAFT
    amount_paid: Money = field(default_factory=Money.zero)
    estimate_id: UUID | None = None
    issue_date: date = field(default_factory=date.today)
    due_date: date | None = None
    paid_at: datetime | None = None

    @property
    def balance(self) -> Money:
        return (self.total - self.amount_paid).max_zero()

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_overdue(self) -> bool:
        if self.due_date is None or self.balance.is_zero:
            return False
        return self.due_date < date.today()

    @property
    def has_ledger_activity(self) -> bool:
        return self.status in (
            InvoiceStatus.UNPAID,
            InvoiceStatus.PARTIAL,
            InvoiceStatus.PAID,
        )

    def mark_sent(self) -> bool:
        """Apply the first-send transition. Returns False if already past draft."""
        if self.status != InvoiceStatus.DRAFT:
            return False
        self.status = InvoiceStatus.SENT
        self.sent_at = _utc_now()
        return True

    def apply_ledger(self, amount_paid: Money) -> InvoiceStatus:
        """Set amount_paid and re-derive status and paid_at from it."""
        self.amount_paid = amount_paid
        previous = self.status
        self.status = derive_payment_status(self.total, amount_paid)
        if self.status == InvoiceStatus.PAID:
            if previous != InvoiceStatus.PAID or self.paid_at is None:
                self.paid_at = _utc_now()
        else:
            self.paid_at = None
        self.touch()
        return self.status


def document_class(document_type: DocumentType) -> type[Document]:
    return Estimate if DocumentType(document_type) == DocumentType.ESTIMATE else Invoice
