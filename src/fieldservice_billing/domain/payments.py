"""Payment domain model.

Refunds flip a payment's status in place. The original row is kept for the
history, and the invoice ledger only sums payments whose status still
counts as received.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from fieldservice_billing.domain.value_objects import Money, PaymentMethod, PaymentStatus


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Payment:
    invoice_id: UUID
    amount: Money
    method: PaymentMethod
    id: UUID = field(default_factory=uuid4)
    payment_number: str = ""
    reference: str | None = None
    notes: str | None = None
    payment_date: date = field(default_factory=date.today)
    status: PaymentStatus = PaymentStatus.PAID
    idempotency_key: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    refunded_at: datetime | None = None

    @property
    def counts_as_received(self) -> bool:
        return self.status.counts_as_received

    @property
    def is_refundable(self) -> bool:
        return self.status == PaymentStatus.PAID

    def mark_refunded(self) -> None:
        self.status = PaymentStatus.REFUNDED
        self.refunded_at = _utc_now()

    def mark_disputed(self) -> None:
        self.status = PaymentStatus.DISPUTED

    def matches_intent(
        self,
        amount: Money,
        method: PaymentMethod,
        reference: str | None,
        since: datetime,
    ) -> bool:
        """Same amount, method and reference recorded at or after `since`."""
        return (
            self.counts_as_received
            and self.amount == amount
            and self.method == method
            and (self.reference or None) == (reference or None)
            and self.created_at >= since
        )


def amount_received(payments: list[Payment]) -> Money:
    total = Money.zero()
    for payment in payments:
        if payment.counts_as_received:
            total = total + payment.amount
    return total
