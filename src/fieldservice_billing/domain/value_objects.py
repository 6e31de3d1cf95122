from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class DocumentType(str, Enum):
    ESTIMATE = "estimate"
    INVOICE = "invoice"


class EstimateStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONVERTED = "converted"
    EXPIRED = "expired"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentStatus(str, Enum):
    PAID = "paid"
    REFUNDED = "refunded"
    DISPUTED = "disputed"

    @property
    def counts_as_received(self) -> bool:
        return self in (PaymentStatus.PAID, PaymentStatus.DISPUTED)


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    E_TRANSFER = "e_transfer"
    OTHER = "other"


class DeliveryChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class CommunicationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True, slots=True)
class Money:
    amount: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", to_decimal(self.amount))

    def __add__(self, other: "Money") -> "Money":
        return Money(self.amount + other.amount)

    def __sub__(self, other: "Money") -> "Money":
        return Money(self.amount - other.amount)

    def __mul__(self, factor: Decimal | int | float) -> "Money":
        return Money(self.amount * to_decimal(factor))

    def __neg__(self) -> "Money":
        return Money(-self.amount)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount == other.amount

    def __hash__(self) -> int:
        return hash(self.amount)

    def __lt__(self, other: "Money") -> bool:
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        return self == other or self < other

    def __gt__(self, other: "Money") -> bool:
        return other < self

    def __ge__(self, other: "Money") -> bool:
        return other <= self

    def __str__(self) -> str:
        return f"{self.rounded().amount:.2f}"

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    @property
    def has_sub_cent_precision(self) -> bool:
        return self.amount != self.amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def cents(self) -> int:
        return int(self.rounded().amount * HUNDRED)

    def rounded(self) -> "Money":
        """Quantize to cents. Only for settlement and display."""
        return Money(self.amount.quantize(CENT, rounding=ROUND_HALF_UP))

    def max_zero(self) -> "Money":
        return self if not self.is_negative else Money.zero()

    @classmethod
    def zero(cls) -> "Money":
        return cls(Decimal("0"))


__all__ = [
    "CENT",
    "CommunicationStatus",
    "DeliveryChannel",
    "DocumentType",
    "EstimateStatus",
    "InvoiceStatus",
    "Money",
    "PaymentMethod",
    "PaymentStatus",
    "to_decimal",
]
