"""Pydantic v2 schemas for inbound data.

A UI or service layer hands these (or plain mappings) to the engine.
Pydantic's own errors are re-raised as the package's ValidationError so
callers only ever catch one hierarchy.
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from fieldservice_billing.domain.value_objects import DeliveryChannel, PaymentMethod
from fieldservice_billing.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ProductInput(BaseModel):
    """A catalog product or custom line being added to a draft."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(default="", max_length=255)
    description: str = Field(default="", max_length=1000)
    price: Decimal = Field(..., ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    taxable: bool = True
    cost: Decimal = Field(default=Decimal("0"), ge=0)


class LineItemPatch(BaseModel):
    """Partial update of a draft line item. Unset fields are left alone."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    unit_price: Decimal | None = Field(default=None, ge=0)
    quantity: Decimal | None = Field(default=None, gt=0)
    discount_percent: Decimal | None = Field(default=None, ge=0, le=100)
    taxable: bool | None = None
    our_cost: Decimal | None = Field(default=None, ge=0)


class PaymentRequest(BaseModel):
    """A payment about to be recorded against an invoice."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: PaymentMethod
    reference: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)
    payment_date: date | None = None
    idempotency_key: str | None = Field(default=None, max_length=128)


class NotificationTarget(BaseModel):
    """Where to send a confirmation after a ledger mutation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    channel: DeliveryChannel
    recipient: str = Field(..., min_length=1, max_length=100)
    client_name: str = Field(default="", max_length=100)


def parse_input(model: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """Coerce a mapping into `model`, raising the package ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        raise ValidationError(
            f"Invalid {field}: {first.get('msg', 'invalid value')}",
            context={"model": model.__name__, "errors": len(errors), "field": field},
        ) from e
