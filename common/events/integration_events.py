import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated

from msgspec import Meta, Struct, field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationEvent(Struct, kw_only=True, frozen=True, rename="camel"):
    """Base of every event exchanged between services.

    Not published on its own. Subclasses inherit the camelCase wire naming and
    the three envelope fields below.
    """
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    occurred_on: datetime = field(default_factory=_utcnow)
    correlation_id: str | None = None


# ------------------------------------------
# Order
# ------------------------------------------

class OrderItemDto(Struct, kw_only=True, frozen=True, rename="camel"):
    product_id: str
    product_name: str
    quantity: Annotated[int, Meta(gt=0)]
    unit_price: Decimal

    def __post_init__(self):
        if self.unit_price < 0:
            raise ValueError("unitPrice cannot be negative")


class OrderCreatedEvent(IntegrationEvent, kw_only=True, frozen=True, rename="camel"):
    order_id: uuid.UUID
    user_id: str
    total_amount: Decimal
    currency: str = "USD"
    items: list[OrderItemDto] = field(default_factory=list)

    def __post_init__(self):
        if self.total_amount < 0:
            raise ValueError("totalAmount cannot be negative")


# ------------------------------------------
# Payment
# ------------------------------------------

PAYMENT_STATUS_COMPLETED = "Completed"
PAYMENT_STATUS_FAILED = "Failed"


class PaymentProcessedEvent(IntegrationEvent, kw_only=True, frozen=True, rename="camel"):
    payment_id: uuid.UUID
    order_id: uuid.UUID
    user_id: str
    amount: Decimal
    status: str
    currency: str = "USD"
    payment_method: str | None = None
    transaction_reference: str | None = None

    def __post_init__(self):
        if self.status not in (PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_FAILED):
            raise ValueError(f"unknown payment status: {self.status}")


# ------------------------------------------
# Inventory
# ------------------------------------------

class ReservedItemDto(Struct, kw_only=True, frozen=True, rename="camel"):
    product_id: str
    quantity: int
    warehouse_location: str


class FailedItemDto(Struct, kw_only=True, frozen=True, rename="camel"):
    product_id: str
    requested_quantity: int
    available_quantity: int


class StockReservedEvent(IntegrationEvent, kw_only=True, frozen=True, rename="camel"):
    order_id: uuid.UUID
    reserved_items: list[ReservedItemDto] = field(default_factory=list)


class StockFailedEvent(IntegrationEvent, kw_only=True, frozen=True, rename="camel"):
    order_id: uuid.UUID
    reason: str
    failed_items: list[FailedItemDto] = field(default_factory=list)


def order_total(items: list[OrderItemDto]) -> Decimal:
    return sum((item.quantity * item.unit_price for item in items), Decimal(0))
