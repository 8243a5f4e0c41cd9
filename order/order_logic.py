import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple, TypeVar

from msgspec import Struct, ValidationError, DecodeError, json

from common.events.integration_events import OrderCreatedEvent, OrderItemDto, order_total

T = TypeVar("T")
E = TypeVar("E", bound=Exception)

Result = Tuple[Optional[T], Optional[E]]

ORDER_STATUS_CREATED = "Created"
ORDER_STATUS_PENDING = "Pending"
DEFAULT_USER_ID = "anonymous"


class CreateOrderRequest(Struct, kw_only=True, frozen=True, rename="camel"):
    items: list[OrderItemDto]


class CreateOrderResponse(Struct, kw_only=True, frozen=True, rename="camel"):
    order_id: uuid.UUID
    status: str
    total_amount: Decimal
    created_at: datetime


class InvalidOrderError(Exception):
    pass


_request_decoder = json.Decoder(CreateOrderRequest)


def parse_create_order(body: bytes) -> Result[CreateOrderRequest, InvalidOrderError]:
    if not body:
        return None, InvalidOrderError("Request body is required")
    try:
        return _request_decoder.decode(body), None
    except (ValidationError, DecodeError) as e:
        return None, InvalidOrderError(str(e))


def build_order_created(order_request: CreateOrderRequest, user_id: str | None,
                        correlation_id: str | None) -> OrderCreatedEvent:
    items = list(order_request.items)
    return OrderCreatedEvent(
        order_id=uuid.uuid4(),
        user_id=user_id or DEFAULT_USER_ID,
        total_amount=order_total(items),
        items=items,
        correlation_id=correlation_id,
    )


def created_response(event: OrderCreatedEvent) -> CreateOrderResponse:
    return CreateOrderResponse(
        order_id=event.order_id,
        status=ORDER_STATUS_CREATED,
        total_amount=event.total_amount,
        created_at=event.occurred_on,
    )
