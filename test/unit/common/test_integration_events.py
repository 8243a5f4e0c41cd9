import unittest
import uuid
from datetime import timezone
from decimal import Decimal

from msgspec import json

from common.events.integration_events import (
    FailedItemDto,
    OrderCreatedEvent,
    OrderItemDto,
    PaymentProcessedEvent,
    ReservedItemDto,
    StockFailedEvent,
    StockReservedEvent,
    order_total,
)
from common.events.serialization import MalformedMessageError, decode_event, encode_event


def make_order(correlation_id="corr-123", items=None) -> OrderCreatedEvent:
    items = items if items is not None else [
        OrderItemDto(product_id="laptop-001", product_name="Laptop", quantity=2, unit_price=Decimal("999.99")),
        OrderItemDto(product_id="mouse-001", product_name="Mouse", quantity=1, unit_price=Decimal("25.50")),
    ]
    return OrderCreatedEvent(
        order_id=uuid.uuid4(),
        user_id="user-1",
        total_amount=order_total(items),
        items=items,
        correlation_id=correlation_id,
    )


class TestIntegrationEvents(unittest.TestCase):

    def test_envelope_defaults(self):
        """Event id and timestamp are filled in at construction."""
        first = make_order(correlation_id=None)
        second = make_order(correlation_id=None)

        self.assertIsInstance(first.event_id, uuid.UUID)
        self.assertNotEqual(first.event_id, second.event_id)
        self.assertEqual(first.occurred_on.tzinfo, timezone.utc)
        self.assertIsNone(first.correlation_id)
        self.assertEqual(first.currency, "USD")


    def test_order_total(self):
        """Total is the sum of quantity times unit price."""
        order = make_order()

        self.assertEqual(order.total_amount, Decimal("2025.48"))
        self.assertEqual(order_total([]), Decimal(0))


    def test_wire_format_is_camel_case(self):
        """Field names are camelCase and amounts are JSON numbers."""
        order = make_order()

        wire = json.decode(encode_event(order))

        self.assertEqual(
            set(wire),
            {"eventId", "occurredOn", "correlationId", "orderId", "userId", "totalAmount", "currency", "items"},
        )
        self.assertEqual(wire["eventId"], str(order.event_id))
        self.assertEqual(wire["correlationId"], "corr-123")
        self.assertEqual(wire["items"][0],
                         {"productId": "laptop-001", "productName": "Laptop", "quantity": 2, "unitPrice": 999.99})
        self.assertIsInstance(wire["totalAmount"], float)


    def test_round_trip_preserves_every_variant(self):
        """Each event decodes back to an equal value, optional fields included."""
        order_id = uuid.uuid4()
        events = [
            make_order(),
            make_order(correlation_id=None, items=[]),
            PaymentProcessedEvent(payment_id=uuid.uuid4(), order_id=order_id, user_id="user-1",
                                  amount=Decimal("10.00"), status="Completed", payment_method="CreditCard",
                                  transaction_reference="tx-1", correlation_id="corr-9"),
            PaymentProcessedEvent(payment_id=uuid.uuid4(), order_id=order_id, user_id="user-1",
                                  amount=Decimal("10.00"), status="Failed"),
            StockReservedEvent(order_id=order_id, correlation_id="corr-9", reserved_items=[
                ReservedItemDto(product_id="laptop-001", quantity=10, warehouse_location="Warehouse-A")]),
            StockFailedEvent(order_id=order_id, reason="Insufficient stock for one or more items", failed_items=[
                FailedItemDto(product_id="mouse-001", requested_quantity=600, available_quantity=500)]),
        ]

        for event in events:
            with self.subTest(event=type(event).__name__):
                decoded, err = decode_event(encode_event(event), type(event))
                self.assertIsNone(err)
                self.assertEqual(decoded, event)


    def test_decode_invalid_json(self):
        """Garbage is reported as a malformed message, not raised."""
        event, err = decode_event(b"{not json", OrderCreatedEvent)

        self.assertIsNone(event)
        self.assertIsInstance(err, MalformedMessageError)
        self.assertEqual(err.event_type, "OrderCreatedEvent")


    def test_decode_empty_payload(self):
        event, err = decode_event(None, StockReservedEvent)

        self.assertIsNone(event)
        self.assertIsInstance(err, MalformedMessageError)
        self.assertEqual(err.reason, "empty payload")


    def test_decode_missing_required_field(self):
        """An OrderCreated payload without orderId is rejected."""
        payload = json.decode(encode_event(make_order()))
        del payload["orderId"]

        event, err = decode_event(json.encode(payload), OrderCreatedEvent)

        self.assertIsNone(event)
        self.assertIn("orderId", str(err))


    def test_decode_rejects_invalid_items(self):
        """Quantities must be positive and prices non-negative."""
        for field_name, bad_value in (("quantity", 0), ("quantity", -1), ("unitPrice", -5)):
            with self.subTest(field=field_name, value=bad_value):
                payload = json.decode(encode_event(make_order()))
                payload["items"][0][field_name] = bad_value

                event, err = decode_event(json.encode(payload), OrderCreatedEvent)

                self.assertIsNone(event)
                self.assertIsInstance(err, MalformedMessageError)


    def test_decode_rejects_unknown_payment_status(self):
        payment = PaymentProcessedEvent(payment_id=uuid.uuid4(), order_id=uuid.uuid4(), user_id="user-1",
                                        amount=Decimal("1"), status="Completed")
        payload = json.decode(encode_event(payment))
        payload["status"] = "Refunded"

        event, err = decode_event(json.encode(payload), PaymentProcessedEvent)

        self.assertIsNone(event)
        self.assertIsInstance(err, MalformedMessageError)


    def test_negative_unit_price_rejected_at_construction(self):
        with self.assertRaises(ValueError):
            OrderItemDto(product_id="x", product_name="X", quantity=1, unit_price=Decimal("-0.01"))


if __name__ == '__main__':
    unittest.main()
