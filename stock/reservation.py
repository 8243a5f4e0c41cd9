import logging

from common.events.integration_events import (
    FailedItemDto,
    OrderCreatedEvent,
    ReservedItemDto,
    StockFailedEvent,
    StockReservedEvent,
)
from common.kafka.kafkaProducer import KafkaProducerSingleton, PublishError
from common.kafka.topics_config import INVENTORY_TOPIC
from stock.inventory import InventoryStore

WAREHOUSE_LOCATION = "Warehouse-A"
INSUFFICIENT_STOCK_REASON = "Insufficient stock for one or more items"


class StockReservationEngine:
    """Reserves every item of an order or none of them.

    Items are taken from the store as they are checked. If any item falls short
    the items already taken are put back before StockFailedEvent is published,
    so a failed order leaves the store exactly as it found it. Must only be
    driven by one consumer task at a time.
    """

    def __init__(self, store: InventoryStore, publisher=KafkaProducerSingleton, topic: str = INVENTORY_TOPIC):
        self.store = store
        self.publisher = publisher
        self.topic = topic

    def reserve(self, event: OrderCreatedEvent) -> StockReservedEvent | StockFailedEvent:
        logging.info(f"Checking stock for Order {event.order_id}, Items: {len(event.items)}, "
                     f"CorrelationId: {event.correlation_id}")
        reserved: list[ReservedItemDto] = []
        failed: list[FailedItemDto] = []

        for item in event.items:
            available = self.store.available(item.product_id)
            if available >= item.quantity:
                remaining = self.store.decrement(item.product_id, item.quantity)
                reserved.append(ReservedItemDto(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    warehouse_location=WAREHOUSE_LOCATION,
                ))
                logging.info(f"Reserved {item.quantity} of {item.product_id} for Order {event.order_id}. "
                             f"Remaining: {remaining}")
            else:
                failed.append(FailedItemDto(
                    product_id=item.product_id,
                    requested_quantity=item.quantity,
                    available_quantity=available,
                ))
                logging.warning(f"Insufficient stock for {item.product_id}. "
                                f"Requested: {item.quantity}, Available: {available}")

        if not failed:
            return StockReservedEvent(
                order_id=event.order_id,
                reserved_items=reserved,
                correlation_id=event.correlation_id,
            )

        self.release(reserved)
        logging.info(f"Rolled back {len(reserved)} reservation(s) for Order {event.order_id}")
        return StockFailedEvent(
            order_id=event.order_id,
            reason=INSUFFICIENT_STOCK_REASON,
            failed_items=failed,
            correlation_id=event.correlation_id,
        )

    def release(self, reserved: list[ReservedItemDto]):
        for item in reversed(reserved):
            self.store.increment(item.product_id, item.quantity)

    async def handle_order_created(self, event: OrderCreatedEvent) -> StockReservedEvent | StockFailedEvent:
        outcome = self.reserve(event)
        try:
            await self.publisher.publish(self.topic, outcome)
        except PublishError:
            if isinstance(outcome, StockReservedEvent):
                # the store may only differ once StockReservedEvent is out
                self.release(outcome.reserved_items)
                logging.error(f"Released reservation for Order {event.order_id} after publish failure")
            raise
        logging.info(f"Published {type(outcome).__name__} for Order {event.order_id}")
        return outcome
