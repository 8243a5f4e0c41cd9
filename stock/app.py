import logging

from aiokafka.errors import KafkaError
from quart import Quart, jsonify, abort, Response

from common.events.integration_events import OrderCreatedEvent
from common.kafka.kafkaConsumer import KafkaEventConsumer
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.settings import KafkaSettings
from common.kafka.topics_config import INVENTORY_TOPIC, ORDERS_TOPIC
from common.logging_config import configure_logging
from common.otlp_grcp_config import configure_telemetry
from stock.inventory import InventoryStore
from stock.reservation import StockReservationEngine

SERVICE_NAME = "inventory-service"
CONSUMER_GROUP = "inventory-service"

configure_logging(SERVICE_NAME)

app = Quart(SERVICE_NAME)

inventory = InventoryStore()
engine = StockReservationEngine(inventory, KafkaProducerSingleton, INVENTORY_TOPIC)
order_created_consumer: KafkaEventConsumer | None = None


@app.get('/api/inventory')
async def get_inventory_status():
    return Response("Inventory Service Works!", status=200)


@app.get('/api/inventory/<product_id>')
async def find_product(product_id: str):
    if product_id not in inventory:
        abort(404, f"Product: {product_id} not found!")
    return jsonify(
        {
            "productId": product_id,
            "available": inventory.available(product_id)
        }
    )


@app.before_serving
async def startup():
    global order_created_consumer
    app.logger.info("Starting Inventory Service")
    settings = KafkaSettings.from_env()
    configure_telemetry(SERVICE_NAME)
    try:
        await KafkaProducerSingleton.get_instance(settings)
    except KafkaError as e:
        app.logger.warning(f"Kafka Producer not started yet ({e}); it will connect on first publish")
    order_created_consumer = KafkaEventConsumer(
        topic=ORDERS_TOPIC,
        event_type=OrderCreatedEvent,
        handler=engine.handle_order_created,
        group_id=CONSUMER_GROUP,
        settings=settings,
    )
    await order_created_consumer.start()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Inventory Service")
    if order_created_consumer:
        await order_created_consumer.close()
    await KafkaProducerSingleton.close()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    hypercorn_logger = logging.getLogger('hypercorn.error')
    app.logger.handlers = hypercorn_logger.handlers
    app.logger.setLevel(hypercorn_logger.level)
