import logging
import uuid

from aiokafka.errors import KafkaError
from quart import Quart, jsonify, abort, request, Response

from common.events.serialization import encode_json
from common.kafka.kafkaProducer import KafkaProducerSingleton, PublishError
from common.kafka.settings import KafkaSettings
from common.kafka.topics_config import ORDERS_TOPIC
from common.logging_config import configure_logging, correlation_id_var
from common.otlp_grcp_config import configure_telemetry
from order import order_logic

SERVICE_NAME = "order-service"
CORRELATION_ID_HEADER = "X-Correlation-ID"
USER_ID_HEADER = "X-User-Id"

configure_logging(SERVICE_NAME)

app = Quart(SERVICE_NAME)


@app.get('/api/orders')
async def get_orders_status():
    return Response("Order Service Works!", status=200)


@app.post('/api/orders')
async def create_order():
    order_request, err = order_logic.parse_create_order(await request.get_data())
    if err:
        abort(400, str(err))

    # set by the gateway; requests that bypass it get a fresh id
    correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
    event = order_logic.build_order_created(order_request, request.headers.get(USER_ID_HEADER), correlation_id)

    token = correlation_id_var.set(correlation_id)
    try:
        app.logger.info(f"Creating Order {event.order_id} with {len(event.items)} item(s), "
                        f"Total: {event.total_amount} {event.currency}")
        await KafkaProducerSingleton.publish(ORDERS_TOPIC, event)
    except PublishError:
        abort(503, f"Order: {event.order_id} could not be published")
    finally:
        correlation_id_var.reset(token)

    return Response(
        encode_json(order_logic.created_response(event)),
        status=201,
        content_type="application/json",
        headers={CORRELATION_ID_HEADER: correlation_id},
    )


@app.get('/api/orders/<order_id>')
async def find_order(order_id: str):
    return jsonify(
        {
            "orderId": order_id,
            "status": order_logic.ORDER_STATUS_PENDING
        }
    )


@app.before_serving
async def startup():
    app.logger.info("Starting Order Service")
    configure_telemetry(SERVICE_NAME)
    try:
        await KafkaProducerSingleton.get_instance(KafkaSettings.from_env())
    except KafkaError as e:
        app.logger.warning(f"Kafka Producer not started yet ({e}); it will connect on first publish")


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Order Service")
    await KafkaProducerSingleton.close()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    hypercorn_logger = logging.getLogger('hypercorn.error')
    app.logger.handlers = hypercorn_logger.handlers
    app.logger.setLevel(hypercorn_logger.level)
