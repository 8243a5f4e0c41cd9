import logging

from common.otlp_grcp_config import configure_telemetry
from payment.app_instance import app, SERVICE_NAME
from payment.routing import http  # noqa: F401  registers the HTTP routes
from payment.routing.kafka import Kafka

kafka = Kafka(logging.getLogger("payment.consumer"))


@app.before_serving
async def startup():
    app.logger.info("Starting Payment Service")
    configure_telemetry(SERVICE_NAME)
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Payment Service")
    await kafka.close()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    hypercorn_logger = logging.getLogger('hypercorn.error')
    app.logger.handlers = hypercorn_logger.handlers
    app.logger.setLevel(hypercorn_logger.level)
