from quart import Quart

from common.logging_config import configure_logging

SERVICE_NAME = "payment-service"

configure_logging(SERVICE_NAME)

app = Quart(SERVICE_NAME)
