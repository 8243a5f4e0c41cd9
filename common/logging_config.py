import contextvars
import logging

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(service_name)s] [%(correlation_id)s] %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the service name and the current correlation id."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(service_name: str, level=logging.INFO):
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler()
        ]
    )
    correlation_filter = CorrelationIdFilter(service_name)
    for handler in logging.getLogger().handlers:
        handler.addFilter(correlation_filter)
