from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
from msgspec import Struct
from opentelemetry import trace
from opentelemetry.trace import SpanKind
import asyncio
import logging

from common.events.integration_events import IntegrationEvent
from common.events.serialization import encode_event
from common.kafka.events_config import HEADER_CORRELATION_ID, HEADER_EVENT_TYPE
from common.kafka.settings import KafkaSettings
from common.kafka.util import retry_kafka_call

tracer = trace.get_tracer(__name__)


class PublishError(Exception):
    """The broker was unreachable or rejected the send after the bounded retries."""

    def __init__(self, topic: str, reason: str):
        super().__init__(f"Failed to publish to {topic}: {reason}")
        self.topic = topic
        self.reason = reason


class DeliveryReceipt(Struct, frozen=True):
    topic: str
    partition: int
    offset: int


def event_headers(event: IntegrationEvent) -> list[tuple[str, bytes]]:
    return [
        (HEADER_EVENT_TYPE, type(event).__name__.encode("utf-8")),
        (HEADER_CORRELATION_ID, (event.correlation_id or "").encode("utf-8")),
    ]


class KafkaProducerSingleton:
    """Process-wide idempotent producer shared by every request and consumer task."""
    _instance = None
    _settings: KafkaSettings | None = None
    _start_lock = asyncio.Lock()

    @classmethod
    async def get_instance(cls, settings: KafkaSettings | None = None):
        if cls._instance is None:
            async with cls._start_lock:
                if cls._instance is None:
                    cls._settings = settings or cls._settings or KafkaSettings.from_env()
                    producer = AIOKafkaProducer(
                        bootstrap_servers=cls._settings.bootstrap_servers,
                        acks="all",
                        enable_idempotence=True,
                        retry_backoff_ms=cls._settings.producer_retry_backoff_ms,
                        request_timeout_ms=cls._settings.request_timeout_ms,
                    )
                    try:
                        await producer.start()
                    except BaseException:
                        await producer.stop()
                        raise
                    cls._instance = producer
                    logging.info(f"Kafka Producer started with servers: {cls._settings.bootstrap_servers}")
        return cls._instance

    @classmethod
    async def publish(cls, topic: str, event: IntegrationEvent, key: str | None = None) -> DeliveryReceipt:
        """Serialize ``event`` and send it to ``topic``.

        The message key defaults to the event id. Returns once every in-sync
        replica has acknowledged the write; raises PublishError otherwise.
        """
        event_type = type(event).__name__
        key = key if key is not None else str(event.event_id)
        with tracer.start_as_current_span(
            f"{topic} publish",
            kind=SpanKind.PRODUCER,
            attributes={
                "messaging.system": "kafka",
                "messaging.destination.name": topic,
                "messaging.kafka.message.key": key,
                "messaging.message.id": str(event.event_id),
            },
        ):
            try:
                receipt = await cls.send_raw(topic, key, encode_event(event), event_headers(event))
            except PublishError:
                logging.error(f"Failed to publish {event_type} to {topic} [CorrelationId: {event.correlation_id}]",
                              exc_info=True)
                raise
        logging.info(f"Published {event_type} to {topic} "
                     f"[Partition: {receipt.partition}, Offset: {receipt.offset}, CorrelationId: {event.correlation_id}]")
        return receipt

    @classmethod
    async def send_raw(cls, topic: str, key: str | bytes | None, value: bytes | None,
                       headers: list[tuple[str, bytes]]) -> DeliveryReceipt:
        if isinstance(key, str):
            key = key.encode("utf-8")
        try:
            producer = await cls.get_instance()
            settings = cls._settings or KafkaSettings()
            metadata = await retry_kafka_call(
                producer.send_and_wait,
                topic,
                value=value,
                key=key,
                headers=headers,
                retries=settings.producer_max_retries,
                backoff_ms=settings.producer_retry_backoff_ms,
            )
        except KafkaError as e:
            raise PublishError(topic, f"{type(e).__name__}: {e}") from e
        return DeliveryReceipt(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)

    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.stop()
            logging.info("Kafka Producer stopped")
            cls._instance = None
