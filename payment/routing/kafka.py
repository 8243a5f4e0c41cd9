from common.events.integration_events import OrderCreatedEvent
from common.kafka.kafkaConsumer import KafkaEventConsumer
from common.kafka.kafkaProducer import KafkaProducerSingleton as KafkaProducer
from common.kafka.settings import KafkaSettings
from common.kafka.topics_config import ORDERS_TOPIC

CONSUMER_GROUP = "payment-service"


class Kafka:
    def __init__(self, logger, consumer_factory=KafkaEventConsumer) -> None:
        self.logger = logger
        self.consumer_factory = consumer_factory
        self.consumer: KafkaEventConsumer | None = None

    async def handle_order_created(self, event: OrderCreatedEvent):
        self.logger.info(
            f"Processing payment for Order {event.order_id}, User: {event.user_id}, "
            f"Amount: {event.total_amount} {event.currency}, CorrelationId: {event.correlation_id}")
        # TODO: charge the payment gateway and publish PaymentProcessedEvent to PAYMENTS_TOPIC
        self.logger.info(f"Payment initiated for Order {event.order_id}")


    async def init(self, settings: KafkaSettings | None = None):
        self.logger.info("Initializing Kafka")
        settings = settings or KafkaSettings.from_env()
        self.consumer = self.consumer_factory(
            topic=ORDERS_TOPIC,
            event_type=OrderCreatedEvent,
            handler=self.handle_order_created,
            group_id=CONSUMER_GROUP,
            settings=settings,
        )
        await self.consumer.start()


    async def close(self):
        self.logger.info("Closing Kafka")
        if self.consumer:
            await self.consumer.close()
            self.consumer = None
        await KafkaProducer.close()
