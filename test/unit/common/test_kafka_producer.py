import unittest
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call, patch

from aiokafka.errors import KafkaConnectionError, KafkaTimeoutError, MessageSizeTooLargeError, RequestTimedOutError

from common.events.integration_events import ReservedItemDto, StockReservedEvent
from common.events.serialization import encode_event
from common.kafka.kafkaProducer import DeliveryReceipt, KafkaProducerSingleton, PublishError
from common.kafka.settings import KafkaSettings


def make_event(correlation_id="corr-1") -> StockReservedEvent:
    return StockReservedEvent(
        order_id=uuid.uuid4(),
        reserved_items=[ReservedItemDto(product_id="laptop-001", quantity=10, warehouse_location="Warehouse-A")],
        correlation_id=correlation_id,
    )


class TestKafkaProducer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        """Replace the aiokafka producer with a mock and reset the singleton."""
        KafkaProducerSingleton._instance = None
        KafkaProducerSingleton._settings = None

        self.producer = MagicMock()
        self.producer.start = AsyncMock()
        self.producer.stop = AsyncMock()
        self.producer.send_and_wait = AsyncMock(
            return_value=SimpleNamespace(topic="shopverse.inventory", partition=2, offset=42))
        self.producer_class = MagicMock(return_value=self.producer)

        patcher_producer = patch("common.kafka.kafkaProducer.AIOKafkaProducer", self.producer_class)
        patcher_sleep = patch("common.kafka.util.asyncio.sleep", new_callable=AsyncMock)
        self.addCleanup(patcher_producer.stop)
        self.addCleanup(patcher_sleep.stop)
        patcher_producer.start()
        self.mock_sleep = patcher_sleep.start()

        await KafkaProducerSingleton.get_instance(KafkaSettings(bootstrap_servers=["kafka:9092"]))

    async def asyncTearDown(self):
        await KafkaProducerSingleton.close()
        KafkaProducerSingleton._settings = None


    async def test_producer_is_idempotent_and_waits_for_all_replicas(self):
        """The producer is created once with acks=all and idempotence enabled."""
        await KafkaProducerSingleton.get_instance()

        self.producer_class.assert_called_once()
        kwargs = self.producer_class.call_args.kwargs
        self.assertEqual(kwargs["bootstrap_servers"], ["kafka:9092"])
        self.assertEqual(kwargs["acks"], "all")
        self.assertTrue(kwargs["enable_idempotence"])
        self.producer.start.assert_awaited_once()


    async def test_publish_sends_key_value_and_headers(self):
        """The event id is the key and both routing headers are attached."""
        event = make_event()

        receipt = await KafkaProducerSingleton.publish("shopverse.inventory", event)

        self.assertEqual(receipt, DeliveryReceipt(topic="shopverse.inventory", partition=2, offset=42))
        self.producer.send_and_wait.assert_awaited_once_with(
            "shopverse.inventory",
            value=encode_event(event),
            key=str(event.event_id).encode("utf-8"),
            headers=[("event-type", b"StockReservedEvent"), ("correlation-id", b"corr-1")],
        )


    async def test_publish_without_correlation_id(self):
        """A missing correlation id is sent as an empty header."""
        await KafkaProducerSingleton.publish("shopverse.inventory", make_event(correlation_id=None))

        headers = self.producer.send_and_wait.call_args.kwargs["headers"]
        self.assertEqual(headers[1], ("correlation-id", b""))


    async def test_publish_with_explicit_key(self):
        event = make_event()

        await KafkaProducerSingleton.publish("shopverse.inventory", event, key=str(event.order_id))

        self.assertEqual(self.producer.send_and_wait.call_args.kwargs["key"], str(event.order_id).encode("utf-8"))


    async def test_connection_error_is_resent_with_backoff(self):
        """A send that never reached the broker is resent after the configured backoff."""
        self.producer.send_and_wait.side_effect = [
            KafkaConnectionError(),
            SimpleNamespace(topic="shopverse.inventory", partition=0, offset=7),
        ]

        receipt = await KafkaProducerSingleton.publish("shopverse.inventory", make_event())

        self.assertEqual(receipt.offset, 7)
        self.assertEqual(self.producer.send_and_wait.await_count, 2)
        self.mock_sleep.assert_awaited_once_with(1.0)


    async def test_retries_are_bounded(self):
        """After the retries are used up the caller gets a PublishError."""
        self.producer.send_and_wait.side_effect = KafkaConnectionError()

        with self.assertRaises(PublishError) as ctx:
            await KafkaProducerSingleton.publish("shopverse.inventory", make_event())

        self.assertEqual(ctx.exception.topic, "shopverse.inventory")
        self.assertIsInstance(ctx.exception.__cause__, KafkaConnectionError)
        self.assertEqual(self.producer.send_and_wait.await_count, 4)
        self.assertEqual(self.mock_sleep.await_args_list, [call(1.0), call(2.0), call(4.0)])


    async def test_rejected_send_is_not_retried(self):
        self.producer.send_and_wait.side_effect = MessageSizeTooLargeError()

        with self.assertRaises(PublishError):
            await KafkaProducerSingleton.publish("shopverse.inventory", make_event())

        self.producer.send_and_wait.assert_awaited_once()
        self.mock_sleep.assert_not_awaited()


    async def test_timed_out_send_is_not_resent(self):
        """A timed-out batch may already be written, so it surfaces instead of being sent again."""
        for error in (KafkaTimeoutError(), RequestTimedOutError()):
            with self.subTest(error=type(error).__name__):
                self.producer.send_and_wait.reset_mock()
                self.producer.send_and_wait.side_effect = [
                    error,
                    SimpleNamespace(topic="shopverse.inventory", partition=0, offset=7),
                ]

                with self.assertRaises(PublishError) as ctx:
                    await KafkaProducerSingleton.publish("shopverse.inventory", make_event())

                self.assertIs(ctx.exception.__cause__, error)
                self.producer.send_and_wait.assert_awaited_once()
                self.mock_sleep.assert_not_awaited()


    async def test_send_raw_passes_bytes_through(self):
        await KafkaProducerSingleton.send_raw("shopverse.deadletter", b"raw-key", b"raw-value", [("x", b"y")])

        self.producer.send_and_wait.assert_awaited_once_with(
            "shopverse.deadletter", value=b"raw-value", key=b"raw-key", headers=[("x", b"y")])


    async def test_close(self):
        await KafkaProducerSingleton.close()

        self.producer.stop.assert_awaited_once()
        self.assertIsNone(KafkaProducerSingleton._instance)


if __name__ == "__main__":
    unittest.main()
