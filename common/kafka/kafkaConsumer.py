from aiokafka import AIOKafkaConsumer, ConsumerRebalanceListener, TopicPartition
from aiokafka.errors import KafkaError
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from typing import Awaitable, Callable
import asyncio
import logging

from common.events.integration_events import IntegrationEvent
from common.events.serialization import decode_event
from common.kafka.events_config import *
from common.kafka.kafkaProducer import KafkaProducerSingleton, PublishError
from common.kafka.settings import KafkaSettings
from common.logging_config import correlation_id_var

tracer = trace.get_tracer(__name__)

EventHandler = Callable[[IntegrationEvent], Awaitable[object]]


def header_value(message, name: str) -> str:
    for key, value in message.headers or ():
        if key == name:
            return value.decode("utf-8", errors="replace") if value else ""
    return ""


class KafkaEventConsumer:
    """Consumes one topic under one consumer group and hands each event to ``handler``.

    A fetcher task pulls records from the broker into a bounded queue; the
    dispatch loop takes them off one at a time and does not fetch the next one
    until the handler has returned. Messages that cannot be decoded, or whose
    handler raises, are forwarded to the dead-letter topic.

    With ``enable_auto_commit`` off (the default) the offset of a message is
    committed once it has been handled or dead-lettered, so a crash can replay
    a message but never skip one. If the dead-letter topic cannot be reached
    the partition is rewound to that message and retried after a pause, so no
    later offset of the partition is committed over it. With it on, aiokafka
    commits fetched positions on its own interval and a crash can lose a
    message that was fetched but not yet handled.
    """

    class SafeRebalanceListener(ConsumerRebalanceListener):
        def __init__(self, owner: "KafkaEventConsumer"):
            self.owner = owner

        async def on_partitions_revoked(self, revoked):
            logging.info(f"[REBALANCE] Revoking partitions: {revoked}")
            async with self.owner._dispatch_lock:
                self.owner._drop_buffered(revoked)
                for tp in revoked:
                    self.owner._rewound.pop(tp, None)

        async def on_partitions_assigned(self, assigned):
            logging.info(f"[REBALANCE] Assigned new partitions: {assigned}")

    def __init__(self,
                 topic: str,
                 event_type: type[IntegrationEvent],
                 handler: EventHandler,
                 group_id: str,
                 settings: KafkaSettings | None = None,
                 publisher=KafkaProducerSingleton,
                 consumer_factory=AIOKafkaConsumer):
        self.topic = topic
        self.event_type = event_type
        self.handler = handler
        self.settings = settings or KafkaSettings.from_env()
        self.group_id = self.settings.group_for(group_id)
        self.publisher = publisher
        self._consumer_factory = consumer_factory
        self._queue: asyncio.Queue | None = None
        self._stopping = asyncio.Event()
        self._dispatch_lock = asyncio.Lock()
        self._rewound: dict[TopicPartition, int] = {}
        self._task: asyncio.Task | None = None

    async def start(self) -> asyncio.Task:
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run(), name=f"{self.group_id}:{self.topic}")
        return self._task

    async def close(self):
        task = self._task
        if task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(task, timeout=self.settings.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            logging.warning(f"Consumer for {self.topic} did not stop within "
                            f"{self.settings.shutdown_timeout_seconds}s and was cancelled")
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
            logging.info("Consumer task cancelled")
        except Exception:
            logging.error(f"Consumer for {self.topic} terminated with an error", exc_info=True)
        finally:
            self._task = None

    async def _wait_for_stop(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self):
        logging.info(f"Consumer for {self.topic} [group: {self.group_id}] starting...")
        # the broker may still be coming up in a fresh deployment
        if await self._wait_for_stop(self.settings.consumer_warmup_seconds):
            return
        consumer = await self._connect()
        if consumer is None:
            return
        fetcher = asyncio.create_task(self._fetch_messages(consumer))
        try:
            await self._consume_events(consumer, fetcher)
        finally:
            fetcher.cancel()
            await asyncio.gather(fetcher, return_exceptions=True)
            await consumer.stop()
            self._queue = None
            logging.info(f"Consumer for {self.topic} [group: {self.group_id}] stopped")

    async def _connect(self):
        while True:
            consumer = self._consumer_factory(
                bootstrap_servers=self.settings.bootstrap_servers,
                group_id=self.group_id,
                auto_offset_reset=self.settings.auto_offset_reset,
                enable_auto_commit=self.settings.enable_auto_commit,
                auto_commit_interval_ms=self.settings.auto_commit_interval_ms,
            )
            consumer.subscribe([self.topic], listener=self.SafeRebalanceListener(self))
            self._queue = asyncio.Queue(maxsize=self.settings.consumer_buffer_size)
            self._rewound.clear()
            try:
                await consumer.start()
            except KafkaError as e:
                logging.error(f"Could not start consumer for {self.topic}: {e}")
                await consumer.stop()
                if await self._wait_for_stop(1):
                    return None
                continue
            logging.info(f"Subscribed to topic: {self.topic}")
            return consumer

    async def _fetch_messages(self, consumer):
        while True:
            try:
                message = await consumer.getone()
            except KafkaError as e:
                logging.error(f"Error consuming message from {self.topic}: {e}")
                await asyncio.sleep(1)
                continue
            if TopicPartition(message.topic, message.partition) not in consumer.assignment():
                continue
            await self._queue.put(message)

    async def _consume_events(self, consumer, fetcher: asyncio.Task):
        while not self._stopping.is_set():
            message = await self._next_message(fetcher)
            if message is None:
                break
            async with self._dispatch_lock:
                if not self._should_dispatch(consumer, message):
                    continue
                handled = await self._run_to_completion(self._dispatch(consumer, message))
            if not handled:
                await self._wait_for_stop(self.settings.dead_letter_retry_backoff_ms / 1000)

    def _should_dispatch(self, consumer, message) -> bool:
        tp = TopicPartition(message.topic, message.partition)
        # a put may finish after the partition was revoked
        if tp not in consumer.assignment():
            return False
        rewound_to = self._rewound.get(tp)
        if rewound_to is not None:
            # fetched before the seek; it comes again after the rewound offset
            if message.offset > rewound_to:
                return False
            del self._rewound[tp]
        return True

    async def _next_message(self, fetcher: asyncio.Task):
        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stopping.wait())
        try:
            done, _ = await asyncio.wait({getter, stopper, fetcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if getter in done:
            return getter.result()
        if fetcher in done:
            fetcher.result()
        return None

    @staticmethod
    async def _run_to_completion(coro):
        work = asyncio.ensure_future(coro)
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            if not work.done():
                logging.info("Shutdown requested while handling a message; letting it finish")
                await work
            raise

    async def _dispatch(self, consumer, message) -> bool:
        source = f"{message.topic}:{message.partition}:{message.offset}"
        token = correlation_id_var.set(header_value(message, HEADER_CORRELATION_ID) or "-")
        try:
            logging.info(f"Received message from {message.topic} "
                         f"[Partition: {message.partition}, Offset: {message.offset}]")
            with tracer.start_as_current_span(
                f"{message.topic} process",
                kind=SpanKind.CONSUMER,
                attributes={
                    "messaging.system": "kafka",
                    "messaging.destination.name": message.topic,
                    "messaging.consumer.group.name": self.group_id,
                    "messaging.kafka.offset": message.offset,
                },
            ):
                if not await self._handle(message, source):
                    self._rewind(consumer, message)
                    return False
                await self._commit(consumer, message)
                return True
        finally:
            correlation_id_var.reset(token)

    async def _handle(self, message, source: str) -> bool:
        expected = self.event_type.__name__
        declared = header_value(message, HEADER_EVENT_TYPE)
        if declared and declared != expected and declared in EVENT_TYPES:
            logging.debug(f"Skipping {declared} at {source}; this consumer handles {expected}")
            return True

        event, err = decode_event(message.value, self.event_type)
        if err:
            logging.error(f"Malformed message at {source} [event-type: {declared or expected}]: {err}")
            return await self._dead_letter(message, DEAD_LETTER_MALFORMED, err)

        try:
            await self.handler(event)
        except Exception as e:
            logging.error(f"Handler failed for {expected} at {source} [EventId: {event.event_id}]", exc_info=True)
            return await self._dead_letter(message, DEAD_LETTER_HANDLER_ERROR, e)
        return True

    async def _dead_letter(self, message, reason: str, error: Exception) -> bool:
        source = f"{message.topic}:{message.partition}:{message.offset}"
        headers = list(message.headers or ()) + [
            (HEADER_DEAD_LETTER_REASON, reason.encode("utf-8")),
            (HEADER_DEAD_LETTER_ERROR, str(error).encode("utf-8")),
            (HEADER_DEAD_LETTER_SOURCE, source.encode("utf-8")),
        ]
        try:
            await self.publisher.send_raw(self.settings.dead_letter_topic, message.key, message.value, headers)
        except PublishError:
            logging.error(f"Could not dead-letter message at {source}; rewinding its partition", exc_info=True)
            return False
        logging.warning(f"Message at {source} sent to {self.settings.dead_letter_topic} [{reason}]")
        return True

    async def _commit(self, consumer, message):
        if self.settings.enable_auto_commit:
            return
        try:
            await consumer.commit({TopicPartition(message.topic, message.partition): message.offset + 1})
        except KafkaError as e:
            logging.warning(f"Could not commit offset {message.offset + 1} "
                            f"for {message.topic}:{message.partition}: {e}")

    def _drop_buffered(self, revoked):
        if self._queue is None:
            return
        revoked = set(revoked)
        kept = []
        while not self._queue.empty():
            message = self._queue.get_nowait()
            if TopicPartition(message.topic, message.partition) not in revoked:
                kept.append(message)
        for message in kept:
            self._queue.put_nowait(message)

    def _rewind(self, consumer, message):
        tp = TopicPartition(message.topic, message.partition)
        consumer.seek(tp, message.offset)
        self._rewound[tp] = message.offset
        self._drop_buffered([tp])
        logging.warning(f"Partition {message.topic}:{message.partition} rewound to offset {message.offset}; "
                        f"retrying in {self.settings.dead_letter_retry_backoff_ms}ms")
