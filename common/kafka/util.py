import asyncio
import logging

from aiokafka.errors import KafkaConnectionError, KafkaError

# Only errors raised before the record reached the producer's accumulator are
# resent. A timed-out send may already be on the broker, and a second
# send_and_wait gets a new sequence number that idempotence cannot deduplicate;
# aiokafka retries those batches itself within request_timeout_ms.
RESENDABLE_ERRORS = (KafkaConnectionError,)


def is_resendable(error: KafkaError) -> bool:
    return isinstance(error, RESENDABLE_ERRORS)


async def retry_kafka_call(func, *args, retries=3, backoff_ms=1000, **kwargs):
    """Await ``func`` and retry connection errors with exponential backoff.

    ``retries`` counts the extra attempts after the first one. The last error is
    re-raised once they are used up; every other broker error is re-raised at once.
    """
    for attempt in range(retries + 1):
        try:
            return await func(*args, **kwargs)
        except KafkaError as e:
            if not is_resendable(e) or attempt >= retries:
                raise
            delay = backoff_ms * (2 ** attempt) / 1000
            logging.info(f"Attempt {attempt + 1} failed: {e},  {type(e).__name__}: retrying in {delay}s")
            await asyncio.sleep(delay)
