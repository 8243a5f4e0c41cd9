import os

from msgspec import Struct, field

from common.kafka.topics_config import DEAD_LETTER_TOPIC

AUTO_OFFSET_RESET_POLICIES = ("earliest", "latest")


class KafkaSettingsError(ValueError):
    pass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class KafkaSettings(Struct, kw_only=True):
    bootstrap_servers: list[str] = field(default_factory=lambda: ["localhost:19092"])
    group_id: str | None = None
    auto_offset_reset: str = "earliest"
    enable_auto_commit: bool = False
    auto_commit_interval_ms: int = 5000
    consumer_warmup_seconds: float = 5.0
    consumer_buffer_size: int = 100
    shutdown_timeout_seconds: float = 10.0
    producer_max_retries: int = 3
    producer_retry_backoff_ms: int = 1000
    request_timeout_ms: int = 30000
    dead_letter_topic: str = DEAD_LETTER_TOPIC
    dead_letter_retry_backoff_ms: int = 1000

    def __post_init__(self):
        self.auto_offset_reset = self.auto_offset_reset.lower()
        if self.auto_offset_reset not in AUTO_OFFSET_RESET_POLICIES:
            raise KafkaSettingsError(
                f"auto_offset_reset must be one of {AUTO_OFFSET_RESET_POLICIES}, got {self.auto_offset_reset!r}")
        if not self.bootstrap_servers:
            raise KafkaSettingsError("at least one bootstrap server is required")
        if self.consumer_buffer_size < 1:
            raise KafkaSettingsError("consumer_buffer_size must be positive")

    def group_for(self, default_group_id: str) -> str:
        """Group this service consumes under: the configured one or its fixed default."""
        return self.group_id or default_group_id

    @classmethod
    def from_env(cls) -> "KafkaSettings":
        servers = os.environ.get("KAFKA_BOOTSTRAP_SERVERS", "localhost:19092")
        try:
            return cls(
                bootstrap_servers=[s.strip() for s in servers.split(",") if s.strip()],
                group_id=os.environ.get("KAFKA_GROUP_ID") or None,
                auto_offset_reset=os.environ.get("KAFKA_AUTO_OFFSET_RESET", "earliest"),
                enable_auto_commit=_env_bool("KAFKA_ENABLE_AUTO_COMMIT", False),
                auto_commit_interval_ms=int(os.environ.get("KAFKA_AUTO_COMMIT_INTERVAL_MS", 5000)),
                consumer_warmup_seconds=float(os.environ.get("KAFKA_CONSUMER_WARMUP_SECONDS", 5)),
                consumer_buffer_size=int(os.environ.get("KAFKA_CONSUMER_BUFFER_SIZE", 100)),
                shutdown_timeout_seconds=float(os.environ.get("KAFKA_SHUTDOWN_TIMEOUT_SECONDS", 10)),
                producer_max_retries=int(os.environ.get("KAFKA_PRODUCER_MAX_RETRIES", 3)),
                producer_retry_backoff_ms=int(os.environ.get("KAFKA_PRODUCER_RETRY_BACKOFF_MS", 1000)),
                request_timeout_ms=int(os.environ.get("KAFKA_REQUEST_TIMEOUT_MS", 30000)),
                dead_letter_topic=DEAD_LETTER_TOPIC,
                dead_letter_retry_backoff_ms=int(os.environ.get("KAFKA_DEAD_LETTER_RETRY_BACKOFF_MS", 1000)),
            )
        except KafkaSettingsError:
            raise
        except ValueError as e:
            raise KafkaSettingsError(f"Invalid Kafka configuration: {e}") from e
