import json
import logging
import time
from typing import Any

import redis
from opentelemetry import trace
from redis.exceptions import RedisError

from core.correlation import get_current_correlation_id
from metrics.prometheus_exporter import observe_latency, record_error
from pubsub.channels import ALL_CHANNELS
from settings import RedisSettings

logger = logging.getLogger(__name__)


_tracer = trace.get_tracer(__name__)


class RedisPublisher:
    """Synchronous Redis publisher for notifications and live updates.

    Uses the sync Redis client so it can be called from request threads
    and from the sweeper worker threads alike. Publishing is fire-and-forget:
    connection failures are logged and counted, never raised.
    """

    def __init__(self, config: dict[str, Any], client: Any | None = None):
        self.config = config
        self._client = client or redis.Redis(
            host=config["host"],
            port=config["port"],
            db=config.get("db", 0),
            password=config.get("password"),
            ssl=config.get("ssl", False),
            decode_responses=True,
        )

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisPublisher":
        return cls(
            {
                "host": settings.host,
                "port": settings.port,
                "password": settings.password,
                "ssl": settings.ssl,
            }
        )

    def publish_sync(self, channel: str, message: dict[str, Any]) -> None:
        """Synchronous publish method."""
        if channel not in ALL_CHANNELS:
            raise ValueError(
                f"Channel '{channel}' is not a valid channel. Valid channels: {ALL_CHANNELS}"
            )

        with _tracer.start_as_current_span("redis.publish") as span:
            span.set_attribute("db.system", "redis")
            span.set_attribute("db.redis.channel", channel)

            # Bridge correlation_id to trace span
            correlation_id = get_current_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)

            start_time = time.perf_counter()
            try:
                json_message = json.dumps(message, default=str)
                self._client.publish(channel, json_message)
                latency_ms = (time.perf_counter() - start_time) * 1000
                observe_latency("redis", latency_ms)
            except RedisError as e:
                span.record_exception(e)
                record_error("redis", type(e).__name__)
                logger.error(f"Failed to publish to channel {channel}: {e}")

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self._client.close()
