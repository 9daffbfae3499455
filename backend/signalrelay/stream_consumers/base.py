from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import asyncio
import logging
import os
import json
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit
from redis.asyncio import Redis
from signalrelay.core.config import settings
from signalrelay.core.metrics import metrics

logger = logging.getLogger(__name__)


def _redact_url(url: str) -> str:
    try:
        parts = urlsplit(url)
        username = parts.username or ""
        hostname = parts.hostname or ""
        port = f":{parts.port}" if parts.port else ""
        auth = f"{username}:{'***' if parts.password else ''}@" if username else ""
        return urlunsplit((parts.scheme, f"{auth}{hostname}{port}", parts.path, parts.query, parts.fragment))
    except ValueError:
        return url


class BaseStreamConsumer(ABC):
    """Consumer-group reader for one Redis stream, with retry and a dead-letter stream."""

    def __init__(
        self,
        redis_url: str,
        stream_name: str,
        consumer_group: str,
        consumer_name: Optional[str] = None,
        block_ms: int = 5000,
        batch_count: int = 1,
        max_retries: int = 3,
    ):
        self.redis_url = redis_url
        self.stream_name = stream_name
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name or f"{consumer_group}-{os.getpid()}"
        self.block_ms = block_ms
        self.batch_count = batch_count
        self.max_retries = max_retries
        self._running = False
        self.redis: Optional[Redis] = None

    @property
    def dlq_stream(self) -> str:
        return f"{self.stream_name}-dlq"

    async def start(self) -> None:
        """Create the consumer group if needed and consume until stopped."""
        self.redis = Redis.from_url(self.redis_url, decode_responses=True)
        logger.info(f"Using database {_redact_url(settings.DATABASE_URL)}")

        if settings.METRICS_REDIS_ENABLED:
            metrics.set_redis(self.redis)

        try:
            # Start at '$': only signals stored after the group exists
            await self.redis.xgroup_create(
                self.stream_name, self.consumer_group, id="$", mkstream=True
            )
            logger.info(f"Created consumer group {self.consumer_group} on {self.stream_name}")
        except Exception as e:
            if "BUSYGROUP" in str(e):
                logger.info(f"Consumer group {self.consumer_group} already exists")
            else:
                raise

        self._running = True
        logger.info(f"Consumer {self.consumer_name} starting on {self.stream_name}")
        await self._consume_loop()

    async def _consume_loop(self) -> None:
        if not self.redis:
            raise RuntimeError("Redis client not initialized")

        while self._running:
            try:
                # '>' means messages never delivered to other consumers in this group
                messages = await self.redis.xreadgroup(
                    self.consumer_group,
                    self.consumer_name,
                    {self.stream_name: ">"},
                    count=self.batch_count,
                    block=self.block_ms,
                )
                if not messages:
                    continue

                for _stream, stream_messages in messages:
                    for message_id, data in stream_messages:
                        await self._process_with_retry(message_id, data)

            except asyncio.CancelledError:
                self._running = False
                break
            except Exception as e:
                logger.error(f"Error in consume loop: {e}")
                await asyncio.sleep(5)

    async def _process_with_retry(self, message_id: str, data: Dict[str, Any]) -> None:
        if not self.redis:
            return

        for attempt in range(self.max_retries):
            try:
                await self.process_message(message_id, data)
                await self.redis.xack(self.stream_name, self.consumer_group, message_id)
                return
            except Exception as e:
                logger.error(f"Attempt {attempt + 1}/{self.max_retries} failed for msg {message_id}: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                else:
                    # Park it in the DLQ and ack so the group does not stall
                    await self._send_to_dlq(message_id, data, str(e))
                    await self.redis.xack(self.stream_name, self.consumer_group, message_id)

    async def _send_to_dlq(self, message_id: str, data: Dict[str, Any], error: str) -> None:
        if not self.redis:
            return

        await self.redis.xadd(self.dlq_stream, {
            "original_id": message_id,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": json.dumps(data),
        })
        logger.error(f"Sent {message_id} to DLQ: {self.dlq_stream}")

    @abstractmethod
    async def process_message(self, message_id: str, data: Dict[str, Any]) -> None:
        """Process a single message. Must be implemented by subclass."""
        pass

    async def stop(self) -> None:
        """Gracefully stop the consumer."""
        self._running = False
        if self.redis:
            await self.redis.close()
