"""Redis event sink for cross-process event delivery."""

from __future__ import annotations

from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import WorkflowEvent
from .base import BaseEventSink


class RedisEventSink(BaseEventSink):
    """Push JSON-encoded events onto a Redis list."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key: str = "stepgraph:events",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisEventSink")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key = key
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish event to the configured Redis list."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.key, event.to_json())
