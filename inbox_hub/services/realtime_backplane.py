"""
Redis pub/sub backplane for realtime events.

Each process publishes tenant events to ``<prefix>:tenant:<id>:events``
and relays every event it receives on those channels to its own local
sessions, so agents connected to any process see every update.
"""

import asyncio
from typing import Optional, TYPE_CHECKING

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

from inbox_hub.models.events import RealtimeEvent

if TYPE_CHECKING:
    from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster


class RedisBackplane:
    """Relays realtime events between processes through Redis pub/sub."""

    def __init__(self, redis: Redis, channel_prefix: str, reconnect_delay: float = 1.0):
        self.redis = redis
        self.channel_prefix = channel_prefix
        self.reconnect_delay = reconnect_delay
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._broadcaster: Optional["RealtimeBroadcaster"] = None
        self._task: Optional[asyncio.Task] = None

    def channel_for(self, tenant_id: str) -> str:
        return f"{self.channel_prefix}:tenant:{tenant_id}:events"

    def attach(self, broadcaster: "RealtimeBroadcaster") -> None:
        self._broadcaster = broadcaster
        broadcaster.backplane = self

    async def publish(self, event: RealtimeEvent) -> None:
        """
        Raises:
            RedisError: If the event could not be handed to Redis
        """
        await self.redis.publish(self.channel_for(event.tenant_id), event.model_dump_json())

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            self.logger.info("Realtime backplane started", channel_prefix=self.channel_prefix)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            self.logger.info("Realtime backplane stopped")

    async def _run(self) -> None:
        pattern = f"{self.channel_prefix}:tenant:*:events"
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.psubscribe(pattern)
                async for message in pubsub.listen():
                    if message.get("type") == "pmessage":
                        self._relay(message.get("data"))
            except RedisError as e:
                self.logger.error("Realtime backplane connection lost", error=str(e))
                await asyncio.sleep(self.reconnect_delay)
            finally:
                await pubsub.aclose()

    def _relay(self, data) -> None:
        if self._broadcaster is None or data is None:
            return
        try:
            event = RealtimeEvent.model_validate_json(data)
        except ValidationError as e:
            self.logger.warning("Discarding undecodable realtime event", error=str(e))
            return
        self._broadcaster.deliver_local(event)
