"""
Redis Connection Management
==========================

Redis connection used by the realtime pub/sub backplane.
"""

import asyncio
from typing import Optional, Dict, Any

from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

logger = structlog.get_logger(__name__)


class RedisConnectionManager:
    """
    Redis connection manager
    """

    def __init__(self, url: str, max_connections: int = 50, socket_timeout: float = 5.0):
        self.url = url
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.client: Optional[Redis] = None
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> Redis:
        """
        Establish connection to Redis

        Raises:
            RedisError: If the server does not answer a ping
        """
        async with self._connection_lock:
            if self.client is None:
                logger.info("Connecting to Redis")
                client = Redis.from_url(
                    self.url,
                    max_connections=self.max_connections,
                    socket_timeout=self.socket_timeout,
                    decode_responses=True,
                )
                try:
                    await client.ping()
                except RedisError as e:
                    logger.error("Failed to connect to Redis", error=str(e))
                    await client.aclose()
                    raise
                self.client = client
                logger.info("Successfully connected to Redis")

            return self.client

    async def disconnect(self) -> None:
        async with self._connection_lock:
            if self.client is not None:
                await self.client.aclose()
                self.client = None
                logger.info("Disconnected from Redis")

    async def health_check(self) -> Dict[str, Any]:
        health_info: Dict[str, Any] = {"connected": False}
        if self.client is None:
            return health_info
        try:
            await self.client.ping()
            health_info["connected"] = True
        except RedisError as e:
            health_info["error"] = str(e)
        return health_info
