"""
MongoDB Connection Management
============================

Connection management and index creation for the MongoDB store. The
unique indexes created here are what enforce the identity and
idempotence keys across processes.
"""

import asyncio
from typing import Optional, Dict, Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import IndexModel, ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, PyMongoError
import structlog

logger = structlog.get_logger(__name__)


class MongoDBConnectionManager:
    """
    MongoDB connection manager
    """

    def __init__(self, uri: str, database_name: str, max_pool_size: int = 100):
        """
        Initialize connection manager

        Args:
            uri: MongoDB connection URI
            database_name: Database to use
            max_pool_size: Connection pool upper bound
        """
        self.uri = uri
        self.database_name = database_name
        self.max_pool_size = max_pool_size
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> AsyncIOMotorDatabase:
        """
        Establish connection to MongoDB

        Returns:
            MongoDB database instance

        Raises:
            ConnectionFailure: If connection cannot be established
        """
        async with self._connection_lock:
            if self.client is None:
                logger.info("Connecting to MongoDB", database=self.database_name)
                self.client = AsyncIOMotorClient(
                    self.uri,
                    maxPoolSize=self.max_pool_size,
                    serverSelectionTimeoutMS=5000,
                    tz_aware=True,
                )
                self.database = self.client[self.database_name]
                try:
                    await self.client.admin.command("ping")
                except PyMongoError as e:
                    logger.error("Failed to connect to MongoDB", error=str(e))
                    self.client.close()
                    self.client = None
                    self.database = None
                    raise ConnectionFailure(f"Failed to connect to MongoDB: {e}") from e

                logger.info("Successfully connected to MongoDB")

            return self.database

    async def disconnect(self) -> None:
        """Disconnect from MongoDB"""
        async with self._connection_lock:
            if self.client:
                self.client.close()
                self.client = None
                self.database = None
                logger.info("Disconnected from MongoDB")

    async def health_check(self) -> Dict[str, Any]:
        health_info: Dict[str, Any] = {"connected": False, "database": self.database_name}
        if self.client is None:
            return health_info
        try:
            await self.client.admin.command("ping")
            health_info["connected"] = True
        except PyMongoError as e:
            health_info["error"] = str(e)
        return health_info


class MongoIndexManager:
    """MongoDB index management utilities"""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database
        self.logger = structlog.get_logger("MongoIndexManager")

    async def create_all_indexes(self) -> None:
        """Create all required indexes"""
        await self.database.platforms.create_indexes([
            # One live binding per Meta asset; inactive history rows may repeat
            IndexModel(
                [("type", ASCENDING), ("external_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"is_active": True},
                name="platform_active_asset_unique"
            ),
            IndexModel([("tenant_id", ASCENDING), ("type", ASCENDING)]),
        ])

        await self.database.customers.create_indexes([
            IndexModel(
                [("platform_id", ASCENDING), ("external_id", ASCENDING)],
                unique=True,
                name="customer_identity_unique"
            ),
            IndexModel([("tenant_id", ASCENDING)]),
        ])

        await self.database.conversations.create_indexes([
            IndexModel(
                [("platform_id", ASCENDING), ("customer_id", ASCENDING)],
                unique=True,
                name="conversation_thread_unique"
            ),
            IndexModel([("tenant_id", ASCENDING), ("last_activity_at", DESCENDING)]),
        ])

        await self.database.messages.create_indexes([
            IndexModel(
                [("platform_id", ASCENDING), ("platform_message_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"platform_message_id": {"$type": "string"}},
                name="message_platform_id_unique"
            ),
            IndexModel([
                ("conversation_id", ASCENDING),
                ("occurred_at", ASCENDING),
                ("platform_message_id", ASCENDING),
            ]),
            IndexModel([("conversation_id", ASCENDING), ("direction", ASCENDING), ("occurred_at", DESCENDING)]),
        ])

        self.logger.info("All MongoDB indexes created successfully")
