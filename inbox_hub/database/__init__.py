"""
Database connection managers for MongoDB and Redis.
"""

from inbox_hub.database.mongodb import MongoDBConnectionManager, MongoIndexManager
from inbox_hub.database.redis_client import RedisConnectionManager

__all__ = ["MongoDBConnectionManager", "MongoIndexManager", "RedisConnectionManager"]
