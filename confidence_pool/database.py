"""
🔌 Database connection - MongoDB

One client per process, opened and closed by the app lifespan. The unified
pick merge runs in multi-document transactions, so the deployment must be a
replica set (Atlas clusters are).
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from confidence_pool.core.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Process-wide MongoDB connection"""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect(cls, settings: Settings):
        if cls.client is not None:
            return

        cls.client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=10,
            minPoolSize=2,
            tz_aware=True,  # stored timestamps come back as aware UTC datetimes
        )
        cls.db = cls.client[settings.mongodb_db_name]

        await cls.client.admin.command("ping")
        logger.info(f"✅ Connected to MongoDB: {settings.mongodb_db_name}")

    @classmethod
    async def disconnect(cls):
        if cls.client is None:
            return
        cls.client.close()
        cls.client = None
        cls.db = None
        logger.info("❌ Disconnected from MongoDB")

    @classmethod
    async def is_connected(cls) -> bool:
        """Answers the /health check; False when never connected or unreachable"""
        if cls.client is None:
            return False
        try:
            await cls.client.admin.command("ping")
        except PyMongoError as e:
            logger.warning(f"⚠️ MongoDB ping failed: {e}")
            return False
        return True

    @classmethod
    def get_db(cls) -> AsyncIOMotorDatabase:
        if cls.db is None:
            raise RuntimeError("Database not connected, the app lifespan has not run")
        return cls.db
