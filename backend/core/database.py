"""Motor client lifecycle and the indexes the gateway's stores depend on.

The nonce store's conditional upsert and the registry's insert-if-absent
claim are only atomic because of the unique indexes created here, so
init_indexes() must run before the first session is served.
"""
import logging
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel

from config.settings import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None

_INDEXES: Dict[str, List[IndexModel]] = {
    "nonce": [IndexModel([("user_id", ASCENDING)], unique=True, name="uniq_user")],
    "device": [IndexModel([("device_id", ASCENDING)], unique=True, name="uniq_device")],
    "audit_events": [
        IndexModel([("user_id", ASCENDING), ("timestamp", DESCENDING)], name="user_time"),
        IndexModel([("conn_id", ASCENDING)], name="conn"),
        IndexModel([("event_type", ASCENDING)], name="event_type"),
    ],
}


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(
            settings.MONGO_URL,
            serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
            tz_aware=True,
        )
    return _client


def get_db() -> AsyncIOMotorDatabase:
    global _db
    if _db is None:
        _db = get_client()[get_settings().DB_NAME]
    return _db


async def init_indexes() -> None:
    db = get_db()
    for collection, indexes in _INDEXES.items():
        names = await db[collection].create_indexes(indexes)
        logger.info("Indexes ready: collection=%s indexes=%s", collection, ",".join(names))


async def close_db() -> None:
    global _client, _db
    if _client is None:
        return
    _client.close()
    _client, _db = None, None
    logger.info("MongoDB connection closed")
