"""Per-user login nonce store.

One counter per user id, strictly increasing across accepted logins.
A missing record reads as 0. Writes go through set_if_greater so two
concurrent logins can never both consume the same nonce.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.database import get_db
from core.exceptions import StoreError

logger = logging.getLogger(__name__)

NONCE_COLLECTION = "nonce"


class NonceStore(ABC):
    """Durable mapping user_id -> last accepted nonce."""

    @abstractmethod
    async def get(self, user_id: str) -> int:
        """Return the stored nonce, 0 if none."""
        ...

    @abstractmethod
    async def set_if_greater(self, user_id: str, nonce: int) -> bool:
        """Atomically store nonce if it exceeds the stored value.

        Returns False, leaving the record untouched, when the stored value
        is already >= nonce.
        """
        ...


def _to_int(value) -> int:
    if isinstance(value, Decimal128):
        return int(value.to_decimal())
    return int(value)


class MongoNonceStore(NonceStore):
    """Nonce store backed by the `nonce` collection.

    Counters are stored as Decimal128 so the whole u64 range compares
    numerically on the server. Requires the unique index on user_id
    created by core.database.init_indexes.
    """

    def __init__(self, db: AsyncIOMotorDatabase | None = None):
        self._db = db

    @property
    def _collection(self):
        db = self._db if self._db is not None else get_db()
        return db[NONCE_COLLECTION]

    async def get(self, user_id: str) -> int:
        try:
            doc = await self._collection.find_one({"user_id": user_id}, {"_id": 0, "nonce": 1})
        except PyMongoError as e:
            logger.error("Nonce read failed: user=%s error=%s", user_id, str(e))
            raise StoreError(f"Nonce read failed: {e}")
        if doc is None:
            return 0
        return _to_int(doc["nonce"])

    async def set_if_greater(self, user_id: str, nonce: int) -> bool:
        value = Decimal128(str(nonce))
        try:
            # No match on an existing lower counter falls through to the
            # upsert, which the unique index rejects when a record exists.
            await self._collection.update_one(
                {"user_id": user_id, "nonce": {"$lt": value}},
                {"$set": {
                    "user_id": user_id,
                    "nonce": value,
                    "update_time": datetime.now(timezone.utc),
                }},
                upsert=True,
            )
        except DuplicateKeyError:
            logger.info("Nonce not advanced: user=%s proposed=%d", user_id, nonce)
            return False
        except PyMongoError as e:
            logger.error("Nonce write failed: user=%s error=%s", user_id, str(e))
            raise StoreError(f"Nonce write failed: {e}")
        logger.debug("Nonce advanced: user=%s nonce=%d", user_id, nonce)
        return True
