"""Device registry — durable mapping device_id -> DeviceRecord."""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.database import get_db
from core.exceptions import StoreError
from schemas.device import DeviceRecord, utc_now

logger = logging.getLogger(__name__)

DEVICE_COLLECTION = "device"


class DeviceRegistry(ABC):
    """Abstract device registry."""

    @abstractmethod
    async def exists(self, device_id: str) -> bool:
        ...

    @abstractmethod
    async def insert_if_absent(self, record: DeviceRecord) -> bool:
        """Atomically claim record.device_id. False if already taken."""
        ...

    @abstractmethod
    async def upsert(self, record: DeviceRecord) -> DeviceRecord:
        """Create or update a record. Refreshes update_time, keeps add_time."""
        ...

    @abstractmethod
    async def get(self, device_id: str) -> Optional[DeviceRecord]:
        ...


class MongoDeviceRegistry(DeviceRegistry):
    """Registry backed by the `device` collection (unique device_id index)."""

    def __init__(self, db: AsyncIOMotorDatabase | None = None):
        self._db = db

    @property
    def _collection(self):
        db = self._db if self._db is not None else get_db()
        return db[DEVICE_COLLECTION]

    async def exists(self, device_id: str) -> bool:
        try:
            doc = await self._collection.find_one({"device_id": device_id}, {"_id": 1})
        except PyMongoError as e:
            logger.error("Device lookup failed: device=%s error=%s", device_id, str(e))
            raise StoreError(f"Device lookup failed: {e}")
        return doc is not None

    async def insert_if_absent(self, record: DeviceRecord) -> bool:
        try:
            await self._collection.insert_one(record.to_doc())
        except DuplicateKeyError:
            logger.info("Device id already claimed: device=%s", record.device_id)
            return False
        except PyMongoError as e:
            logger.error("Device insert failed: device=%s error=%s", record.device_id, str(e))
            raise StoreError(f"Device insert failed: {e}")
        return True

    async def upsert(self, record: DeviceRecord) -> DeviceRecord:
        record = record.model_copy(update={"update_time": utc_now()})
        doc = record.to_doc()
        add_time = doc.pop("add_time")
        try:
            await self._collection.update_one(
                {"device_id": record.device_id},
                {"$set": doc, "$setOnInsert": {"add_time": add_time}},
                upsert=True,
            )
        except PyMongoError as e:
            logger.error("Device upsert failed: device=%s error=%s", record.device_id, str(e))
            raise StoreError(f"Device upsert failed: {e}")
        return record

    async def get(self, device_id: str) -> Optional[DeviceRecord]:
        try:
            doc = await self._collection.find_one({"device_id": device_id}, {"_id": 0})
        except PyMongoError as e:
            logger.error("Device lookup failed: device=%s error=%s", device_id, str(e))
            raise StoreError(f"Device lookup failed: {e}")
        if doc is None:
            return None
        return DeviceRecord(**doc)
