"""In-memory stores, a scripted connection and signing users for tests."""
import asyncio
from typing import Dict, List, Optional, Union

from nacl.signing import SigningKey

from auth.nonce_store import NonceStore
from auth.signature import encode_ss58
from core.exceptions import StoreError, TransportError
from devices.registry import DeviceRegistry
from gateway.transport import Connection, Inbound, InboundKind
from schemas.device import DeviceRecord, utc_now


class MemoryNonceStore(NonceStore):
    def __init__(self):
        self.nonces: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> int:
        return self.nonces.get(user_id, 0)

    async def set_if_greater(self, user_id: str, nonce: int) -> bool:
        async with self._lock:
            if nonce <= self.nonces.get(user_id, 0):
                return False
            self.nonces[user_id] = nonce
            return True


class BrokenNonceStore(NonceStore):
    async def get(self, user_id: str) -> int:
        raise StoreError("connection refused")

    async def set_if_greater(self, user_id: str, nonce: int) -> bool:
        raise StoreError("connection refused")


class MemoryDeviceRegistry(DeviceRegistry):
    def __init__(self):
        self.devices: Dict[str, DeviceRecord] = {}
        self._lock = asyncio.Lock()

    async def exists(self, device_id: str) -> bool:
        # Yield so concurrent registrations interleave like real I/O
        await asyncio.sleep(0)
        return device_id in self.devices

    async def insert_if_absent(self, record: DeviceRecord) -> bool:
        async with self._lock:
            if record.device_id in self.devices:
                return False
            self.devices[record.device_id] = record
            return True

    async def upsert(self, record: DeviceRecord) -> DeviceRecord:
        async with self._lock:
            existing = self.devices.get(record.device_id)
            update = {"update_time": utc_now()}
            if existing is not None:
                update["add_time"] = existing.add_time
            record = record.model_copy(update=update)
            self.devices[record.device_id] = record
            return record

    async def get(self, device_id: str) -> Optional[DeviceRecord]:
        return self.devices.get(device_id)


class User:
    """A self-certifying identity: SS58 address plus its signing key."""

    def __init__(self, prefix: int = 42):
        self.signing_key = SigningKey.generate()
        self.address = encode_ss58(bytes(self.signing_key.verify_key), prefix)

    def sign(self, nonce: int) -> str:
        return "0x" + self.signing_key.sign(str(nonce).encode("ascii")).signature.hex()


Scripted = Union[str, bytes, Exception, None]


class FakeConnection(Connection):
    """Connection fed from a queue: str → text, bytes → binary,
    Exception → raised from receive(), None → end-of-stream."""

    def __init__(self, frames: Optional[List[Scripted]] = None, probe_ok: bool = True, peer: str = "10.0.0.1:5000"):
        self.peer = peer
        self.probe_ok = probe_ok
        self.probed = False
        self.fail_writes = False
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self._closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        for frame in frames or []:
            self.feed(frame)

    def feed(self, frame: Scripted) -> None:
        self._queue.put_nowait(frame)

    async def probe(self) -> None:
        self.probed = True
        if not self.probe_ok:
            self._closed = True
            raise TransportError("peer gone")

    async def receive(self) -> Inbound:
        frame = await self._queue.get()
        if isinstance(frame, Exception):
            raise frame
        if frame is None:
            self._closed = True
            return Inbound(InboundKind.CLOSED)
        if isinstance(frame, bytes):
            return Inbound(InboundKind.BINARY, frame)
        return Inbound(InboundKind.TEXT, frame)

    async def send_text(self, text: str) -> None:
        if self.fail_writes:
            raise TransportError("broken pipe")
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self._closed = True

    def mark_closed(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
