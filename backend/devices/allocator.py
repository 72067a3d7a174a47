"""Device identity allocator.

Draws uniformly random 9-digit ids from [DEVICE_ID_MIN, DEVICE_ID_MAX) and
returns the first one absent from the registry. With 900M possible values a
bounded retry loop beats any reservation scheme; the bound turns a
pathological collision run into an explicit ExhaustedError.

When a claim callback is given, a candidate only counts once the callback
has atomically taken it (insert-if-absent), so two concurrent allocations
never hand out the same id.
"""
import logging
import secrets
from typing import Awaitable, Callable, Optional

from config.settings import get_settings
from core.exceptions import ExhaustedError
from devices.registry import DeviceRegistry

logger = logging.getLogger(__name__)

ClaimFn = Callable[[str], Awaitable[bool]]


class DeviceIdAllocator:
    """Generates registry-unique device ids."""

    def __init__(
        self,
        registry: DeviceRegistry,
        min_id: Optional[int] = None,
        max_id: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.registry = registry
        self.min_id = settings.DEVICE_ID_MIN if min_id is None else min_id
        self.max_id = settings.DEVICE_ID_MAX if max_id is None else max_id
        self.max_attempts = settings.DEVICE_ID_MAX_ATTEMPTS if max_attempts is None else max_attempts

    def _draw(self) -> str:
        return str(self.min_id + secrets.randbelow(self.max_id - self.min_id))

    async def allocate(self, claim: Optional[ClaimFn] = None) -> str:
        """Return a device id not present in the registry.

        Raises ExhaustedError after max_attempts candidates collided.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._draw()
            if await self.registry.exists(candidate):
                logger.debug("Device id collision: candidate=%s attempt=%d", candidate, attempt)
                continue
            if claim is not None and not await claim(candidate):
                logger.info("Device id lost to concurrent claim: candidate=%s attempt=%d", candidate, attempt)
                continue
            return candidate

        logger.error("Device id allocation exhausted after %d attempts", self.max_attempts)
        raise ExhaustedError(f"No free device id after {self.max_attempts} attempts")
