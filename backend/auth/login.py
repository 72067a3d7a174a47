"""Nonce-based login handshake.

The client signs the decimal string of a nonce it tracks itself; the server
only enforces that each accepted nonce is strictly greater than the last one
for that user. No challenge round trip, no cross-attempt state in memory.

Steps per attempt:
  1. read stored nonce (0 if absent)
  2. proposed <= stored → ReplayError
  3. verify signature over str(proposed) with the key encoded in user_id
  4. conditionally advance the stored nonce (lost race → ReplayError)
  5. issue credential for (user_id, device_id)

The nonce is persisted before the credential exists, so a crash between
the two can only burn a nonce, never allow it to be replayed.
"""
import asyncio
import logging
from typing import Callable, Optional

from auth.nonce_store import NonceStore
from auth.signature import decode_signature, verify
from auth.tokens import issue_token
from config.settings import get_settings
from core.exceptions import AuthError, ReplayError, SignatureError
from devices.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class LoginHandshake:
    def __init__(
        self,
        nonces: NonceStore,
        registry: Optional[DeviceRegistry] = None,
        verifier: Callable[..., bool] = verify,
        issuer: Callable[[str, str], str] = issue_token,
    ):
        self.nonces = nonces
        self.registry = registry
        self.verifier = verifier
        self.issuer = issuer

    async def login(self, user_id: str, device_id: str, nonce: int, signature: str) -> str:
        """Authenticate user_id with a signed nonce and return a credential."""
        settings = get_settings()
        loop = asyncio.get_running_loop()

        stored = await self.nonces.get(user_id)
        if nonce <= stored:
            logger.warning("Login replay: user=%s proposed=%d stored=%d", user_id, nonce, stored)
            raise ReplayError(f"Nonce {nonce} is not greater than {stored}")

        sig = decode_signature(signature)
        message = str(nonce).encode("ascii")
        ok = await loop.run_in_executor(
            None,
            lambda: self.verifier(user_id, message, sig, settings.SS58_ADDRESS_PREFIX),
        )
        if not ok:
            logger.warning("Login signature rejected: user=%s nonce=%d", user_id, nonce)
            raise SignatureError("Signature does not match user")

        if settings.LOGIN_REQUIRE_REGISTERED_DEVICE:
            if self.registry is None or not await self.registry.exists(device_id):
                logger.warning("Login for unregistered device: user=%s device=%s", user_id, device_id)
                raise AuthError(f"Device not registered: {device_id}")

        if not await self.nonces.set_if_greater(user_id, nonce):
            logger.warning("Login nonce lost to concurrent login: user=%s nonce=%d", user_id, nonce)
            raise ReplayError(f"Nonce {nonce} already consumed")

        token = await loop.run_in_executor(None, self.issuer, user_id, device_id)
        logger.info("Login accepted: user=%s device=%s nonce=%d", user_id, device_id, nonce)
        return token
