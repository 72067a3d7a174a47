"""Signature verification against address-encoded public keys.

A user id is an SS58 address: base58(prefix || pubkey || checksum), where
checksum is the first two bytes of blake2b-512(b"SS58PRE" || prefix || pubkey).
Owning the address means holding the matching Ed25519 signing key; there is
no separate registration step.
"""
import hashlib
import logging
import re
from typing import Optional, Tuple

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from core.exceptions import SignatureError

logger = logging.getLogger(__name__)

_SS58_PREFIX = b"SS58PRE"
_CHECKSUM_LEN = 2
PUBLIC_KEY_LEN = 32
SIGNATURE_LEN = 64
GENERIC_SUBSTRATE_PREFIX = 42

_SIGNATURE_HEX = re.compile(r"[0-9a-fA-F]{%d}" % (SIGNATURE_LEN * 2))


def _checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(_SS58_PREFIX + payload, digest_size=64).digest()[:_CHECKSUM_LEN]


def encode_ss58(public_key: bytes, prefix: int = GENERIC_SUBSTRATE_PREFIX) -> str:
    """Encode a 32-byte public key as an SS58 address."""
    if len(public_key) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(public_key)}")
    if not 0 <= prefix < 16384 or prefix in (46, 47):
        raise ValueError(f"invalid SS58 prefix: {prefix}")

    if prefix < 64:
        prefix_bytes = bytes([prefix])
    else:
        prefix_bytes = bytes([
            ((prefix & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000,
            (prefix >> 8) | ((prefix & 0b0000_0000_0000_0011) << 6),
        ])
    payload = prefix_bytes + public_key
    return base58.b58encode(payload + _checksum(payload)).decode("ascii")


def decode_ss58(address: str) -> Tuple[int, bytes]:
    """Decode an SS58 address into (prefix, public_key). Raises SignatureError."""
    try:
        raw = base58.b58decode(address)
    except ValueError as e:
        raise SignatureError(f"Invalid address encoding: {e}")

    if len(raw) < 1 + PUBLIC_KEY_LEN + _CHECKSUM_LEN:
        raise SignatureError("Invalid address length")

    if raw[0] & 0b1000_0000:
        raise SignatureError("Invalid address prefix")
    if raw[0] & 0b0100_0000:
        prefix_len = 2
        prefix = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6) | ((raw[1] & 0b0011_1111) << 8)
    else:
        prefix_len = 1
        prefix = raw[0]

    if len(raw) != prefix_len + PUBLIC_KEY_LEN + _CHECKSUM_LEN:
        raise SignatureError("Invalid address length")

    payload, checksum = raw[:-_CHECKSUM_LEN], raw[-_CHECKSUM_LEN:]
    if _checksum(payload) != checksum:
        raise SignatureError("Invalid address checksum")

    return prefix, payload[prefix_len:]


def decode_signature(signature: str) -> bytes:
    """Decode a 0x-prefixed hex signature. Raises SignatureError."""
    text = signature[2:] if signature.startswith(("0x", "0X")) else signature
    # bytes.fromhex would skip embedded whitespace
    if not _SIGNATURE_HEX.fullmatch(text):
        raise SignatureError(f"Signature must be {SIGNATURE_LEN} bytes of hex")
    return bytes.fromhex(text)


def verify(
    address: str,
    message: bytes,
    signature: bytes,
    expected_prefix: Optional[int] = None,
) -> bool:
    """Verify signature over message for the key encoded in address.

    Returns False when the signature does not verify. Raises SignatureError
    when the address or the signature bytes are malformed.
    """
    prefix, public_key = decode_ss58(address)
    if expected_prefix is not None and prefix != expected_prefix:
        raise SignatureError(f"Address network prefix {prefix} not accepted")
    if len(signature) != SIGNATURE_LEN:
        raise SignatureError(f"Signature must be {SIGNATURE_LEN} bytes, got {len(signature)}")

    try:
        VerifyKey(public_key).verify(message, signature)
    except BadSignatureError:
        logger.debug("Signature mismatch for address=%s", address)
        return False
    return True


def verify_signature(
    address: str,
    message: str,
    signature_hex: str,
    expected_prefix: Optional[int] = None,
) -> bool:
    """Verify a hex signature over a text message."""
    return verify(address, message.encode("ascii"), decode_signature(signature_hex), expected_prefix)
