"""Secret scrubbing for log lines and audit details.

Credentials issued by the gateway, login signatures and key material must
never reach a log sink. Addresses, device ids and nonces are public and
left intact.
"""
import re
from typing import Any, Iterable, Pattern, Tuple

_RULES: Tuple[Tuple[str, Pattern], ...] = (
    ("JWT", re.compile(r"eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+")),
    # Ed25519 signatures are 64 bytes, seeds and secret keys 32 or 64
    ("SIGNATURE", re.compile(r"\b0x[0-9a-fA-F]{64,}\b")),
    ("MONGO_URI", re.compile(r"mongodb(?:\+srv)?://\S+")),
    ("BEARER", re.compile(r"\bBearer\s+[\w.-]+", re.IGNORECASE)),
    ("SECRET", re.compile(
        r"(?:secret|password|token|seed|private[_-]?key)[\s:=]+[\"']?[\w.-]{20,}[\"']?",
        re.IGNORECASE,
    )),
)

SENSITIVE_KEYS = frozenset({
    "authorization", "jwt", "password", "private_key", "secret", "seed", "signature", "token",
})


def redact(text: str) -> str:
    for label, pattern in _RULES:
        text = pattern.sub(f"[REDACTED_{label}]", text)
    return text


def _scrub(value: Any, keys: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return redact_dict(value, keys)
    if isinstance(value, (list, tuple)):
        return [_scrub(item, keys) for item in value]
    if isinstance(value, str):
        return redact(value)
    return value


def redact_dict(data: dict, sensitive_keys: Iterable[str] = SENSITIVE_KEYS) -> dict:
    """Copy of data with sensitive keys masked and string values scrubbed, recursively."""
    keys = frozenset(sensitive_keys)
    return {
        k: "[REDACTED]" if str(k).lower() in keys else _scrub(v, keys)
        for k, v in data.items()
    }
