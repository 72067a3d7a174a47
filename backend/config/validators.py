"""Startup configuration validation guardrails."""

import logging


logger = logging.getLogger(__name__)

_DEFAULT_MONGO_URL = "mongodb://localhost:27017"


def _require_jwt_secret(settings) -> None:
    """Fail closed if JWT secret is not explicitly configured."""
    if not settings.JWT_SECRET or not settings.JWT_SECRET.strip():
        raise RuntimeError(
            "STARTUP FAILED — JWT_SECRET is required and cannot be empty. "
            "Set JWT_SECRET in backend/.env or container environment and restart the server."
        )


def validate_startup_config(settings) -> None:
    """Centralized startup guardrails for required and warning-level config."""
    _require_jwt_secret(settings)

    if settings.DEVICE_ID_MIN >= settings.DEVICE_ID_MAX:
        raise RuntimeError(
            f"STARTUP FAILED — empty device id range "
            f"[{settings.DEVICE_ID_MIN}, {settings.DEVICE_ID_MAX})"
        )
    if settings.DEVICE_ID_MAX_ATTEMPTS < 1:
        raise RuntimeError("STARTUP FAILED — DEVICE_ID_MAX_ATTEMPTS must be at least 1")

    if settings.ENV == "prod" and settings.MONGO_URL == _DEFAULT_MONGO_URL:
        raise RuntimeError(
            "STARTUP FAILED — MONGO_URL must be set explicitly in production."
        )

    if settings.SS58_ADDRESS_PREFIX is None:
        logger.warning("CONFIG WARNING: SS58_ADDRESS_PREFIX is not set — any network prefix accepted")
