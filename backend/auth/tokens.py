"""Device credentials: HS256 JWTs binding a user address to a device id.

Credentials expire JWT_EXPIRY_SECONDS after issue (14 days by default).
A session hands a fresh credential to its client without decoding it;
validate_token serves the bearer routes and device re-registration.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, ValidationError

from config.settings import get_settings
from core.exceptions import AuthError

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "iss"]


class TokenClaims(BaseModel):
    user_id: str
    device_id: str
    iss: str
    sub: str
    iat: int
    exp: int


def _signing_key() -> str:
    # Fail closed: never sign or verify with an empty key
    secret = get_settings().JWT_SECRET
    if not secret:
        raise AuthError("JWT secret is not configured")
    return secret


def issue_token(user_id: str, device_id: str, ttl: Optional[timedelta] = None) -> str:
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    expires = issued + (ttl if ttl is not None else timedelta(seconds=settings.JWT_EXPIRY_SECONDS))
    claims = TokenClaims(
        user_id=user_id,
        device_id=device_id,
        iss=settings.JWT_ISSUER,
        sub=settings.JWT_SUBJECT,
        iat=int(issued.timestamp()),
        exp=int(expires.timestamp()),
    )
    token = jwt.encode(claims.model_dump(), _signing_key(), algorithm=settings.JWT_ALGORITHM)
    logger.info("Token issued: user=%s device=%s exp=%s", user_id, device_id, expires.isoformat())
    return token


def validate_token(token: str) -> TokenClaims:
    """Verify signature, expiry and issuer. Raises AuthError on any failure."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            _signing_key(),
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options={"require": _REQUIRED_CLAIMS},
        )
        return TokenClaims.model_validate(payload)
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise AuthError(f"Invalid token: {e}")
    except ValidationError as e:
        logger.warning("Token claims incomplete: %d errors", e.error_count())
        raise AuthError("Invalid token: missing claims")
