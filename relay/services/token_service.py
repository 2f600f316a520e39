"""Short-lived tokens authorizing the assistant's reply callback."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from jwt import InvalidTokenError

from relay.logging_config import get_logger
from relay.services.errors import ConfigurationError, MissingTokenError

logger = get_logger("token_service")

TOKEN_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(minutes=5)
SUBJECT_CLAIM = "assistantSid"


def _require_secret(secret: Optional[str]) -> str:
    if not secret:
        raise ConfigurationError("No auth token found")
    return secret


def mint_token(secret: Optional[str], subject_id: str, now: Optional[datetime] = None) -> str:
    """Sign a token carrying subject_id as its only claim, valid for five minutes."""
    key = _require_secret(secret)
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        SUBJECT_CLAIM: subject_id,
        "iat": issued_at,
        "exp": issued_at + TOKEN_LIFETIME,
    }
    return jwt.encode(payload, key, algorithm=TOKEN_ALGORITHM)


def decode_claims(secret: Optional[str], token: Optional[str]) -> Optional[dict[str, Any]]:
    """Return verified claims, or None when the token is invalid or expired.

    Raises MissingTokenError for an empty token and ConfigurationError for an
    empty secret; a malformed token is never an exception.
    """
    if not token:
        raise MissingTokenError()
    key = _require_secret(secret)

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except InvalidTokenError as exc:
        logger.warning("Failed to verify token", extra={"context": {"error": str(exc)}})
        return None

    if not isinstance(claims, dict) or SUBJECT_CLAIM not in claims:
        logger.warning("Token is missing the subject claim")
        return None
    return claims


def verify_token(secret: Optional[str], token: Optional[str]) -> bool:
    return decode_claims(secret, token) is not None
