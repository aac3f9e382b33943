import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional

from core.config import settings
from core.logger import logger


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as vouched for by the identity provider."""
    external_id: str


def _sign(data: str) -> str:
    return hmac.new(settings.SECRET_KEY.encode(), data.encode(), hashlib.sha256).hexdigest()


def generate_token(external_id: str, timestamp: Optional[int] = None) -> str:
    """Issue a signed token. Format: {external_id}:{timestamp}:{signature}"""
    if ":" in external_id:
        raise ValueError("external_id must not contain ':'")
    ts = int(time.time()) if timestamp is None else timestamp
    data = f"{external_id}:{ts}"
    return f"{data}:{_sign(data)}"


def verify_token(token: str) -> Optional[Identity]:
    """
    Verify a signed token and return the caller's identity.
    Returns None for malformed, expired or tampered tokens.
    """
    if not token:
        return None

    parts = token.split(":")
    if len(parts) != 3:
        return None

    external_id, timestamp_str, signature = parts
    try:
        issued_at = int(timestamp_str)
    except ValueError:
        return None

    if int(time.time()) - issued_at > settings.TOKEN_TTL_SECONDS:
        logger.warning("Token expired", external_id=external_id)
        return None

    expected_signature = _sign(f"{external_id}:{timestamp_str}")
    if hmac.compare_digest(expected_signature, signature):
        return Identity(external_id=external_id)

    logger.warning("Token signature mismatch", external_id=external_id)
    return None
