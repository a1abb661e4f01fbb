"""Security utilities: bearer tokens and content hashing."""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# JWT Token handling
class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # Identity ID
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    identity_id: UUID,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token.

    Token issuance belongs to the identity provider; this helper exists for
    development seeding and tests.
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(identity_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token (HS256)."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None


# Content hashing for integrity
def hash_content(content: str) -> str:
    """Create SHA-256 hash of content for integrity verification."""
    return hashlib.sha256(content.encode()).hexdigest()
