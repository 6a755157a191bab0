"""
Bearer tokens for the acting user.

Staff sign in through the shop's identity service, which issues HS256
access tokens signed with the shared SECRET_KEY. This backend only reads
the subject: it is the user id recorded on receipts, returns and stock
movements.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from app.config import settings


ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: str | uuid.UUID, expires_delta: Optional[timedelta] = None) -> str:
    """Mint an access token for ``user_id`` (tooling and tests)."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def get_token_user_id(token: str) -> Optional[uuid.UUID]:
    """
    Acting user id carried by an access token.

    Returns None for a bad signature, an expired token, a token of another
    type or a subject that is not a UUID.
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != ACCESS_TOKEN_TYPE:
        return None

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None
