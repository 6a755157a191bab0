from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import get_token_user_id
from app.services.notification_service import NotificationDispatcher


logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> uuid.UUID:
    """
    Acting user id from the bearer token's subject.

    Only identifies the caller for audit fields (created_by, approved_by,
    ...); what the caller may do is decided upstream.
    """
    user_id = get_token_user_id(credentials.credentials)
    if user_id is None:
        logger.warning("Rejected request with an invalid or expired access token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def get_notifier() -> NotificationDispatcher:
    """Outbox writer for the workflow services; overridden in tests."""
    return NotificationDispatcher()


DB = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Notifier = Annotated[NotificationDispatcher, Depends(get_notifier)]
