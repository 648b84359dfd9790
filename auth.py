from __future__ import annotations
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from database import DocumentStore, get_store
from schemas import User

logger = logging.getLogger(__name__)

USER_COLLECTION = "users"


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    store: DocumentStore = Depends(get_store),
) -> User:
    """Resolve the caller from the identity header set by the auth gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User not authenticated.")
    profile = await store.get_document(USER_COLLECTION, x_user_id)
    if profile is None:
        logger.debug("No profile stored for user %s", x_user_id)
        return User(uid=x_user_id)
    return User(
        uid=x_user_id,
        email=profile.get("email"),
        display_name=profile.get("username") or profile.get("displayName"),
    )
