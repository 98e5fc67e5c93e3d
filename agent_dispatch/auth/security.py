import logging
from typing import Annotated, Optional

from fastapi import Depends, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import select

from agent_dispatch.api.deps import DbSession
from agent_dispatch.db.models import User

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


class AuthError(Exception):
    """Rendered as `{"message": ...}` with the given status by the app's handler."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


async def get_optional_user(
    session: DbSession,
    api_key: Optional[str] = Security(API_KEY_HEADER)
) -> Optional[User]:
    if not api_key:
        return None

    stmt = select(User).where(User.api_key == api_key)
    return await session.scalar(stmt)


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if not user:
        raise AuthError(401, "Authentication required")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        logger.warning(f"User {user.id} denied admin access")
        raise AuthError(403, "Unauthorized")
    return user


def ensure_owner_or_admin(user: User, owner_id: int) -> None:
    if user.id != owner_id and user.role != "admin":
        logger.warning(f"User {user.id} denied access to resources of user {owner_id}")
        raise AuthError(403, "Unauthorized")


CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_admin)]
