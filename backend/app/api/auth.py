############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# auth.py: Session-cookie authentication dependencies
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Authentication dependencies.

Accounts and login live in the auth collaborator; this service only reads
the signed session cookie it issues.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.identity import get_session_user_id
from backend.app.db import crud
from backend.app.db.models import User
from backend.app.db.session import get_async_db
from backend.app.errors import AuthenticationRequired, PermissionDenied
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
) -> Optional[User]:
    """The active user behind the session cookie, or None."""
    user_id = get_session_user_id(request)
    if user_id is None:
        return None
    user = await crud.get_user_by_id(db, user_id)
    if not user or not user.is_active:
        return None
    return user


async def get_current_user(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
) -> User:
    """Require a logged-in user."""
    if user is None:
        logger.warning("missing_session", path=request.url.path)
        raise AuthenticationRequired("Authentication required")
    return user


def require_admin():
    """Dependency that requires an admin session."""
    async def check_admin(
        request: Request,
        user: User = Depends(get_current_user),
    ) -> User:
        if not user.is_admin:
            logger.warning("admin_access_denied", user_id=user.id, path=request.url.path)
            raise PermissionDenied("Admin access required")
        return user
    return check_admin
