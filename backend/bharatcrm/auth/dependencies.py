# backend/bharatcrm/auth/dependencies.py
"""
FastAPI dependencies for authentication and authorization.

- get_current_user: requires a valid bearer token for an active user
- require_role: single capability check used at the top of each handler
- require_admin: dependency form of require_role for admin-only routers
"""

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from bharatcrm.database import get_db
from bharatcrm.auth.jwt_handler import verify_token
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.user import User, UserRole

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    """
    Resolve the authenticated user from the Authorization header.

    Raises:
        HTTPException(401): missing/invalid token or inactive user
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise credentials_exception

    user = _authenticate_bearer(credentials.credentials, db)
    if not user:
        raise credentials_exception

    return user


def require_role(user: CurrentUser, any_of: Iterable[str], detail: str = "Forbidden") -> CurrentUser:
    """
    Raise 403 unless the user holds one of the given roles.

    Usage:
        require_role(current_user, any_of=UserRole.ADMINS)
    """
    if user.role not in tuple(any_of):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
    return user


def require_org(user: CurrentUser) -> int:
    """Return the caller's org id; 404 when the profile is not attached to one."""
    if not user.org_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")
    return user.org_id


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    return require_role(current_user, any_of=UserRole.ADMINS, detail="Admin privileges required")


# ==================== Internal Helper Functions ====================

def _authenticate_bearer(token: str, db: Session) -> Optional[CurrentUser]:
    payload = verify_token(token)
    if not payload:
        return None

    user_id = payload.get("user_id")
    if not user_id:
        return None

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        return None

    return CurrentUser.model_validate(user)
