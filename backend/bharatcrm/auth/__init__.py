# backend/bharatcrm/auth/__init__.py
"""
Authentication module for the BharatCRM API.

JWT bearer authentication plus the single role check used by every handler.
"""

from bharatcrm.auth.jwt_handler import (
    create_access_token,
    verify_token,
    get_password_hash,
    verify_password,
)
from bharatcrm.auth.dependencies import (
    get_current_user,
    require_role,
    require_org,
    require_admin,
)
from bharatcrm.auth.models import CurrentUser

__all__ = [
    "create_access_token",
    "verify_token",
    "get_password_hash",
    "verify_password",
    "get_current_user",
    "require_role",
    "require_org",
    "require_admin",
    "CurrentUser",
]
