# backend/bharatcrm/auth/models.py
"""
Authentication request/response models.
"""

from typing import Optional

from pydantic import BaseModel, EmailStr


class CurrentUser(BaseModel):
    """Authenticated CRM user resolved from the bearer token."""
    id: int
    org_id: Optional[int] = None
    name: str
    email: str
    role: str
    is_active: bool = True
    is_approved: bool = False

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "super_admin")

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class UserResponse(BaseModel):
    id: int
    org_id: Optional[int] = None
    name: str
    email: str
    role: str
    is_active: bool
    is_approved: bool
    manager_id: Optional[int] = None
    lead_allocation_percent: Optional[int] = None

    class Config:
        from_attributes = True
