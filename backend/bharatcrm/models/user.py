# backend/bharatcrm/models/user.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from bharatcrm.database import Base


class UserRole:
    ADMIN = "admin"
    SALES = "sales"
    ACCOUNTANT = "accountant"
    SUPER_ADMIN = "super_admin"

    ALL = (ADMIN, SALES, ACCOUNTANT, SUPER_ADMIN)
    ADMINS = (ADMIN, SUPER_ADMIN)


class User(Base):
    """Organization member. Sales reps in the auto-assignment pool are role=sales, approved and active."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=True)

    role = Column(String(30), default=UserRole.SALES, nullable=False, index=True)
    is_approved = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # 0-100, only used when the whole sales pool sums to exactly 100
    lead_allocation_percent = Column(Integer, nullable=True)

    # Acyclic by construction: enforced when a manager is assigned
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    google_access_token = Column(Text, nullable=True)
    google_refresh_token = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    organization = relationship("Organization", back_populates="users")
    manager = relationship("User", remote_side=[id], backref="direct_reports")
