# backend/bharatcrm/models/approval.py

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from bharatcrm.database import Base


class SubscriptionApproval(Base):
    __tablename__ = "subscription_approvals"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), index=True, nullable=False)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    amount = Column(Float, default=0.0, nullable=False)

    # pending | approved | rejected
    status = Column(String(20), default="pending", index=True, nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    lead = relationship("Lead")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    lead_id = Column(Integer, ForeignKey("leads.id"), index=True, nullable=False)
    approval_id = Column(Integer, ForeignKey("subscription_approvals.id"), nullable=False)

    amount = Column(Float, default=0.0, nullable=False)
    status = Column(String(20), default="active", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
