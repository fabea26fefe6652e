# backend/bharatcrm/models/lead.py

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from bharatcrm.database import Base


LEAD_STATUSES = (
    "new",
    "contacted",
    "qualified",
    "demo_scheduled",
    "negotiation",
    "won",
    "lost",
)


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        # at most one lead per provider id inside an org
        UniqueConstraint("org_id", "external_id", name="uq_leads_org_external_id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)

    name = Column(String(255), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(50), index=True)

    status = Column(String(50), default="new", index=True, nullable=False)
    source = Column(String(50), default="manual", nullable=False)

    assigned_to = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # ================= Integration provenance =================
    integration_id = Column(Integer, ForeignKey("platform_integrations.id"), index=True, nullable=True)
    integration_metadata = Column(JSON)
    external_id = Column(String(100), nullable=True)

    # company and any other free-form attributes
    custom_fields = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assignee = relationship("User", foreign_keys=[assigned_to])
    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
    )


class LeadActivity(Base):
    __tablename__ = "lead_activities"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    action_type = Column(String(100), nullable=False)
    comments = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lead = relationship("Lead", back_populates="activities")
