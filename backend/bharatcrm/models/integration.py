# backend/bharatcrm/models/integration.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from bharatcrm.database import Base


PLATFORMS = ("facebook", "instagram", "whatsapp", "linkedin", "google", "google_sheets")


class PlatformIntegration(Base):
    """External lead source connected by an organization."""
    __tablename__ = "platform_integrations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)

    name = Column(String(255), nullable=False)
    platform = Column(String(30), nullable=False)

    # access_token, app_secret
    credentials = Column(JSON, default=dict)
    # ad_account_id, selected_forms, selected_campaigns
    config = Column(JSON, default=dict)

    webhook_secret = Column(String(255), unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # idle | syncing | error
    sync_status = Column(String(20), default="idle", nullable=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    sync_logs = relationship(
        "IntegrationSyncLog",
        back_populates="integration",
        cascade="all, delete-orphan",
    )


class IntegrationSyncLog(Base):
    __tablename__ = "integration_sync_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    integration_id = Column(Integer, ForeignKey("platform_integrations.id"), index=True, nullable=False)

    # webhook | manual | scheduled
    sync_type = Column(String(20), nullable=False)
    # success | error | partial
    status = Column(String(20), nullable=False)

    leads_created = Column(Integer, default=0, nullable=False)
    leads_updated = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    integration = relationship("PlatformIntegration", back_populates="sync_logs")


class CampaignAssignment(Base):
    __tablename__ = "campaign_assignments"
    __table_args__ = (
        UniqueConstraint("org_id", "integration_id", "campaign_id", name="uq_campaign_assignment_key"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    integration_id = Column(Integer, ForeignKey("platform_integrations.id"), nullable=False)

    campaign_id = Column(String(100), nullable=False)
    campaign_name = Column(String(255), nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assigned_user = relationship("User")


class LeadFormAssignment(Base):
    __tablename__ = "lead_form_assignments"
    __table_args__ = (
        UniqueConstraint("org_id", "integration_id", "form_id", name="uq_form_assignment_key"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    integration_id = Column(Integer, ForeignKey("platform_integrations.id"), nullable=False)

    form_id = Column(String(100), nullable=False)
    form_name = Column(String(255), nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assigned_user = relationship("User")
