# backend/bharatcrm/models/recording.py

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from bharatcrm.database import Base


class CallRecording(Base):
    __tablename__ = "call_recordings"
    __table_args__ = (
        UniqueConstraint("org_id", "drive_file_id", name="uq_call_recordings_org_file"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), index=True, nullable=True)

    # normalized, or "unknown" when the filename carries no number
    phone_number = Column(String(50), nullable=False, default="unknown")

    drive_file_id = Column(String(255), nullable=False)
    drive_file_url = Column(Text)
    drive_file_name = Column(String(500))
    file_size_bytes = Column(BigInteger)
    recording_date = Column(DateTime(timezone=True))

    # pending | processing | completed | failed
    processing_status = Column(String(20), default="pending", index=True, nullable=False)
    processing_error = Column(Text)

    # ================= AI output (only set on success) =================
    transcript = Column(Text)
    summary = Column(Text)
    sentiment = Column(String(20))
    sentiment_reasoning = Column(Text)
    key_points = Column(JSON)
    action_items = Column(JSON)
    next_steps = Column(Text)
    call_quality = Column(JSON)
    duration_seconds = Column(Integer)
    transcription_model = Column(String(100))
    ai_model_used = Column(String(100))
    processed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lead = relationship("Lead")


class DeletedRecordingFile(Base):
    """Tombstone: a Drive file a user deleted must never be re-imported."""
    __tablename__ = "deleted_recording_files"
    __table_args__ = (
        UniqueConstraint("org_id", "drive_file_id", name="uq_deleted_recording_files_org_file"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    drive_file_id = Column(String(255), nullable=False)
    deleted_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    deleted_at = Column(DateTime(timezone=True), server_default=func.now())


class DriveSyncSettings(Base):
    __tablename__ = "drive_sync_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    folder_id = Column(String(255))
    folder_name = Column(String(255))

    last_sync_at = Column(DateTime(timezone=True))
    last_sync_file_count = Column(Integer, default=0)
    sync_error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AIConfig(Base):
    __tablename__ = "ai_config"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)

    # openai | groq | gemini
    provider = Column(String(20), nullable=False)
    api_key = Column(Text, nullable=False)
    model_name = Column(String(100))
    # transcription_model
    config = Column(JSON, default=dict)

    is_active = Column(Boolean, default=True, nullable=False)
    is_default_transcription = Column(Boolean, default=False, nullable=False)
    is_default_summary = Column(Boolean, default=False, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
