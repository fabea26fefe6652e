# backend/bharatcrm/pipelines/recording_pipeline.py
"""
Call recordings: Drive folder sync and AI processing.

Sync imports new files as `pending` rows matched to leads by phone number.
Processing moves one row pending -> processing -> completed | failed:
download from Drive, transcribe, summarize, store the analysis, and log a
"Call Analyzed" activity on the matched lead.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from bharatcrm.config import settings
from bharatcrm.database import safe_commit
from bharatcrm.models.lead import Lead, LeadActivity
from bharatcrm.models.recording import AIConfig, CallRecording, DeletedRecordingFile, DriveSyncSettings
from bharatcrm.models.user import User
from bharatcrm.services.ai_providers import create_ai_provider
from bharatcrm.services.google_drive_service import (
    GoogleDriveError,
    GoogleDriveService,
    extract_date_from_filename,
    extract_phone_from_filename,
    refresh_access_token,
)
from bharatcrm.utils.logger import logger
from bharatcrm.utils.phone import normalize_phone

UNKNOWN_PHONE = "unknown"


# ==================== Sync ====================

def get_sync_settings(db: Session, user_id: int) -> Optional[DriveSyncSettings]:
    return db.query(DriveSyncSettings).filter(DriveSyncSettings.user_id == user_id).first()


def save_sync_folder(db: Session, user_id: int, folder_id: str, folder_name: Optional[str]) -> DriveSyncSettings:
    sync_settings = get_sync_settings(db, user_id)
    if not sync_settings:
        sync_settings = DriveSyncSettings(user_id=user_id)
        db.add(sync_settings)

    sync_settings.folder_id = folder_id
    sync_settings.folder_name = folder_name
    ok, error = safe_commit(db, "save drive sync settings")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    db.refresh(sync_settings)
    return sync_settings


def build_phone_lead_map(db: Session, org_id: int) -> Dict[str, int]:
    """Normalized phone -> lead id for every lead in the org that has a phone."""
    phone_map: Dict[str, int] = {}
    rows = db.query(Lead.id, Lead.phone).filter(Lead.org_id == org_id, Lead.phone.isnot(None)).all()
    for lead_id, phone in rows:
        normalized = normalize_phone(phone)
        if normalized and normalized not in phone_map:
            phone_map[normalized] = lead_id
    return phone_map


async def sync_recordings(db: Session, user: User) -> Dict[str, Any]:
    """
    Import new recordings from the user's configured Drive folder.

    Returns:
        {"success", "files_found", "files_matched", "files_imported", "errors"}
    """
    if not user.google_refresh_token:
        raise HTTPException(status_code=400, detail="Google account not connected. Please sign in with Google.")

    try:
        access_token = await refresh_access_token(user.google_refresh_token)
    except GoogleDriveError as e:
        logger.warning(f"[Recordings] Token refresh failed for user {user.id}: {e}")
        raise HTTPException(status_code=401, detail="Google session expired. Please sign in with Google again.")

    user.google_access_token = access_token
    safe_commit(db, "store refreshed google token")

    sync_settings = get_sync_settings(db, user.id)
    if not sync_settings or not sync_settings.folder_id:
        raise HTTPException(
            status_code=400,
            detail={"error": "Drive folder not configured", "not_configured": True},
        )

    drive = GoogleDriveService(access_token)
    try:
        files = await drive.list_recording_files(sync_settings.folder_id)
    except GoogleDriveError as e:
        sync_settings.sync_error = str(e)
        safe_commit(db, "record drive sync error")
        raise HTTPException(status_code=502, detail=str(e))

    phone_map = build_phone_lead_map(db, user.org_id)

    known_ids = {
        row[0]
        for row in db.query(CallRecording.drive_file_id).filter(CallRecording.org_id == user.org_id).all()
    }
    known_ids.update(
        row[0]
        for row in db.query(DeletedRecordingFile.drive_file_id)
        .filter(DeletedRecordingFile.org_id == user.org_id)
        .all()
    )

    matched = 0
    imported = 0
    errors: List[str] = []

    for file in files:
        file_id = file.get("id")
        if not file_id or file_id in known_ids:
            continue

        name = file.get("name") or ""
        phone = extract_phone_from_filename(name)
        lead_id = phone_map.get(phone) if phone else None
        if lead_id:
            matched += 1

        size = file.get("size")
        db.add(
            CallRecording(
                org_id=user.org_id,
                user_id=user.id,
                lead_id=lead_id,
                phone_number=phone or UNKNOWN_PHONE,
                drive_file_id=file_id,
                drive_file_url=file.get("webViewLink"),
                drive_file_name=name,
                file_size_bytes=int(size) if size else None,
                recording_date=extract_date_from_filename(name, file.get("createdTime")),
                processing_status="pending",
            )
        )
        ok, error = safe_commit(db, f"import recording {file_id}")
        if ok:
            imported += 1
            known_ids.add(file_id)
        else:
            errors.append(f"{name}: {error}")

    sync_settings.last_sync_at = datetime.utcnow()
    sync_settings.last_sync_file_count = imported
    sync_settings.sync_error = "; ".join(errors[:5]) if errors else None
    safe_commit(db, "update drive sync settings")

    logger.info(
        f"[Recordings] User {user.id}: {len(files)} files found, {imported} imported, {matched} matched"
    )
    return {
        "success": True,
        "files_found": len(files),
        "files_matched": matched,
        "files_imported": imported,
        "errors": errors,
    }


# ==================== AI processing ====================

def _pick_transcription_config(configs: List[AIConfig]) -> AIConfig:
    for config in configs:
        if config.is_default_transcription:
            return config
    for provider in ("groq", "openai"):
        for config in configs:
            if config.provider == provider:
                return config
    # only Gemini left; its transcribe raises and the recording is marked failed
    return configs[0]


def _pick_summary_config(configs: List[AIConfig]) -> AIConfig:
    for config in configs:
        if config.is_default_summary:
            return config
    return configs[0]


def _lead_context(recording: CallRecording) -> Optional[str]:
    lead = recording.lead
    if not lead:
        return None
    return f"Lead: {lead.name} ({lead.email or 'no email'})"


async def _analyze(db: Session, user: User, recording: CallRecording, configs: List[AIConfig]) -> None:
    transcription_config = _pick_transcription_config(configs)
    summary_config = _pick_summary_config(configs)

    access_token = user.google_access_token
    if not access_token:
        raise GoogleDriveError("Google Drive not connected")

    audio = await GoogleDriveService(access_token).download_file(recording.drive_file_id)

    transcriber = create_ai_provider(
        transcription_config.provider,
        transcription_config.api_key,
        transcription_model=(transcription_config.config or {}).get("transcription_model"),
    )
    transcription = await transcriber.transcribe(audio, recording.drive_file_name or "recording.mp3")

    summarizer = create_ai_provider(summary_config.provider, summary_config.api_key, model=summary_config.model_name)
    summary = await summarizer.summarize(transcription.text, _lead_context(recording))

    recording.transcript = transcription.text
    recording.duration_seconds = transcription.duration_seconds
    recording.summary = summary.summary
    recording.sentiment = summary.sentiment
    recording.sentiment_reasoning = summary.sentiment_reasoning
    recording.key_points = summary.key_points
    recording.action_items = summary.action_items
    recording.next_steps = summary.next_steps
    recording.call_quality = summary.call_quality
    recording.transcription_model = f"{transcriber.name}/{transcriber.transcription_model}"
    recording.ai_model_used = f"{summarizer.name}/{summarizer.model}"
    recording.processing_status = "completed"
    recording.processing_error = None
    recording.processed_at = datetime.utcnow()

    transcription_config.usage_count = (transcription_config.usage_count or 0) + 1
    if summary_config.id != transcription_config.id:
        summary_config.usage_count = (summary_config.usage_count or 0) + 1

    if recording.lead_id:
        db.add(
            LeadActivity(
                lead_id=recording.lead_id,
                user_id=user.id,
                action_type="Call Analyzed",
                comments=f"AI Summary: {summary.summary[:200]}...",
            )
        )


async def process_recording(db: Session, user: User, recording_id: Optional[int]) -> Dict[str, Any]:
    """Run transcription and summary for one recording of the user's org."""
    if not recording_id:
        raise HTTPException(status_code=400, detail="recordingId is required")

    recording = db.query(CallRecording).filter(CallRecording.id == recording_id).first()
    if not recording:
        raise HTTPException(status_code=404, detail="Recording not found")
    if recording.org_id != user.org_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not recording.drive_file_id:
        raise HTTPException(status_code=400, detail="Recording has no Drive file")

    configs = (
        db.query(AIConfig)
        .filter(AIConfig.org_id == user.org_id, AIConfig.is_active.is_(True))
        .order_by(AIConfig.id.asc())
        .all()
    )
    if not configs:
        raise HTTPException(status_code=400, detail="No AI provider configured")

    recording.processing_status = "processing"
    recording.processing_error = None
    safe_commit(db, f"mark recording {recording.id} processing")

    try:
        await _analyze(db, user, recording, configs)
        ok, error = safe_commit(db, f"store analysis for recording {recording.id}")
        if not ok:
            raise RuntimeError(error)
    except Exception as e:
        db.rollback()
        logger.exception(f"[Recordings] Processing failed for recording {recording_id}: {e}")
        failed = db.query(CallRecording).filter(CallRecording.id == recording_id).first()
        if failed:
            failed.processing_status = "failed"
            failed.processing_error = str(e)
            safe_commit(db, f"mark recording {recording_id} failed")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"[Recordings] Recording {recording.id} analyzed ({recording.ai_model_used})")
    return {
        "success": True,
        "recording": {
            "id": recording.id,
            "processing_status": recording.processing_status,
            "summary": recording.summary,
            "sentiment": recording.sentiment,
            "duration_seconds": recording.duration_seconds,
        },
    }


async def process_pending_recordings(db: Session, user: User) -> Dict[str, Any]:
    """Process up to RECORDING_BATCH_LIMIT pending recordings, one at a time."""
    pending_ids = [
        row[0]
        for row in db.query(CallRecording.id)
        .filter(CallRecording.org_id == user.org_id, CallRecording.processing_status == "pending")
        .order_by(CallRecording.id.asc())
        .limit(settings.RECORDING_BATCH_LIMIT)
        .all()
    ]

    if not pending_ids:
        return {"success": True, "message": "No pending recordings to process", "processed": 0}

    results: List[Dict[str, Any]] = []
    for recording_id in pending_ids:
        try:
            await process_recording(db, user, recording_id)
            results.append({"id": recording_id, "success": True})
        except HTTPException as e:
            results.append({"id": recording_id, "success": False, "error": e.detail})

    processed = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "processed": processed,
        "failed": len(results) - processed,
        "results": results,
    }


def delete_recording(db: Session, user: User, recording_id: int) -> None:
    """Remove the row and tombstone its Drive file so sync never re-imports it."""
    recording = db.query(CallRecording).filter(CallRecording.id == recording_id).first()
    if not recording:
        raise HTTPException(status_code=404, detail="Recording not found")
    if recording.org_id != user.org_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    tombstone_exists = (
        db.query(DeletedRecordingFile.id)
        .filter(
            DeletedRecordingFile.org_id == recording.org_id,
            DeletedRecordingFile.drive_file_id == recording.drive_file_id,
        )
        .first()
    )
    if not tombstone_exists:
        db.add(
            DeletedRecordingFile(
                org_id=recording.org_id,
                drive_file_id=recording.drive_file_id,
                deleted_by=user.id,
            )
        )
    db.delete(recording)

    ok, error = safe_commit(db, f"delete recording {recording_id}")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    logger.info(f"[Recordings] Recording {recording_id} deleted by user {user.id}")
