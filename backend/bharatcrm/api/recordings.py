# backend/bharatcrm/api/recordings.py
"""
Call recording endpoints.

- GET/POST /api/recordings/sync     Drive folder status / import new files
- PUT      /api/recordings/settings choose the Drive folder
- POST     /api/recordings/process  analyze one recording
- PUT      /api/recordings/process  analyze the pending batch
- DELETE   /api/recordings/{id}     delete and tombstone (admin)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bharatcrm.database import get_db
from bharatcrm.auth.dependencies import get_current_user, require_org, require_role
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.user import User, UserRole
from bharatcrm.pipelines.recording_pipeline import (
    delete_recording,
    get_sync_settings,
    process_pending_recordings,
    process_recording,
    save_sync_folder,
    sync_recordings,
)
from bharatcrm.utils.rate_limit import expensive_rate_limit

router = APIRouter(prefix="/api/recordings", tags=["recordings"])


class SyncSettingsUpdate(BaseModel):
    folder_id: str
    folder_name: Optional[str] = None


class ProcessRequest(BaseModel):
    recording_id: Optional[int] = Field(default=None, alias="recordingId")

    class Config:
        populate_by_name = True


def _load_user(db: Session, current_user: CurrentUser) -> User:
    require_org(current_user)
    user = db.query(User).filter(User.id == current_user.id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User profile not found")
    return user


def settings_to_dict(sync_settings) -> Optional[dict]:
    if not sync_settings:
        return None
    return {
        "folder_id": sync_settings.folder_id,
        "folder_name": sync_settings.folder_name,
        "last_sync_at": sync_settings.last_sync_at.isoformat() if sync_settings.last_sync_at else None,
        "last_sync_file_count": sync_settings.last_sync_file_count,
        "sync_error": sync_settings.sync_error,
    }


@router.get("/sync")
async def get_sync_status(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sync_settings = get_sync_settings(db, current_user.id)
    return {
        "configured": bool(sync_settings and sync_settings.folder_id),
        "settings": settings_to_dict(sync_settings),
    }


@router.post("/sync")
async def sync_drive_recordings(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = _load_user(db, current_user)
    return await sync_recordings(db, user)


@router.put("/settings")
async def update_sync_settings(
    payload: SyncSettingsUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not payload.folder_id.strip():
        raise HTTPException(status_code=400, detail="folder_id is required")
    sync_settings = save_sync_folder(db, current_user.id, payload.folder_id.strip(), payload.folder_name)
    return {"success": True, "settings": settings_to_dict(sync_settings)}


@router.post("/process")
@expensive_rate_limit()
async def process_one_recording(
    request: Request,
    payload: ProcessRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = _load_user(db, current_user)
    return await process_recording(db, user, payload.recording_id)


@router.put("/process")
@expensive_rate_limit()
async def process_pending(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = _load_user(db, current_user)
    return await process_pending_recordings(db, user)


@router.delete("/{recording_id}")
async def remove_recording(
    recording_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, any_of=UserRole.ADMINS, detail="Admin privileges required")
    user = _load_user(db, current_user)
    delete_recording(db, user, recording_id)
    return {"success": True}
