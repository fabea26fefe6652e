# backend/bharatcrm/api/imports.py
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from bharatcrm.database import get_db
from bharatcrm.auth.dependencies import get_current_user, require_org
from bharatcrm.auth.models import CurrentUser
from bharatcrm.services.csv_import_service import (
    ImportConfirmRequest,
    ImportPreview,
    ImportResult,
    build_preview,
    confirm_import,
    parse_csv,
)

router = APIRouter(prefix="/api/import", tags=["import"])


@router.post("/preview", response_model=ImportPreview)
async def preview_import(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Parse an uploaded CSV and flag rows whose phone already exists in the org."""
    org_id = require_org(current_user)

    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")

    leads, error = parse_csv(text)
    if error:
        raise HTTPException(status_code=400, detail=error)

    return build_preview(db, org_id, leads)


@router.post("/confirm", response_model=ImportResult)
async def confirm_lead_import(
    payload: ImportConfirmRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    org_id = require_org(current_user)
    return confirm_import(db, org_id, current_user.id, payload)
