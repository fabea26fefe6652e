# backend/bharatcrm/api/integrations.py
"""
Integration operations for admins:
- POST /api/integrations/{id}/sync        manual lead pull
- GET  /api/integrations/{id}/forms       leadgen form picker
- GET  /api/integrations/{id}/campaigns   campaigns of the configured ad account
- POST /api/integrations/{id}/test        token check against the Graph API
- GET  /api/integrations/{id}/sync-logs   recent sync history
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bharatcrm.database import get_db
from bharatcrm.auth.dependencies import get_current_user, require_role
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.integration import IntegrationSyncLog, PlatformIntegration
from bharatcrm.models.user import UserRole
from bharatcrm.pipelines.integration_sync import (
    check_connection,
    list_campaigns,
    scan_lead_forms,
    sync_integration,
)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])


class SyncRequest(BaseModel):
    since_iso: Optional[str] = None
    backfill_days: Optional[int] = Field(default=None, ge=1, le=90)


def get_org_integration(db: Session, integration_id: int, user: CurrentUser) -> PlatformIntegration:
    """The integration if the caller may see it; super_admin sees every org."""
    query = db.query(PlatformIntegration).filter(PlatformIntegration.id == integration_id)
    if not user.is_super_admin:
        query = query.filter(PlatformIntegration.org_id == user.org_id)

    integration = query.first()
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


def sync_log_to_dict(log: IntegrationSyncLog) -> dict:
    return {
        "id": log.id,
        "integration_id": log.integration_id,
        "sync_type": log.sync_type,
        "status": log.status,
        "leads_created": log.leads_created,
        "leads_updated": log.leads_updated,
        "error_message": log.error_message,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


@router.post("/{integration_id}/sync")
async def sync_integration_leads(
    integration_id: int,
    payload: Optional[SyncRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, any_of=UserRole.ADMINS)
    integration = get_org_integration(db, integration_id, current_user)

    payload = payload or SyncRequest()
    return await sync_integration(
        db,
        integration,
        importer_id=current_user.id,
        since_iso=payload.since_iso,
        backfill_days=payload.backfill_days,
    )


@router.get("/{integration_id}/forms")
async def list_integration_forms(
    integration_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, any_of=UserRole.ADMINS)
    integration = get_org_integration(db, integration_id, current_user)
    return await scan_lead_forms(integration)


@router.get("/{integration_id}/campaigns")
async def list_integration_campaigns(
    integration_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, any_of=UserRole.ADMINS)
    integration = get_org_integration(db, integration_id, current_user)
    return await list_campaigns(integration)


@router.post("/{integration_id}/test")
async def run_connection_test(
    integration_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, any_of=UserRole.ADMINS)
    integration = get_org_integration(db, integration_id, current_user)
    return await check_connection(db, integration)


@router.get("/{integration_id}/sync-logs")
async def list_sync_logs(
    integration_id: int,
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = get_org_integration(db, integration_id, current_user)
    logs = (
        db.query(IntegrationSyncLog)
        .filter(IntegrationSyncLog.integration_id == integration.id)
        .order_by(IntegrationSyncLog.created_at.desc(), IntegrationSyncLog.id.desc())
        .limit(limit)
        .all()
    )
    return {"logs": [sync_log_to_dict(log) for log in logs]}
