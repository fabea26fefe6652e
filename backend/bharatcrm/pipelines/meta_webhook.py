# backend/bharatcrm/pipelines/meta_webhook.py
"""
Meta Lead Ads webhook ingestion.

    received -> signature verified -> (replay check) -> lead fetched -> mapped
             -> validated -> assigned -> persisted -> logged

Every failure after the integration is identified writes an `error` sync log
and surfaces as an HTTPException; a lead row is only ever inserted whole.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from bharatcrm.config import settings
from bharatcrm.database import safe_commit
from bharatcrm.models.integration import IntegrationSyncLog, PlatformIntegration
from bharatcrm.models.lead import Lead
from bharatcrm.services.assignment_service import assign_lead
from bharatcrm.services.lead_mapper import (
    MetaCredentials,
    get_source_from_platform,
    map_lead_data,
    validate_mapped_lead,
)
from bharatcrm.services.meta_service import MetaAPIError, MetaLeadAdsService
from bharatcrm.utils.logger import logger
from bharatcrm.utils.meta_signature import validate_meta_signature


def log_sync_operation(
    db: Session,
    integration_id: int,
    sync_type: str,
    status: str,
    leads_created: int = 0,
    leads_updated: int = 0,
    error_message: Optional[str] = None,
) -> None:
    """Append an integration_sync_logs row (the only durable failure record)."""
    db.add(
        IntegrationSyncLog(
            integration_id=integration_id,
            sync_type=sync_type,
            status=status,
            leads_created=leads_created,
            leads_updated=leads_updated,
            error_message=error_message,
        )
    )
    ok, error = safe_commit(db, f"{sync_type} sync log")
    if not ok:
        logger.error(f"[Sync Log] Could not record {status} for integration {integration_id}: {error}")


def get_active_integration_by_secret(db: Session, webhook_secret: str) -> Optional[PlatformIntegration]:
    return (
        db.query(PlatformIntegration)
        .filter(
            PlatformIntegration.webhook_secret == webhook_secret,
            PlatformIntegration.is_active.is_(True),
        )
        .first()
    )


def _fail(db: Session, integration_id: int, status_code: int, message: str, details: Any = None) -> HTTPException:
    log_sync_operation(db, integration_id, "webhook", "error", error_message=message)
    detail: Dict[str, Any] = {"error": message}
    if details is not None:
        detail["details"] = details
    return HTTPException(status_code=status_code, detail=detail)


async def ingest_meta_webhook(
    db: Session,
    webhook_secret: str,
    raw_body: bytes,
    signature: Optional[str],
) -> Dict[str, Any]:
    """
    Process one Meta leadgen delivery.

    Returns:
        {"success", "lead_id", "assignment_method"} for a new lead, or
        {"message": "Lead already exists", "lead_id"} for a replay.
    """
    integration = get_active_integration_by_secret(db, webhook_secret)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")

    credentials = MetaCredentials.model_validate(integration.credentials or {})

    # 1. Signature (app secret, never the webhook token)
    app_secret = credentials.app_secret or settings.META_APP_SECRET
    if not validate_meta_signature(raw_body, signature, app_secret):
        raise _fail(db, integration.id, 401, "Invalid signature")

    # 2. Envelope
    try:
        payload = json.loads(raw_body or b"")
    except ValueError:
        raise _fail(db, integration.id, 400, "Invalid JSON payload")

    event = MetaLeadAdsService.extract_lead_from_webhook(payload)
    if not event:
        raise _fail(db, integration.id, 400, "No lead data found in webhook")

    leadgen_id = event["leadgen_id"]

    # 3. Replay protection
    existing = (
        db.query(Lead.id)
        .filter(Lead.org_id == integration.org_id, Lead.external_id == leadgen_id)
        .first()
    )
    if existing:
        log_sync_operation(db, integration.id, "webhook", "success", 0, 1, "Lead already exists")
        logger.info(f"[Meta Webhook] Replay of lead {leadgen_id} ignored (lead {existing.id})")
        return {"message": "Lead already exists", "lead_id": existing.id}

    # 4. Full lead from the Graph API
    service = MetaLeadAdsService(credentials.access_token)
    try:
        graph_lead = await service.fetch_lead(leadgen_id)
    except MetaAPIError as e:
        raise _fail(db, integration.id, e.status_code, str(e), e.details)
    except httpx.HTTPError as e:
        raise _fail(db, integration.id, 502, f"Meta Graph API unreachable: {e}")

    # 5. Map and validate
    lead_data = MetaLeadAdsService.parse_graph_lead(
        graph_lead,
        form_id=event.get("form_id"),
        page_id=event.get("page_id"),
    )
    if lead_data.campaign_data and not lead_data.campaign_data.ad_id and event.get("ad_id"):
        lead_data.campaign_data.ad_id = event["ad_id"]
    if event.get("adgroup_id"):
        lead_data.metadata.setdefault("adgroup_id", event["adgroup_id"])

    mapped = map_lead_data(lead_data, integration.org_id, integration.id)
    mapped.source = get_source_from_platform(integration.platform)

    is_valid, errors = validate_mapped_lead(mapped)
    if not is_valid:
        raise _fail(
            db,
            integration.id,
            400,
            f"Validation failed: {', '.join(errors)}",
            errors,
        )

    # 6. Assignment
    assignment = assign_lead(db, mapped, integration.org_id)
    mapped.assigned_to = assignment.assigned_to
    mapped.created_by = assignment.created_by

    # 7. Persist
    lead = Lead(**mapped.to_lead_kwargs())
    db.add(lead)
    ok, error = safe_commit(db, f"create lead {leadgen_id}")
    if not ok:
        raise _fail(db, integration.id, 500, f"Failed to create lead: {error}")
    db.refresh(lead)

    # 8. Audit
    log_sync_operation(
        db,
        integration.id,
        "webhook",
        "success",
        1,
        0,
        f"Lead created via {assignment.assignment_method} assignment",
    )
    integration.last_sync_at = datetime.utcnow()
    safe_commit(db, "update integration last_sync_at")

    logger.info(
        f"[Meta Webhook] Lead {lead.id} created from {leadgen_id} "
        f"({assignment.assignment_method} -> {assignment.assigned_to})"
    )
    return {
        "success": True,
        "lead_id": lead.id,
        "assignment_method": assignment.assignment_method,
    }
