# backend/bharatcrm/pipelines/integration_sync.py
"""
Manual (pull) sync for Meta Lead Ads integrations, and the leadgen form scan
behind the form picker.

Graph calls fan out through run_with_concurrency; lead inserts stay sequential
so assignment decisions see every lead committed before them.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from bharatcrm.config import settings
from bharatcrm.database import safe_commit
from bharatcrm.models.integration import LeadFormAssignment, PlatformIntegration
from bharatcrm.models.lead import Lead
from bharatcrm.pipelines.meta_webhook import log_sync_operation
from bharatcrm.services.assignment_service import assign_lead
from bharatcrm.services.lead_mapper import (
    LeadData,
    MetaConfig,
    MetaCredentials,
    get_source_from_platform,
    map_lead_data,
    validate_mapped_lead,
)
from bharatcrm.services.meta_service import MetaAPIError, MetaLeadAdsService
from bharatcrm.utils.concurrency import run_with_concurrency
from bharatcrm.utils.logger import logger

META_PLATFORMS = ("facebook", "instagram")
DEFAULT_LOOKBACK = timedelta(hours=24)
MAX_STORED_ERRORS = 5
MAX_FORM_WARNINGS = 10


def resolve_since(
    since_iso: Optional[str],
    backfill_days: Optional[int],
    last_sync_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """since_iso, else now - backfill_days, else last_sync_at, else the last 24h."""
    now = now or datetime.utcnow()

    if since_iso:
        try:
            return datetime.fromisoformat(since_iso.replace("Z", "+00:00"))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid since_iso: {since_iso}")

    if backfill_days:
        return now - timedelta(days=backfill_days)

    if last_sync_at:
        return last_sync_at

    return now - DEFAULT_LOOKBACK


def resolve_form_ids(db: Session, integration: PlatformIntegration) -> List[str]:
    config = MetaConfig.model_validate(integration.config or {})
    if config.selected_forms:
        return [str(form_id) for form_id in config.selected_forms]

    rows = (
        db.query(LeadFormAssignment.form_id)
        .filter(
            LeadFormAssignment.integration_id == integration.id,
            LeadFormAssignment.is_active.is_(True),
        )
        .all()
    )
    return [row[0] for row in rows]


def _ensure_meta_platform(integration: PlatformIntegration, action: str) -> None:
    if integration.platform not in META_PLATFORMS:
        raise HTTPException(
            status_code=501,
            detail=f"{action} not yet implemented for {integration.platform}",
        )


def _import_leads(
    db: Session,
    integration: PlatformIntegration,
    leads_data: List[LeadData],
    importer_id: Optional[int],
) -> Tuple[int, int, List[str]]:
    created = 0
    updated = 0
    errors: List[str] = []
    source = get_source_from_platform(integration.platform)

    for lead_data in leads_data:
        existing = (
            db.query(Lead.id)
            .filter(Lead.org_id == integration.org_id, Lead.external_id == lead_data.external_id)
            .first()
        )
        if existing:
            updated += 1
            continue

        mapped = map_lead_data(lead_data, integration.org_id, integration.id)
        mapped.source = source

        is_valid, validation_errors = validate_mapped_lead(mapped)
        if not is_valid:
            errors.append(f"Lead {lead_data.external_id}: {', '.join(validation_errors)}")
            continue

        assignment = assign_lead(db, mapped, integration.org_id)
        mapped.assigned_to = assignment.assigned_to
        mapped.created_by = assignment.created_by
        if not mapped.assigned_to:
            mapped.created_by = importer_id

        db.add(Lead(**mapped.to_lead_kwargs()))
        ok, error = safe_commit(db, f"sync lead {lead_data.external_id}")
        if ok:
            created += 1
        else:
            errors.append(f"Lead {lead_data.external_id}: {error}")

    return created, updated, errors


async def sync_integration(
    db: Session,
    integration: PlatformIntegration,
    importer_id: Optional[int],
    since_iso: Optional[str] = None,
    backfill_days: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Pull leads for every configured form and insert the new ones.

    Returns:
        {"success", "leads_created", "leads_updated", "errors"?}
    """
    if not integration.is_active:
        raise HTTPException(status_code=400, detail="Integration is not active")
    _ensure_meta_platform(integration, "Manual sync")

    since = resolve_since(since_iso, backfill_days, integration.last_sync_at)

    form_ids = resolve_form_ids(db, integration)
    if not form_ids:
        raise HTTPException(status_code=400, detail="No lead forms configured")

    credentials = MetaCredentials.model_validate(integration.credentials or {})

    integration.sync_status = "syncing"
    safe_commit(db, "mark integration syncing")

    logger.info(f"[Meta Sync] Integration {integration.id}: {len(form_ids)} forms since {since.isoformat()}")

    try:
        service = MetaLeadAdsService(credentials.access_token)

        async def fetch(form_id: str) -> List[LeadData]:
            return await service.fetch_form_leads(form_id, since)

        batches = await run_with_concurrency(form_ids, fetch, concurrency=settings.GRAPH_SCAN_CONCURRENCY)
        leads_data = [lead for batch in batches for lead in batch]

        created, updated, errors = _import_leads(db, integration, leads_data, importer_id)
    except Exception as e:
        db.rollback()
        logger.exception(f"[Meta Sync] Integration {integration.id} failed: {e}")
        integration.sync_status = "error"
        integration.error_message = str(e)
        safe_commit(db, "mark integration sync error")
        log_sync_operation(db, integration.id, "manual", "error", error_message=str(e))
        raise HTTPException(status_code=500, detail={"error": "Sync failed", "details": str(e)})

    integration.sync_status = "error" if errors else "idle"
    integration.last_sync_at = datetime.utcnow()
    integration.error_message = "; ".join(errors[:MAX_STORED_ERRORS]) if errors else None
    safe_commit(db, "finish integration sync")

    log_sync_operation(
        db,
        integration.id,
        "manual",
        "partial" if errors else "success",
        created,
        updated,
        "; ".join(errors) if errors else None,
    )

    logger.info(
        f"[Meta Sync] Integration {integration.id}: {created} created, "
        f"{updated} already present, {len(errors)} errors"
    )

    result: Dict[str, Any] = {
        "success": True,
        "leads_created": created,
        "leads_updated": updated,
    }
    if errors:
        result["errors"] = errors
    return result


async def scan_lead_forms(integration: PlatformIntegration) -> Dict[str, Any]:
    """
    Every leadgen form across the pages the integration's token manages.

    A page that fails (or has no page token) becomes a warning instead of
    failing the scan.
    """
    _ensure_meta_platform(integration, "Form listing")

    credentials = MetaCredentials.model_validate(integration.credentials or {})
    if not credentials.access_token:
        raise HTTPException(status_code=400, detail="Integration not connected (missing access token)")

    service = MetaLeadAdsService(credentials.access_token)
    try:
        pages = await service.fetch_pages()
    except MetaAPIError as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "details": e.details})
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail={"error": f"Meta Graph API unreachable: {e}"})

    warnings: List[str] = []

    async def scan_page(page: Dict[str, Any]) -> Dict[str, Any]:
        page_name = page.get("name") or page.get("id")
        page_token = page.get("access_token")
        if not page_token:
            warnings.append(f"Page {page_name}: no page access token")
            return {"page": page, "forms": [], "failed": False, "has_token": False}

        try:
            forms = await service.fetch_page_forms(page["id"], page_token)
        except (MetaAPIError, httpx.HTTPError) as e:
            warnings.append(f"Page {page_name}: {e}")
            return {"page": page, "forms": [], "failed": True, "has_token": True}

        return {"page": page, "forms": forms, "failed": False, "has_token": True}

    results = await run_with_concurrency(pages, scan_page, concurrency=settings.GRAPH_SCAN_CONCURRENCY)

    multiple_pages = len(pages) > 1
    forms_by_id: Dict[str, Dict[str, Any]] = {}
    for result in results:
        page = result["page"]
        for form in result["forms"]:
            form_id = str(form.get("id"))
            if form_id in forms_by_id:
                continue
            name = form.get("name") or form_id
            forms_by_id[form_id] = {
                "id": form_id,
                "name": f"{name} ({page.get('name')})" if multiple_pages and page.get("name") else name,
                "status": form.get("status"),
                "page_id": str(page.get("id")),
                "page_name": page.get("name"),
            }

    with_token = sum(1 for result in results if result["has_token"])
    return {
        "forms": sorted(forms_by_id.values(), key=lambda f: (f["name"] or "").lower()),
        "pages_total": len(pages),
        "pages_failed": sum(1 for result in results if result["failed"]),
        "pages_with_token": with_token,
        "pages_missing_token": len(pages) - with_token,
        "warnings": warnings[:MAX_FORM_WARNINGS] or None,
    }


async def list_campaigns(integration: PlatformIntegration) -> Dict[str, Any]:
    """Campaigns of the configured ad account, for the campaign-mapping picker."""
    _ensure_meta_platform(integration, "Campaign listing")

    credentials = MetaCredentials.model_validate(integration.credentials or {})
    config = MetaConfig.model_validate(integration.config or {})
    if not credentials.access_token:
        raise HTTPException(status_code=400, detail="Integration not connected (missing access token)")
    if not config.ad_account_id:
        raise HTTPException(status_code=400, detail="No ad account configured")

    try:
        campaigns = await MetaLeadAdsService(credentials.access_token).fetch_campaigns(config.ad_account_id)
    except MetaAPIError as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "details": e.details})
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail={"error": f"Meta Graph API unreachable: {e}"})

    return {"campaigns": sorted(campaigns, key=lambda c: (c.get("name") or "").lower())}


async def check_connection(db: Session, integration: PlatformIntegration) -> Dict[str, Any]:
    """Check the stored token against the Graph API; a failure is recorded on the integration."""
    _ensure_meta_platform(integration, "Connection test")

    credentials = MetaCredentials.model_validate(integration.credentials or {})
    result = await MetaLeadAdsService(credentials.access_token).test_connection()

    if result["success"]:
        if integration.sync_status == "error":
            integration.sync_status = "idle"
        integration.error_message = None
    else:
        integration.sync_status = "error"
        integration.error_message = result.get("message")
    safe_commit(db, f"connection test for integration {integration.id}")

    logger.info(f"[Meta Sync] Connection test for integration {integration.id}: {result['success']}")
    return result
