# backend/bharatcrm/api/health.py
"""
Health check endpoints for the lead and recording integrations.

Reports on:
- Database
- Meta Lead Ads (app secret, active integrations)
- Google OAuth (Drive recording sync)
- OpenAI API (server-level key)
"""

from datetime import datetime
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bharatcrm.config import settings, get_config_status
from bharatcrm.database import get_db
from bharatcrm.models.integration import PlatformIntegration
from bharatcrm.utils.logger import logger

router = APIRouter(prefix="/api/health", tags=["health"])


async def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity"""
    try:
        result = db.execute(text("SELECT 1 as test")).fetchone()
        return {
            "status": "healthy" if result else "unhealthy",
            "message": "Database connection successful",
            "details": {"test_query": "passed"},
        }
    except SQLAlchemyError as e:
        logger.error(f"[Health Check] Database failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
            "details": {"error": str(e)},
        }


def check_meta(db: Session) -> Dict[str, Any]:
    active = (
        db.query(PlatformIntegration.id)
        .filter(
            PlatformIntegration.platform.in_(("facebook", "instagram")),
            PlatformIntegration.is_active.is_(True),
        )
        .count()
    )
    erroring = (
        db.query(PlatformIntegration.id)
        .filter(PlatformIntegration.is_active.is_(True), PlatformIntegration.sync_status == "error")
        .count()
    )

    if erroring:
        status = "degraded"
    elif settings.META_APP_SECRET:
        status = "configured"
    else:
        # integrations may still carry their own app_secret
        status = "unconfigured"

    return {
        "status": status,
        "message": f"{active} active Meta integrations, {erroring} with sync errors",
        "details": {
            "app_secret_configured": bool(settings.META_APP_SECRET),
            "graph_api_version": settings.META_GRAPH_API_VERSION,
            "active_integrations": active,
            "integrations_with_errors": erroring,
        },
    }


def check_google() -> Dict[str, Any]:
    configured = bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET)
    return {
        "status": "configured" if configured else "unconfigured",
        "message": "Google OAuth configured" if configured else "Google OAuth client not configured",
        "details": {"client_id_configured": bool(settings.GOOGLE_CLIENT_ID)},
    }


async def check_openai() -> Dict[str, Any]:
    """Check OpenAI API connectivity and credentials"""
    if not settings.OPENAI_API_KEY:
        return {
            "status": "unconfigured",
            "message": "OpenAI API key not configured (org AI configs are used for recordings)",
            "details": {},
        }

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                "https://api.openai.com/v1/models",
                headers={"Authorization": f"Bearer {settings.OPENAI_API_KEY}"},
            )
    except httpx.HTTPError as e:
        logger.error(f"[Health Check] OpenAI failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"OpenAI check failed: {str(e)}",
            "details": {"error": str(e)},
        }

    if response.status_code == 200:
        return {
            "status": "healthy",
            "message": "OpenAI API accessible",
            "details": {"models_available": len(response.json().get("data", []))},
        }
    return {
        "status": "unhealthy",
        "message": f"OpenAI API returned {response.status_code}",
        "details": {"status_code": response.status_code, "error": response.text[:200]},
    }


@router.get("/integrations")
async def health_check_integrations(db: Session = Depends(get_db)):
    """
    Status of every integration.

    Status values:
    - healthy: Fully operational
    - configured: Configured but not tested
    - unconfigured: Missing configuration
    - degraded: Working with errors
    - unhealthy: Connection failed
    """
    results = {
        "timestamp": datetime.utcnow().isoformat(),
        "overall_status": "unknown",
        "config": get_config_status(),
        "integrations": {},
    }

    results["integrations"]["database"] = await check_database(db)
    results["integrations"]["meta"] = check_meta(db)
    results["integrations"]["google"] = check_google()
    results["integrations"]["openai"] = await check_openai()

    statuses = [check["status"] for check in results["integrations"].values()]

    if all(s in ("healthy", "configured") for s in statuses):
        results["overall_status"] = "healthy"
    elif any(s == "unhealthy" for s in statuses):
        results["overall_status"] = "unhealthy"
    elif any(s == "degraded" for s in statuses):
        results["overall_status"] = "degraded"
    else:
        results["overall_status"] = "partially_configured"

    return results


@router.get("/database")
async def health_check_database(db: Session = Depends(get_db)):
    """Check database health only"""
    return await check_database(db)
