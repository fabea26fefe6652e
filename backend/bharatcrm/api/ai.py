# backend/bharatcrm/api/ai.py
"""
AI provider setup helpers for the settings screen:
- POST /api/ai/test     check an API key before saving an AI config
- GET  /api/ai/models   transcription and summary models a provider offers
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from bharatcrm.auth.dependencies import require_admin
from bharatcrm.auth.models import CurrentUser
from bharatcrm.services.ai_providers import AIProviderError, create_ai_provider
from bharatcrm.utils.logger import logger

router = APIRouter(prefix="/api/ai", tags=["ai"])


class ConnectionTestRequest(BaseModel):
    provider: str
    api_key: str


@router.post("/test")
async def verify_ai_key(
    payload: ConnectionTestRequest,
    current_user: CurrentUser = Depends(require_admin),
):
    if not payload.provider or not payload.api_key.strip():
        raise HTTPException(status_code=400, detail="Provider and API key are required")

    try:
        provider = create_ai_provider(payload.provider, payload.api_key.strip())
    except AIProviderError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not await provider.test_connection():
        raise HTTPException(status_code=400, detail="Could not connect to provider")

    logger.info(f"[AI] {payload.provider} key verified by user {current_user.id}")
    return {"success": True}


@router.get("/models")
async def list_ai_models(
    provider: str = Query(...),
    api_key: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(require_admin),
):
    try:
        ai_provider = create_ai_provider(provider, api_key or "")
    except AIProviderError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if api_key:
        models = await ai_provider.list_models()
    else:
        models = [dict(m) for m in ai_provider.known_models]

    return {
        "provider": provider,
        "transcription": [m for m in models if m["type"] == "transcription"],
        "summary": [m for m in models if m["type"] == "summary"],
        "fetched": bool(api_key),
    }
