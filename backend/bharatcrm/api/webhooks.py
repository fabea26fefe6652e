# backend/bharatcrm/api/webhooks.py
"""
Public webhook endpoints for lead sources.

Meta Lead Ads:
- GET  /api/integrations/webhooks/facebook  subscription handshake
- POST /api/integrations/webhooks/facebook  leadgen delivery (rate limited)

The integration is identified by its webhook secret, passed as the `secret`
query parameter or the `x-webhook-secret` header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from bharatcrm.database import get_db
from bharatcrm.pipelines.meta_webhook import get_active_integration_by_secret, ingest_meta_webhook
from bharatcrm.utils.logger import logger
from bharatcrm.utils.rate_limit import webhook_rate_limit

router = APIRouter(prefix="/api/integrations/webhooks", tags=["webhooks"])


def _webhook_secret(request: Request, secret: Optional[str]) -> str:
    value = secret or request.headers.get("x-webhook-secret")
    if not value:
        raise HTTPException(status_code=401, detail="Missing webhook secret")
    return value


@router.get("/facebook")
async def verify_facebook_webhook(
    request: Request,
    secret: Optional[str] = Query(None),
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    db: Session = Depends(get_db),
):
    """Meta subscription handshake: echo hub.challenge when the verify token matches."""
    webhook_secret = _webhook_secret(request, secret)

    if hub_mode == "subscribe" and hub_verify_token == webhook_secret:
        if get_active_integration_by_secret(db, webhook_secret):
            logger.info("[Meta Webhook] Subscription verified")
            return PlainTextResponse(hub_challenge or "")

    logger.warning("[Meta Webhook] Subscription verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/facebook")
@webhook_rate_limit()
async def receive_facebook_webhook(
    request: Request,
    secret: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Ingest one leadgen delivery. The raw body is needed for the signature check."""
    webhook_secret = _webhook_secret(request, secret)
    raw_body = await request.body()

    return await ingest_meta_webhook(
        db,
        webhook_secret=webhook_secret,
        raw_body=raw_body,
        signature=request.headers.get("x-hub-signature-256"),
    )
