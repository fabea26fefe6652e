import logging
from datetime import datetime

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bharatcrm.config import settings, validate_config, get_config_status, ConfigValidationError
from bharatcrm.database import Base, engine, get_db
from bharatcrm.middleware import SecurityHeadersMiddleware
from bharatcrm.utils.rate_limit import limiter

import bharatcrm.models  # noqa: F401  (register tables on Base.metadata)

from bharatcrm.api import (
    ai,
    auth,
    webhooks,
    leads,
    integrations,
    assignments,
    team,
    recordings,
    imports,
    approvals,
    health,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("bharatcrm.main")

app = FastAPI(title="BharatCRM Backend", version="1.0.0")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.on_event("startup")
async def startup_event():
    logger.info("BharatCRM Backend Starting...")

    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        for error in result.get("errors", []):
            logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    logger.info("BharatCRM Backend Started")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)

# Routers
app.include_router(auth.router)
app.include_router(webhooks.router)
app.include_router(leads.router)
app.include_router(integrations.router)
app.include_router(assignments.router)
app.include_router(team.router)
app.include_router(recordings.router)
app.include_router(imports.router)
app.include_router(approvals.router)
app.include_router(ai.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"message": "BharatCRM API", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Returns database connectivity and configuration status.
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "checks": {},
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except SQLAlchemyError as e:
        health_status["checks"]["database"] = f"error: {str(e)[:100]}"
        health_status["status"] = "degraded"

    config_status = get_config_status()
    health_status["checks"]["config"] = config_status

    if not config_status.get("database_configured"):
        health_status["status"] = "unhealthy"
    elif not config_status.get("meta_app_secret_configured") or not config_status.get("google_oauth_configured"):
        health_status["status"] = "degraded"

    return health_status


@app.get("/health/simple")
async def health_simple():
    """Simple health check for load balancers."""
    return {"status": "ok"}
