# backend/bharatcrm/config.py
import os
from pathlib import Path
from dotenv import load_dotenv
from urllib.parse import quote_plus

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _build_database_url() -> str:
    """Use DATABASE_URL directly (Supabase pooler style) or build it from DB_* parts."""
    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return direct_url

    host = os.getenv("DB_HOST", "127.0.0.1")
    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password_raw = os.getenv("DB_PASSWORD", "")
    db = os.getenv("DB_NAME", "postgres")
    password = quote_plus(password_raw)
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


class Settings:
    DATABASE_URL: str = _build_database_url()

    # ================= Environment Configuration =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:3000,http://localhost:3000",
        )
    )

    # ================= Authentication Configuration =================
    # JWT secret key - MUST be set in production via environment variable
    JWT_SECRET_KEY: str | None = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

    # ================= Meta Lead Ads =================
    # App secret used for X-Hub-Signature-256 when an integration has none of its own
    META_APP_SECRET: str | None = os.getenv("META_APP_SECRET")
    META_GRAPH_API_VERSION: str = os.getenv("META_GRAPH_API_VERSION", "v18.0")
    GRAPH_SCAN_CONCURRENCY: int = int(os.getenv("GRAPH_SCAN_CONCURRENCY", "6"))
    WEBHOOK_RATE_LIMIT: str = os.getenv("WEBHOOK_RATE_LIMIT", "120/minute")

    # ================= Google (Drive recordings) =================
    GOOGLE_CLIENT_ID: str | None = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET: str | None = os.getenv("GOOGLE_CLIENT_SECRET")

    # ================= AI providers =================
    # Org-level keys live in ai_config rows; this is only used by the health check
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    AI_REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("AI_REQUEST_TIMEOUT_SECONDS", "120"))

    # ================= Lead processing =================
    DUPLICATE_BATCH_SIZE: int = int(os.getenv("DUPLICATE_BATCH_SIZE", "1000"))
    RECORDING_BATCH_LIMIT: int = int(os.getenv("RECORDING_BATCH_LIMIT", "10"))


settings = Settings()


# =============================================================================
# STARTUP CHECKS
# =============================================================================

class ConfigValidationError(Exception):
    """Startup configuration is unusable."""


# (setting names, message) pairs; a missing setting only degrades one feature
DEGRADED_FEATURES = [
    (("META_APP_SECRET",), "META_APP_SECRET missing - webhooks need a per-integration app_secret"),
    (
        ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
        "GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET missing - Drive recording sync disabled",
    ),
    (("JWT_SECRET_KEY",), "JWT_SECRET_KEY missing - tokens will not survive a restart"),
]


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Check settings at startup.

    Errors stop a production boot; warnings name the feature that will not work.
    Returns {"errors": [...], "warnings": [...]}.
    """
    is_production = settings.ENVIRONMENT == "production"
    errors = []
    warnings = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is required")
    if is_production and not settings.JWT_SECRET_KEY:
        errors.append("JWT_SECRET_KEY is required in production")

    for names, message in DEGRADED_FEATURES:
        if not all(getattr(settings, name) for name in names):
            warnings.append(message)

    if is_production and any("localhost" in o for o in settings.CORS_ORIGINS):
        warnings.append("CORS_ORIGINS includes localhost in production")

    if raise_on_error and errors:
        raise ConfigValidationError("; ".join(errors))

    return {"errors": errors, "warnings": warnings}


def get_config_status() -> dict:
    """Which integrations are configured (booleans only, never values)."""
    return {
        "environment": settings.ENVIRONMENT,
        "database_configured": bool(settings.DATABASE_URL),
        "jwt_configured": bool(settings.JWT_SECRET_KEY),
        "meta_app_secret_configured": bool(settings.META_APP_SECRET),
        "google_oauth_configured": bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET),
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "graph_api_version": settings.META_GRAPH_API_VERSION,
    }


if settings.ENVIRONMENT not in ("production", "test"):
    print(f">>> .env loaded from: {ENV_FILE}")
    print(f">>> CORS_ORIGINS in use: {settings.CORS_ORIGINS}")
    print(f">>> META_APP_SECRET present: {bool(settings.META_APP_SECRET)}")
    print(f">>> GOOGLE_CLIENT_ID present: {bool(settings.GOOGLE_CLIENT_ID)}")
