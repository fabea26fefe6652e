# backend/bharatcrm/database.py
import logging
from typing import Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError

from bharatcrm.config import settings  # OK: config should NOT import bharatcrm.database

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    # In-memory SQLite (tests, local dev) must share one connection across threads
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session; closed when the request finishes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session, operation: str = "database operation") -> Tuple[bool, Optional[str]]:
    """
    Commit, rolling back on any SQLAlchemy failure.

    Returns (ok, error_message). Callers that can carry on (sync logs, per-row
    imports) inspect the tuple; request handlers turn a failure into a 500.
    """
    try:
        db.commit()
        return True, None
    except (IntegrityError, OperationalError) as e:
        db.rollback()
        kind = "Integrity error" if isinstance(e, IntegrityError) else "Database operational error"
        error_msg = f"{kind} during {operation}: {str(e.orig)[:200]}"
    except SQLAlchemyError as e:
        db.rollback()
        error_msg = f"Database error during {operation}: {str(e)[:200]}"

    logger.error(error_msg)
    return False, error_msg
