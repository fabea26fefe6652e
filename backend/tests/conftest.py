# backend/tests/conftest.py
"""
Shared fixtures.

The app runs against a single in-memory SQLite database (StaticPool) that is
recreated for every test. Environment must be set before bharatcrm is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["META_APP_SECRET"] = "global-meta-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"

import pytest

from bharatcrm.main import app  # noqa: F401  (registers every model)
from bharatcrm.database import Base, SessionLocal, engine
from bharatcrm.auth.jwt_handler import create_access_token, get_password_hash
from bharatcrm.models import Organization, PlatformIntegration, User, UserRole


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org(db):
    organization = Organization(name="Acme Traders", slug="acme")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def make_user(db, org):
    """Factory: make_user(name, role=..., approved=..., percent=..., manager_id=...)."""
    counter = {"n": 0}

    def _make(
        name="Rep",
        role=UserRole.SALES,
        approved=True,
        active=True,
        percent=None,
        manager_id=None,
        org_id=None,
        password=None,
        **extra,
    ):
        counter["n"] += 1
        user = User(
            org_id=org_id if org_id is not None else org.id,
            name=name,
            email=f"user{counter['n']}@example.com",
            hashed_password=get_password_hash(password) if password else None,
            role=role,
            is_approved=approved,
            is_active=active,
            lead_allocation_percent=percent,
            manager_id=manager_id,
            **extra,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Asha Admin", role=UserRole.ADMIN)


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": user.email, "user_id": user.id})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_integration(db, org):
    def _make(
        platform="facebook",
        webhook_secret="hook-secret",
        credentials=None,
        config=None,
        is_active=True,
        org_id=None,
    ):
        integration = PlatformIntegration(
            org_id=org_id if org_id is not None else org.id,
            name=f"{platform} leads",
            platform=platform,
            credentials=credentials if credentials is not None else {
                "access_token": "page-token",
                "app_secret": "integration-app-secret",
            },
            config=config or {},
            webhook_secret=webhook_secret,
            is_active=is_active,
        )
        db.add(integration)
        db.commit()
        db.refresh(integration)
        return integration

    return _make
