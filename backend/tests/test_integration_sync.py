# backend/tests/test_integration_sync.py
"""
Manual integration sync, form scan and sync logs.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from bharatcrm.main import app
from bharatcrm.models import IntegrationSyncLog, Lead, LeadFormAssignment, Organization, UserRole
from bharatcrm.pipelines.integration_sync import resolve_since
from bharatcrm.services.meta_service import MetaAPIError, MetaLeadAdsService
from bharatcrm.utils.concurrency import run_with_concurrency


client = TestClient(app)

SERVICE = "bharatcrm.pipelines.integration_sync.MetaLeadAdsService"


def form_leads(*pairs):
    """(leadgen_id, email) pairs -> LeadData list for form F1."""
    leads = []
    for leadgen_id, email in pairs:
        field_data = [{"name": "full_name", "values": [f"Lead {leadgen_id}"]}]
        if email:
            field_data.append({"name": "email", "values": [email]})
        leads.append(MetaLeadAdsService.parse_graph_lead({"id": leadgen_id, "field_data": field_data}, form_id="F1"))
    return leads


class TestResolveSince:
    """since_iso -> backfill_days -> last_sync_at -> 24h"""

    NOW = datetime(2024, 1, 15, 12, 0, 0)

    def test_since_iso(self):
        since = resolve_since("2024-01-01T00:00:00Z", 7, self.NOW - timedelta(hours=1), now=self.NOW)
        assert since.year == 2024 and since.day == 1

    def test_backfill_days(self):
        assert resolve_since(None, 7, self.NOW, now=self.NOW) == self.NOW - timedelta(days=7)

    def test_last_sync(self):
        last = self.NOW - timedelta(hours=3)
        assert resolve_since(None, None, last, now=self.NOW) == last

    def test_default(self):
        assert resolve_since(None, None, None, now=self.NOW) == self.NOW - timedelta(hours=24)

    def test_invalid_since_iso(self):
        with pytest.raises(HTTPException) as exc:
            resolve_since("yesterday", None, None)
        assert exc.value.status_code == 400


class TestRunWithConcurrency:
    """Bounded worker pool"""

    async def test_preserves_order(self):
        async def double(x):
            return x * 2

        assert await run_with_concurrency([1, 2, 3, 4, 5], double, concurrency=2) == [2, 4, 6, 8, 10]

    async def test_limits_in_flight(self):
        in_flight = 0
        peak = 0

        async def work(x):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return x

        await run_with_concurrency(list(range(10)), work, concurrency=3)
        assert peak <= 3

    async def test_empty(self):
        async def work(x):
            return x

        assert await run_with_concurrency([], work) == []

    async def test_failure_cancels_remaining_workers(self):
        started, finished = [], []

        async def work(x):
            started.append(x)
            await asyncio.sleep(0.01 if x == 0 else 0.05)
            if x == 0:
                raise RuntimeError("graph down")
            finished.append(x)
            return x

        with pytest.raises(RuntimeError):
            await run_with_concurrency(list(range(12)), work, concurrency=6)

        await asyncio.sleep(0.1)
        assert sorted(started) == [0, 1, 2, 3, 4, 5]
        assert finished == []


class TestManualSync:
    """POST /api/integrations/{id}/sync"""

    def test_imports_new_and_counts_existing(self, db, org, admin, auth_headers, make_integration):
        integration = make_integration(config={"selected_forms": ["F1"]})
        db.add(Lead(org_id=org.id, name="Old", email="old@example.com", external_id="LG-old"))
        db.commit()

        leads = form_leads(("LG-old", "old@example.com"), ("LG-new", "new@example.com"))
        with patch(f"{SERVICE}.fetch_form_leads", new=AsyncMock(return_value=leads)):
            response = client.post(
                f"/api/integrations/{integration.id}/sync",
                json={"backfill_days": 7},
                headers=auth_headers(admin),
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "leads_created": 1, "leads_updated": 1}

        new_lead = db.query(Lead).filter(Lead.external_id == "LG-new").one()
        # known form without a mapping: unassigned, owned by the importer
        assert new_lead.assigned_to is None
        assert new_lead.created_by == admin.id
        assert new_lead.source == "facebook"

        db.refresh(integration)
        assert integration.sync_status == "idle"
        assert integration.last_sync_at is not None

        log = db.query(IntegrationSyncLog).filter(IntegrationSyncLog.integration_id == integration.id).one()
        assert log.sync_type == "manual"
        assert log.status == "success"
        assert log.leads_created == 1

    def test_forms_from_active_assignments(self, db, org, admin, auth_headers, make_user, make_integration):
        rep = make_user("Form Rep")
        integration = make_integration()
        db.add(LeadFormAssignment(
            org_id=org.id, integration_id=integration.id,
            form_id="F1", form_name="Lead Form", assigned_to=rep.id,
        ))
        db.commit()

        fetch = AsyncMock(return_value=form_leads(("LG1", "a@example.com")))
        with patch(f"{SERVICE}.fetch_form_leads", new=fetch):
            response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))

        assert response.status_code == 200
        assert fetch.await_args.args[0] == "F1"
        assert db.query(Lead).one().assigned_to == rep.id

    def test_validation_errors_make_partial_sync(self, db, admin, auth_headers, make_integration):
        integration = make_integration(config={"selected_forms": ["F1"]})

        leads = form_leads(("LG1", "a@example.com"), ("LG2", None))
        with patch(f"{SERVICE}.fetch_form_leads", new=AsyncMock(return_value=leads)):
            response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()
        assert data["leads_created"] == 1
        assert data["errors"] == ["Lead LG2: Lead must have either email or phone"]

        db.refresh(integration)
        assert integration.sync_status == "error"
        assert "LG2" in integration.error_message
        log = db.query(IntegrationSyncLog).one()
        assert log.status == "partial"

    def test_graph_failure_marks_error(self, db, admin, auth_headers, make_integration):
        integration = make_integration(config={"selected_forms": ["F1"]})

        error = MetaAPIError("Failed to fetch leads for form F1", status_code=502, details={"error": {}})
        with patch(f"{SERVICE}.fetch_form_leads", new=AsyncMock(side_effect=error)):
            response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))

        assert response.status_code == 500
        db.refresh(integration)
        assert integration.sync_status == "error"
        assert db.query(IntegrationSyncLog).one().status == "error"

    def test_no_forms_configured(self, admin, auth_headers, make_integration):
        integration = make_integration()
        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["detail"] == "No lead forms configured"

    def test_inactive_integration(self, admin, auth_headers, make_integration):
        integration = make_integration(is_active=False, config={"selected_forms": ["F1"]})
        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_unsupported_platform(self, admin, auth_headers, make_integration):
        integration = make_integration(platform="google_sheets")
        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))
        assert response.status_code == 501

    def test_other_org_not_found(self, db, admin, auth_headers, make_integration):
        other = Organization(name="Other", slug="other")
        db.add(other)
        db.commit()
        integration = make_integration(org_id=other.id, webhook_secret="other-secret")

        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(admin))
        assert response.status_code == 404

    def test_super_admin_sees_other_org(self, db, make_user, auth_headers, make_integration):
        other = Organization(name="Other", slug="other")
        db.add(other)
        db.commit()
        integration = make_integration(org_id=other.id, webhook_secret="other-secret")
        root = make_user("Root", role=UserRole.SUPER_ADMIN)

        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(root))
        # found, but nothing to sync
        assert response.status_code == 400

    def test_sales_forbidden(self, make_user, auth_headers, make_integration):
        rep = make_user("Rep")
        integration = make_integration(config={"selected_forms": ["F1"]})
        response = client.post(f"/api/integrations/{integration.id}/sync", json={}, headers=auth_headers(rep))
        assert response.status_code == 403


class TestFormScan:
    """GET /api/integrations/{id}/forms"""

    def test_collects_forms_with_warnings(self, admin, auth_headers, make_integration):
        integration = make_integration()
        pages = [
            {"id": "P1", "name": "Main Page", "access_token": "t1"},
            {"id": "P2", "name": "No Token Page"},
            {"id": "P3", "name": "Broken Page", "access_token": "t3"},
        ]

        async def page_forms(page_id, page_token):
            if page_id == "P3":
                raise MetaAPIError("Failed to fetch forms for page P3", status_code=403)
            return [{"id": "F1", "name": "Signup", "status": "ACTIVE"}, {"id": "F2", "name": "Callback"}]

        with patch(f"{SERVICE}.fetch_pages", new=AsyncMock(return_value=pages)), \
                patch(f"{SERVICE}.fetch_page_forms", new=AsyncMock(side_effect=page_forms)):
            response = client.get(f"/api/integrations/{integration.id}/forms", headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()
        assert [f["id"] for f in data["forms"]] == ["F2", "F1"]
        assert data["forms"][0]["name"] == "Callback (Main Page)"
        assert data["pages_total"] == 3
        assert data["pages_failed"] == 1
        assert data["pages_with_token"] == 2
        assert data["pages_missing_token"] == 1
        assert len(data["warnings"]) == 2

    def test_single_page_keeps_plain_form_names(self, admin, auth_headers, make_integration):
        integration = make_integration()
        pages = [{"id": "P1", "name": "Main Page", "access_token": "t1"}]
        forms = [{"id": "F1", "name": "Signup", "status": "ACTIVE"}]

        with patch(f"{SERVICE}.fetch_pages", new=AsyncMock(return_value=pages)), \
                patch(f"{SERVICE}.fetch_page_forms", new=AsyncMock(return_value=forms)):
            response = client.get(f"/api/integrations/{integration.id}/forms", headers=auth_headers(admin))

        data = response.json()
        assert data["forms"][0]["name"] == "Signup"
        assert data["forms"][0]["page_name"] == "Main Page"
        assert data["warnings"] is None

    def test_pages_failure(self, admin, auth_headers, make_integration):
        integration = make_integration()
        error = MetaAPIError("Failed to fetch pages: 400", details={"error": {"code": 190}})

        with patch(f"{SERVICE}.fetch_pages", new=AsyncMock(side_effect=error)):
            response = client.get(f"/api/integrations/{integration.id}/forms", headers=auth_headers(admin))

        assert response.status_code == 502

    def test_missing_token(self, admin, auth_headers, make_integration):
        integration = make_integration(credentials={})
        response = client.get(f"/api/integrations/{integration.id}/forms", headers=auth_headers(admin))
        assert response.status_code == 400


class TestSyncLogs:
    """GET /api/integrations/{id}/sync-logs"""

    def test_newest_first(self, db, make_user, auth_headers, make_integration):
        integration = make_integration()
        db.add(IntegrationSyncLog(integration_id=integration.id, sync_type="webhook", status="error"))
        db.add(IntegrationSyncLog(integration_id=integration.id, sync_type="manual", status="success"))
        db.commit()
        rep = make_user("Rep")

        response = client.get(f"/api/integrations/{integration.id}/sync-logs", headers=auth_headers(rep))

        assert response.status_code == 200
        logs = response.json()["logs"]
        assert [log["sync_type"] for log in logs] == ["manual", "webhook"]


class TestCampaignsAndConnection:
    """GET /api/integrations/{id}/campaigns, POST /api/integrations/{id}/test"""

    def test_campaigns_sorted_by_name(self, admin, auth_headers, make_integration):
        integration = make_integration(config={"ad_account_id": "12345"})
        campaigns = [
            {"id": "C2", "name": "winter sale", "status": "ACTIVE"},
            {"id": "C1", "name": "Diwali Offer", "status": "PAUSED"},
        ]

        with patch(f"{SERVICE}.fetch_campaigns", new=AsyncMock(return_value=campaigns)) as fetch:
            response = client.get(f"/api/integrations/{integration.id}/campaigns", headers=auth_headers(admin))

        assert response.status_code == 200
        assert [c["id"] for c in response.json()["campaigns"]] == ["C1", "C2"]
        fetch.assert_awaited_once_with("12345")

    def test_campaigns_need_ad_account(self, admin, auth_headers, make_integration):
        integration = make_integration()
        response = client.get(f"/api/integrations/{integration.id}/campaigns", headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["detail"] == "No ad account configured"

    def test_campaigns_graph_failure(self, admin, auth_headers, make_integration):
        integration = make_integration(config={"ad_account_id": "act_12345"})
        error = MetaAPIError("Failed to fetch campaigns", status_code=502, details={"error": {"code": 100}})

        with patch(f"{SERVICE}.fetch_campaigns", new=AsyncMock(side_effect=error)):
            response = client.get(f"/api/integrations/{integration.id}/campaigns", headers=auth_headers(admin))

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "Failed to fetch campaigns"

    def test_campaigns_sales_forbidden(self, make_user, auth_headers, make_integration):
        integration = make_integration(config={"ad_account_id": "12345"})
        response = client.get(f"/api/integrations/{integration.id}/campaigns", headers=auth_headers(make_user("Rep")))
        assert response.status_code == 403

    def test_connection_ok_clears_error(self, db, admin, auth_headers, make_integration):
        integration = make_integration()
        integration.sync_status = "error"
        integration.error_message = "token expired"
        db.commit()

        with patch(f"{SERVICE}.test_connection", new=AsyncMock(return_value={"success": True})):
            response = client.post(f"/api/integrations/{integration.id}/test", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json() == {"success": True}
        db.refresh(integration)
        assert integration.sync_status == "idle"
        assert integration.error_message is None

    def test_connection_failure_recorded(self, db, admin, auth_headers, make_integration):
        integration = make_integration()
        result = {"success": False, "message": "Error validating access token"}

        with patch(f"{SERVICE}.test_connection", new=AsyncMock(return_value=result)):
            response = client.post(f"/api/integrations/{integration.id}/test", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["success"] is False
        db.refresh(integration)
        assert integration.sync_status == "error"
        assert integration.error_message == "Error validating access token"

    def test_connection_without_token(self, admin, auth_headers, make_integration):
        integration = make_integration(credentials={})
        response = client.post(f"/api/integrations/{integration.id}/test", headers=auth_headers(admin))
        assert response.json() == {"success": False, "message": "Missing access_token"}

    def test_connection_unsupported_platform(self, admin, auth_headers, make_integration):
        integration = make_integration(platform="google_sheets")
        response = client.post(f"/api/integrations/{integration.id}/test", headers=auth_headers(admin))
        assert response.status_code == 501
