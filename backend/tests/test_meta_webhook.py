# backend/tests/test_meta_webhook.py
"""
Meta Lead Ads webhook ingestion.

1. Signature helpers and envelope parsing
2. GET subscription handshake
3. POST delivery: auth, validation, replay protection, assignment, sync logs
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from bharatcrm.main import app
from bharatcrm.models import IntegrationSyncLog, Lead, LeadFormAssignment
from bharatcrm.services.meta_service import MetaAPIError, MetaLeadAdsService
from bharatcrm.utils.meta_signature import compute_meta_signature, validate_meta_signature


client = TestClient(app)

WEBHOOK_URL = "/api/integrations/webhooks/facebook"
FETCH_LEAD = "bharatcrm.pipelines.meta_webhook.MetaLeadAdsService.fetch_lead"


def delivery(leadgen_id="LG1", form_id="F1"):
    return {
        "object": "page",
        "entry": [{
            "id": "P1",
            "time": 1705312800,
            "changes": [{
                "field": "leadgen",
                "value": {
                    "leadgen_id": leadgen_id,
                    "form_id": form_id,
                    "page_id": "P1",
                    "ad_id": "A1",
                    "adgroup_id": "AG1",
                    "created_time": 1705312800,
                },
            }],
        }],
    }


def graph_lead(leadgen_id="LG1", email="Ravi@Example.com", phone="+919876543210"):
    field_data = [{"name": "full_name", "values": ["Ravi Kumar"]}]
    if email:
        field_data.append({"name": "email", "values": [email]})
    if phone:
        field_data.append({"name": "phone_number", "values": [phone]})
    return {
        "id": leadgen_id,
        "created_time": "2024-01-15T10:00:00+0000",
        "field_data": field_data,
        "campaign_id": "C1",
        "campaign_name": "Diwali Offer",
        "ad_id": "A1",
        "form_id": "F1",
    }


def post_delivery(payload, secret="hook-secret", app_secret="integration-app-secret", signature=None):
    body = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = "sha256=" + compute_meta_signature(body, app_secret)
    if signature:
        headers["X-Hub-Signature-256"] = signature
    return client.post(f"{WEBHOOK_URL}?secret={secret}", content=body, headers=headers)


def sync_logs(db, integration_id):
    return (
        db.query(IntegrationSyncLog)
        .filter(IntegrationSyncLog.integration_id == integration_id)
        .order_by(IntegrationSyncLog.id.asc())
        .all()
    )


class TestSignatureHelpers:
    """compute / validate X-Hub-Signature-256"""

    def test_round_trip(self):
        body = b'{"entry": []}'
        digest = compute_meta_signature(body, "secret")
        assert len(digest) == 64
        assert validate_meta_signature(body, f"sha256={digest}", "secret")

    def test_tampered_body(self):
        signature = compute_meta_signature(b"original", "secret")
        assert not validate_meta_signature(b"tampered", signature, "secret")

    def test_missing_parts(self):
        assert not validate_meta_signature(b"body", None, "secret")
        assert not validate_meta_signature(b"body", compute_meta_signature(b"body", "secret"), None)
        assert not validate_meta_signature(b"body", "md5=abc", "secret")

    def test_non_ascii_header_is_mismatch(self):
        assert not validate_meta_signature(b"body", "sha256=\u00e9", "secret")


class TestExtractLead:
    """MetaLeadAdsService.extract_lead_from_webhook"""

    def test_extracts_first_change(self):
        event = MetaLeadAdsService.extract_lead_from_webhook(delivery())
        assert event["leadgen_id"] == "LG1"
        assert event["form_id"] == "F1"
        assert event["page_id"] == "P1"
        assert event["adgroup_id"] == "AG1"

    def test_numeric_ids_become_strings(self):
        payload = delivery()
        payload["entry"][0]["changes"][0]["value"]["leadgen_id"] = 123456789
        assert MetaLeadAdsService.extract_lead_from_webhook(payload)["leadgen_id"] == "123456789"

    @pytest.mark.parametrize("payload", [None, {}, {"entry": []}, {"entry": [{"changes": []}]},
                                         {"entry": [{"changes": [{"value": {"form_id": "F1"}}]}]}])
    def test_no_lead(self, payload):
        assert MetaLeadAdsService.extract_lead_from_webhook(payload) is None

    def test_parse_graph_lead(self):
        lead = MetaLeadAdsService.parse_graph_lead(graph_lead(), form_id="F1", page_id="P1")
        assert lead.name == "Ravi Kumar"
        assert lead.email == "ravi@example.com"
        assert lead.phone == "+919876543210"
        assert lead.external_id == "LG1"
        assert lead.campaign_data.campaign_id == "C1"
        assert lead.metadata["page_id"] == "P1"

    def test_parse_graph_lead_without_name(self):
        lead = MetaLeadAdsService.parse_graph_lead({"id": "LG2", "field_data": []})
        assert lead.name == "Unknown"


class TestWebhookHandshake:
    """GET /api/integrations/webhooks/facebook"""

    def test_echoes_challenge(self, make_integration):
        make_integration()
        response = client.get(
            WEBHOOK_URL,
            params={
                "secret": "hook-secret",
                "hub.mode": "subscribe",
                "hub.verify_token": "hook-secret",
                "hub.challenge": "1158201444",
            },
        )
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_secret_from_header(self, make_integration):
        make_integration()
        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.verify_token": "hook-secret", "hub.challenge": "42"},
            headers={"x-webhook-secret": "hook-secret"},
        )
        assert response.status_code == 200
        assert response.text == "42"

    def test_wrong_verify_token(self, make_integration):
        make_integration()
        response = client.get(
            WEBHOOK_URL,
            params={"secret": "hook-secret", "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_unknown_integration(self):
        response = client.get(
            WEBHOOK_URL,
            params={"secret": "ghost", "hub.mode": "subscribe", "hub.verify_token": "ghost", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_missing_secret(self):
        response = client.get(WEBHOOK_URL, params={"hub.mode": "subscribe"})
        assert response.status_code == 401


class TestWebhookDelivery:
    """POST /api/integrations/webhooks/facebook"""

    def test_missing_secret(self):
        response = client.post(WEBHOOK_URL, content=b"{}")
        assert response.status_code == 401

    def test_unknown_integration(self):
        response = post_delivery(delivery(), secret="ghost")
        assert response.status_code == 404

    def test_inactive_integration(self, make_integration):
        make_integration(is_active=False)
        response = post_delivery(delivery())
        assert response.status_code == 404

    def test_invalid_signature_logged(self, db, make_integration):
        integration = make_integration()

        response = post_delivery(delivery(), app_secret="wrong-secret")

        assert response.status_code == 401
        logs = sync_logs(db, integration.id)
        assert len(logs) == 1
        assert logs[0].status == "error"
        assert db.query(Lead).count() == 0

    def test_non_ascii_signature_rejected(self, db, make_integration):
        integration = make_integration()

        response = post_delivery(delivery(), signature=b"sha256=\xe9")

        assert response.status_code == 401
        logs = sync_logs(db, integration.id)
        assert len(logs) == 1
        assert logs[0].status == "error"

    def test_missing_signature(self, make_integration):
        make_integration()
        response = post_delivery(delivery(), signature="")
        assert response.status_code == 401

    def test_invalid_json(self, make_integration):
        make_integration()
        response = post_delivery(b"not json")
        assert response.status_code == 400

    def test_no_lead_data(self, db, make_integration):
        integration = make_integration()

        response = post_delivery({"object": "page", "entry": []})

        assert response.status_code == 400
        logs = sync_logs(db, integration.id)
        assert logs[-1].status == "error"
        assert logs[-1].error_message == "No lead data found in webhook"

    def test_creates_lead_with_form_assignment(self, db, org, make_user, make_integration):
        rep = make_user("Form Rep")
        integration = make_integration()
        db.add(LeadFormAssignment(
            org_id=org.id, integration_id=integration.id,
            form_id="F1", form_name="Lead Form", assigned_to=rep.id,
        ))
        db.commit()

        with patch(FETCH_LEAD, new=AsyncMock(return_value=graph_lead())):
            response = post_delivery(delivery())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["assignment_method"] == "form"

        lead = db.query(Lead).filter(Lead.id == data["lead_id"]).first()
        assert lead.external_id == "LG1"
        assert lead.name == "Ravi Kumar"
        assert lead.email == "ravi@example.com"
        assert lead.source == "facebook"
        assert lead.assigned_to == rep.id
        assert lead.created_by == rep.id
        assert lead.integration_metadata["form_id"] == "F1"
        assert lead.integration_metadata["campaign_id"] == "C1"
        assert lead.integration_metadata["adgroup_id"] == "AG1"

        logs = sync_logs(db, integration.id)
        assert logs[-1].status == "success"
        assert logs[-1].leads_created == 1
        assert logs[-1].error_message == "Lead created via form assignment"

        db.refresh(integration)
        assert integration.last_sync_at is not None

    def test_unmapped_form_stays_unassigned(self, db, make_user, make_integration):
        make_user("Pool Rep")
        make_integration()

        with patch(FETCH_LEAD, new=AsyncMock(return_value=graph_lead())):
            response = post_delivery(delivery())

        assert response.status_code == 200
        assert response.json()["assignment_method"] == "unassigned"
        assert db.query(Lead).one().assigned_to is None

    def test_replay_is_idempotent(self, db, make_integration):
        integration = make_integration()
        fetch = AsyncMock(return_value=graph_lead())

        with patch(FETCH_LEAD, new=fetch):
            first = post_delivery(delivery())
            second = post_delivery(delivery())

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"message": "Lead already exists", "lead_id": first.json()["lead_id"]}
        assert db.query(Lead).count() == 1
        assert fetch.await_count == 1

        replay_log = sync_logs(db, integration.id)[-1]
        assert replay_log.status == "success"
        assert replay_log.leads_created == 0
        assert replay_log.leads_updated == 1

    def test_falls_back_to_global_app_secret(self, db, make_integration):
        make_integration(credentials={"access_token": "page-token"})

        with patch(FETCH_LEAD, new=AsyncMock(return_value=graph_lead())):
            response = post_delivery(delivery(), app_secret="global-meta-secret")

        assert response.status_code == 200
        assert db.query(Lead).count() == 1

    def test_missing_access_token(self, db, make_integration):
        integration = make_integration(credentials={"app_secret": "integration-app-secret"})

        response = post_delivery(delivery())

        assert response.status_code == 400
        assert sync_logs(db, integration.id)[-1].status == "error"

    def test_graph_failure_surfaces_details(self, db, make_integration):
        integration = make_integration()
        error = MetaAPIError(
            "Failed to fetch lead from Meta Graph API",
            status_code=502,
            details={"error": {"message": "Invalid OAuth access token", "code": 190}},
        )

        with patch(FETCH_LEAD, new=AsyncMock(side_effect=error)):
            response = post_delivery(delivery())

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["details"]["error"]["code"] == 190
        assert sync_logs(db, integration.id)[-1].status == "error"
        assert db.query(Lead).count() == 0

    def test_lead_without_contact_rejected(self, db, make_integration):
        integration = make_integration()

        with patch(FETCH_LEAD, new=AsyncMock(return_value=graph_lead(email=None, phone=None))):
            response = post_delivery(delivery())

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert "Lead must have either email or phone" in detail["details"]
        assert sync_logs(db, integration.id)[-1].status == "error"
        assert db.query(Lead).count() == 0
