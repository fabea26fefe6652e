# backend/tests/test_phone_and_duplicates.py
"""
Phone normalization and duplicate detection.

1. normalize_phone / last_ten_digits
2. check_duplicate service
3. POST /api/leads/check-duplicate
"""

import pytest
from fastapi.testclient import TestClient

from bharatcrm.main import app
from bharatcrm.models import Lead, Organization
from bharatcrm.services.duplicate_service import check_duplicate, iter_org_phone_leads
from bharatcrm.utils.phone import last_ten_digits, normalize_phone


client = TestClient(app)


class TestNormalizePhone:
    """normalize_phone / last_ten_digits"""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9876543210", "+919876543210"),
            ("98765 43210", "+919876543210"),
            ("+91 98765-43210", "+919876543210"),
            ("919876543210", "+919876543210"),
            ("(987) 654-3210", "+919876543210"),
            ("14155552671", "+14155552671"),
            ("12345", "12345"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_empty_values(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""
        assert last_ten_digits(None) == ""

    @pytest.mark.parametrize("raw", ["9876543210", "+91 98765 43210", "+1 415 555 2671", "0044 20 7946 0958"])
    def test_idempotent(self, raw):
        once = normalize_phone(raw)
        assert normalize_phone(once) == once

    def test_last_ten_digits(self):
        assert last_ten_digits("+91 98765 43210") == "9876543210"
        assert last_ten_digits("09876543210") == "9876543210"


class TestCheckDuplicate:
    """check_duplicate"""

    def _lead(self, db, org_id, name, phone, **kwargs):
        lead = Lead(org_id=org_id, name=name, phone=phone, **kwargs)
        db.add(lead)
        db.commit()
        db.refresh(lead)
        return lead

    def test_exact_match_across_formats(self, db, org):
        existing = self._lead(db, org.id, "Ravi", "+91-98765-43210")

        match = check_duplicate(db, "98765 43210", org.id)

        assert match is not None
        assert match.id == existing.id
        assert match.name == "Ravi"

    def test_no_match(self, db, org):
        self._lead(db, org.id, "Ravi", "9876543210")
        assert check_duplicate(db, "9123456789", org.id) is None

    def test_missing_inputs(self, db, org):
        assert check_duplicate(db, None, org.id) is None
        assert check_duplicate(db, "9876543210", None) is None

    def test_last_ten_digit_fallback(self, db, org):
        existing = self._lead(db, org.id, "Meera", "09876543210")

        match = check_duplicate(db, "+919876543210", org.id)

        assert match is not None
        assert match.id == existing.id

    def test_other_org_ignored(self, db, org):
        other = Organization(name="Other", slug="other")
        db.add(other)
        db.commit()
        self._lead(db, other.id, "Ravi", "9876543210")

        assert check_duplicate(db, "9876543210", org.id) is None

    def test_assignee_label(self, db, org, make_user):
        rep = make_user("Kiran")
        self._lead(db, org.id, "Ravi", "9876543210", assigned_to=rep.id)

        match = check_duplicate(db, "9876543210", org.id)

        assert match.assigned_to == rep.id
        assert match.assignee_name == f"Kiran ({rep.email})"

    def test_batches_cover_every_lead(self, db, org):
        for i in range(5):
            self._lead(db, org.id, f"Lead {i}", f"98765432{i:02d}")

        batches = list(iter_org_phone_leads(db, org.id, batch_size=2))

        assert [len(b) for b in batches] == [2, 2, 1]
        assert check_duplicate(db, "9876543200", org.id) is not None


class TestCheckDuplicateEndpoint:
    """POST /api/leads/check-duplicate"""

    def test_requires_auth(self):
        response = client.post("/api/leads/check-duplicate", json={"phone": "9876543210"})
        assert response.status_code == 401

    def test_missing_phone(self, admin, auth_headers):
        response = client.post("/api/leads/check-duplicate", json={}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_no_org(self, make_user, auth_headers):
        orphan = make_user("Orphan", org_id=0)
        response = client.post(
            "/api/leads/check-duplicate",
            json={"phone": "9876543210"},
            headers=auth_headers(orphan),
        )
        assert response.status_code == 404

    def test_returns_duplicate(self, db, org, admin, auth_headers):
        db.add(Lead(org_id=org.id, name="Ravi", phone="+919876543210"))
        db.commit()

        response = client.post(
            "/api/leads/check-duplicate",
            json={"phone": "98765 43210"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["duplicate"]["name"] == "Ravi"

    def test_returns_null(self, admin, auth_headers):
        response = client.post(
            "/api/leads/check-duplicate",
            json={"phone": "9876543210"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json() == {"duplicate": None}
