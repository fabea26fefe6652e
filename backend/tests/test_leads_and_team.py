# backend/tests/test_leads_and_team.py
"""
Lead creation / reassignment and the team hierarchy.
"""

from fastapi.testclient import TestClient

from bharatcrm.main import app
from bharatcrm.models import Lead, LeadActivity, Organization, User, UserRole
from bharatcrm.services.assignment_service import ROUND_ROBIN, SALES_AUTO
from bharatcrm.services.hierarchy_service import (
    get_accessible_user_ids,
    get_all_reportees,
    validate_manager_assignment,
)


client = TestClient(app)


class TestCreateLead:
    """POST /api/leads"""

    def test_sales_rep_keeps_own_lead(self, db, make_user, auth_headers):
        rep = make_user("Rep")

        response = client.post(
            "/api/leads",
            json={"name": "  Ravi  ", "phone": "98765 43210", "email": "Ravi@Example.com", "company": "Kumar Traders"},
            headers=auth_headers(rep),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Ravi"
        assert data["phone"] == "+919876543210"
        assert data["email"] == "ravi@example.com"
        assert data["assigned_to"] == rep.id
        assert data["assignment_method"] == SALES_AUTO
        assert data["custom_fields"] == {"company": "Kumar Traders"}

        activity = db.query(LeadActivity).filter(LeadActivity.lead_id == data["id"]).one()
        assert activity.action_type == "Lead Created"

    def test_admin_lead_goes_to_pool(self, admin, make_user, auth_headers):
        rep = make_user("Rep")

        response = client.post("/api/leads", json={"name": "Meera"}, headers=auth_headers(admin))

        assert response.status_code == 201
        data = response.json()
        assert data["assigned_to"] == rep.id
        assert data["created_by"] == admin.id
        assert data["assignment_method"] == ROUND_ROBIN
        assert data["source"] == "manual"
        assert data["status"] == "new"

    def test_duplicate_phone_conflict(self, db, org, admin, auth_headers):
        db.add(Lead(org_id=org.id, name="Existing", phone="+91-98765-43210"))
        db.commit()

        response = client.post(
            "/api/leads",
            json={"name": "Ravi", "phone": "9876543210"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "Duplicate lead"
        assert detail["duplicate"]["name"] == "Existing"

    def test_force_skips_duplicate_check(self, db, org, admin, auth_headers):
        db.add(Lead(org_id=org.id, name="Existing", phone="+919876543210"))
        db.commit()

        response = client.post(
            "/api/leads",
            json={"name": "Ravi", "phone": "9876543210", "force": True},
            headers=auth_headers(admin),
        )

        assert response.status_code == 201
        assert db.query(Lead).count() == 2

    def test_blank_name(self, admin, auth_headers):
        response = client.post("/api/leads", json={"name": "   "}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_invalid_phone(self, admin, auth_headers):
        response = client.post("/api/leads", json={"name": "Ravi", "phone": "12345"}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_invalid_email(self, admin, auth_headers):
        response = client.post("/api/leads", json={"name": "Ravi", "email": "not-an-email"}, headers=auth_headers(admin))
        assert response.status_code == 400


class TestAssignLeads:
    """POST /api/leads/assign"""

    def _lead(self, db, org_id, **kwargs):
        lead = Lead(org_id=org_id, name=kwargs.pop("name", "Lead"), **kwargs)
        db.add(lead)
        db.commit()
        db.refresh(lead)
        return lead

    def test_admin_assigns_any_lead(self, db, org, admin, make_user, auth_headers):
        rep = make_user("Rep")
        first = self._lead(db, org.id)
        second = self._lead(db, org.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [first.id, second.id, first.id], "assigned_to": rep.id},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "updated": 2, "assigned_to": rep.id}
        assert {lead.assigned_to for lead in db.query(Lead).all()} == {rep.id}
        assert db.query(LeadActivity).filter(LeadActivity.action_type == "Lead Assigned").count() == 2

    def test_missing_lead(self, db, org, admin, make_user, auth_headers):
        rep = make_user("Rep")
        lead = self._lead(db, org.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id, 999], "assigned_to": rep.id},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404

    def test_target_outside_org(self, db, org, admin, make_user, auth_headers):
        outsider = make_user("Outsider", org_id=org.id + 1)
        lead = self._lead(db, org.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": outsider.id},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Target user not found"

    def test_manager_assigns_team_lead_to_reportee(self, db, org, make_user, auth_headers):
        manager = make_user("Manager")
        reportee = make_user("Reportee", manager_id=manager.id)
        lead = self._lead(db, org.id, assigned_to=manager.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": reportee.id},
            headers=auth_headers(manager),
        )

        assert response.status_code == 200
        db.refresh(lead)
        assert lead.assigned_to == reportee.id

    def test_sales_cannot_assign_outside_team(self, db, org, make_user, auth_headers):
        rep = make_user("Rep")
        peer = make_user("Peer")
        lead = self._lead(db, org.id, assigned_to=rep.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": peer.id},
            headers=auth_headers(rep),
        )
        assert response.status_code == 403

    def test_sales_cannot_take_other_team_lead(self, db, org, make_user, auth_headers):
        rep = make_user("Rep")
        peer = make_user("Peer")
        lead = self._lead(db, org.id, assigned_to=peer.id)

        response = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": rep.id},
            headers=auth_headers(rep),
        )
        assert response.status_code == 403

    def test_accountant_claims_own_unassigned_lead(self, db, org, make_user, auth_headers):
        accountant = make_user("Accounts", role=UserRole.ACCOUNTANT)
        other = make_user("Rep")
        lead = self._lead(db, org.id, created_by=accountant.id)

        to_other = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": other.id},
            headers=auth_headers(accountant),
        )
        to_self = client.post(
            "/api/leads/assign",
            json={"lead_ids": [lead.id], "assigned_to": accountant.id},
            headers=auth_headers(accountant),
        )

        assert to_other.status_code == 403
        assert to_self.status_code == 200


class TestAutoAssign:
    """POST /api/leads/auto-assign"""

    def test_assigns_unassigned_leads(self, db, org, admin, make_user, auth_headers):
        first = make_user("First")
        second = make_user("Second")
        for i in range(3):
            db.add(Lead(org_id=org.id, name=f"Waiting {i}"))
        db.add(Lead(org_id=org.id, name="Taken", assigned_to=first.id))
        db.commit()

        response = client.post("/api/leads/auto-assign", headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["assigned"] == 3
        assert data["unassigned"] == 0
        assert data["methods"] == {ROUND_ROBIN: 3}

        counts = {
            user.id: db.query(Lead).filter(Lead.assigned_to == user.id).count()
            for user in (first, second)
        }
        assert counts == {first.id: 2, second.id: 2}

    def test_no_pool(self, db, org, admin, auth_headers):
        db.add(Lead(org_id=org.id, name="Waiting"))
        db.commit()

        data = client.post("/api/leads/auto-assign", headers=auth_headers(admin)).json()

        assert data["assigned"] == 0
        assert data["unassigned"] == 1

    def test_admin_only(self, make_user, auth_headers):
        rep = make_user("Rep")
        response = client.post("/api/leads/auto-assign", headers=auth_headers(rep))
        assert response.status_code == 403


class TestHierarchyService:
    """get_all_reportees / validate_manager_assignment"""

    def test_reportees_any_depth(self, db, make_user):
        top = make_user("Top")
        middle = make_user("Middle", manager_id=top.id)
        bottom = make_user("Bottom", manager_id=middle.id)
        make_user("Unrelated")

        assert get_all_reportees(db, top.id) == {middle.id, bottom.id}
        assert get_all_reportees(db, bottom.id) == set()
        assert get_accessible_user_ids(db, middle.id) == {middle.id, bottom.id}

    def test_self_manager(self, db, make_user):
        user = make_user("Solo")
        assert validate_manager_assignment(db, user.id, user.id) == (False, "User cannot be their own manager")

    def test_cycle_rejected(self, db, make_user):
        top = make_user("Top")
        middle = make_user("Middle", manager_id=top.id)
        bottom = make_user("Bottom", manager_id=middle.id)

        ok, error = validate_manager_assignment(db, top.id, bottom.id)

        assert ok is False
        assert error.startswith("Cannot create circular reference")

    def test_other_org(self, db, org, make_user):
        other = Organization(name="Other", slug="other")
        db.add(other)
        db.commit()
        user = make_user("Here")
        outsider = make_user("There", org_id=other.id)

        assert validate_manager_assignment(db, user.id, outsider.id) == (False, "Users must be in same organization")

    def test_inactive_manager(self, db, make_user):
        user = make_user("Rep")
        manager = make_user("Gone", active=False)
        assert validate_manager_assignment(db, user.id, manager.id) == (False, "Manager must be an active user")

    def test_missing_user(self, db, make_user):
        user = make_user("Rep")
        assert validate_manager_assignment(db, user.id, 999) == (False, "Users not found")


class TestTeamEndpoints:
    """/api/team"""

    def test_set_and_remove_manager(self, db, admin, make_user, auth_headers):
        manager = make_user("Manager")
        rep = make_user("Rep")

        response = client.put(
            f"/api/team/{rep.id}/manager",
            json={"manager_id": manager.id},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["manager_id"] == manager.id

        reportees = client.get(f"/api/team/{manager.id}/reportees", headers=auth_headers(rep)).json()["reportees"]
        assert [r["id"] for r in reportees] == [rep.id]

        response = client.delete(f"/api/team/{rep.id}/manager", headers=auth_headers(admin))
        assert response.json()["manager_id"] is None

    def test_cycle_is_400(self, admin, make_user, auth_headers):
        top = make_user("Top")
        below = make_user("Below", manager_id=top.id)

        response = client.put(
            f"/api/team/{top.id}/manager",
            json={"manager_id": below.id},
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert "circular" in response.json()["detail"]

    def test_sales_cannot_set_manager(self, make_user, auth_headers):
        rep = make_user("Rep")
        manager = make_user("Manager")
        response = client.put(
            f"/api/team/{rep.id}/manager",
            json={"manager_id": manager.id},
            headers=auth_headers(rep),
        )
        assert response.status_code == 403

    def test_allocation(self, db, admin, make_user, auth_headers):
        rep = make_user("Rep")

        ok = client.put(
            f"/api/team/{rep.id}/allocation",
            json={"lead_allocation_percent": 40},
            headers=auth_headers(admin),
        )
        too_high = client.put(
            f"/api/team/{rep.id}/allocation",
            json={"lead_allocation_percent": 150},
            headers=auth_headers(admin),
        )

        assert ok.status_code == 200
        assert too_high.status_code == 422
        assert db.query(User).filter(User.id == rep.id).one().lead_allocation_percent == 40

    def test_unknown_member(self, admin, auth_headers):
        response = client.get("/api/team/999/reportees", headers=auth_headers(admin))
        assert response.status_code == 404
