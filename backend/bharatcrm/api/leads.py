# backend/bharatcrm/api/leads.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bharatcrm.database import get_db, safe_commit
from bharatcrm.auth.dependencies import get_current_user, require_org, require_role
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.lead import Lead, LeadActivity
from bharatcrm.models.user import User, UserRole
from bharatcrm.services.assignment_service import assign_lead
from bharatcrm.services.duplicate_service import check_duplicate
from bharatcrm.services.hierarchy_service import get_accessible_user_ids
from bharatcrm.utils.logger import logger
from bharatcrm.utils.validators import validate_email, validate_phone_number

router = APIRouter(prefix="/api/leads", tags=["leads"])


# -----------------------------
# Request models
# -----------------------------
class LeadCreate(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    force: bool = False


class DuplicateCheckRequest(BaseModel):
    phone: Optional[str] = None


class AssignRequest(BaseModel):
    lead_ids: List[int]
    assigned_to: int


# -----------------------------
# Helpers (serialization)
# -----------------------------
def lead_to_dict(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "org_id": lead.org_id,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "status": lead.status,
        "source": lead.source,
        "assigned_to": lead.assigned_to,
        "created_by": lead.created_by,
        "integration_id": lead.integration_id,
        "external_id": lead.external_id,
        "custom_fields": lead.custom_fields or {},
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


def _add_activity(db: Session, lead_id: int, user_id: int, action_type: str, comments: str) -> None:
    db.add(LeadActivity(lead_id=lead_id, user_id=user_id, action_type=action_type, comments=comments))


# -----------------------------
# Routes
# -----------------------------
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lead(
    payload: LeadCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Manual lead entry: duplicate check (409 unless force), then auto-assignment."""
    org_id = require_org(current_user)

    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")

    phone = None
    if payload.phone:
        ok, phone, error = validate_phone_number(payload.phone)
        if not ok:
            raise HTTPException(status_code=400, detail=error)

    email = (payload.email or "").strip().lower() or None
    if email:
        ok, error = validate_email(email)
        if not ok:
            raise HTTPException(status_code=400, detail=error)

    if phone and not payload.force:
        duplicate = check_duplicate(db, phone, org_id)
        if duplicate:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": "Duplicate lead", "duplicate": duplicate.model_dump()},
            )

    lead = Lead(
        org_id=org_id,
        name=name,
        email=email,
        phone=phone,
        source=payload.source or "manual",
        status=payload.status or "new",
        custom_fields={"company": payload.company} if payload.company else {},
    )

    assignment = assign_lead(db, lead, org_id, created_by_user_id=current_user.id)
    lead.assigned_to = assignment.assigned_to
    lead.created_by = assignment.created_by or current_user.id

    db.add(lead)
    ok, error = safe_commit(db, "create lead")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    db.refresh(lead)

    _add_activity(db, lead.id, current_user.id, "Lead Created", f"Lead created by {current_user.name}")
    safe_commit(db, "lead created activity")

    logger.info(f"[Leads] Lead {lead.id} created by user {current_user.id} ({assignment.assignment_method})")
    return {**lead_to_dict(lead), "assignment_method": assignment.assignment_method}


@router.post("/check-duplicate")
async def check_duplicate_lead(
    payload: DuplicateCheckRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not payload.phone:
        raise HTTPException(status_code=400, detail="Phone is required")
    org_id = require_org(current_user)

    duplicate = check_duplicate(db, payload.phone, org_id)
    return {"duplicate": duplicate.model_dump() if duplicate else None}


@router.post("/assign")
async def assign_leads(
    payload: AssignRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Reassign leads.

    - admin / super_admin: any leads of the org
    - sales: to self or a reportee; leads must belong to (or were created by) the team
    - others: only their own unassigned leads, only to themselves
    """
    org_id = require_org(current_user)
    lead_ids = list(dict.fromkeys(payload.lead_ids))
    if not lead_ids:
        raise HTTPException(status_code=400, detail="lead_ids is required")

    target = db.query(User).filter(User.id == payload.assigned_to, User.org_id == org_id).first()
    if not target:
        raise HTTPException(status_code=404, detail="Target user not found")

    query = db.query(Lead).filter(Lead.id.in_(lead_ids), Lead.org_id == org_id)

    if current_user.is_admin:
        leads = query.all()
        if len(leads) != len(lead_ids):
            raise HTTPException(status_code=404, detail="Some leads were not found")

    elif current_user.role == UserRole.SALES:
        team = get_accessible_user_ids(db, current_user.id)
        if target.id not in team:
            raise HTTPException(status_code=403, detail="You can only assign leads to yourself or your team")

        leads = query.all()
        if len(leads) != len(lead_ids):
            raise HTTPException(status_code=404, detail="Some leads were not found")

        for lead in leads:
            owner = lead.assigned_to if lead.assigned_to else lead.created_by
            if owner not in team:
                raise HTTPException(status_code=403, detail=f"Lead {lead.id} does not belong to your team")

    else:
        if target.id != current_user.id:
            raise HTTPException(status_code=403, detail="You can only assign leads to yourself")

        leads = query.filter(Lead.assigned_to.is_(None), Lead.created_by == current_user.id).all()
        if len(leads) != len(lead_ids):
            raise HTTPException(status_code=404, detail="Some leads were not found")

    for lead in leads:
        lead.assigned_to = target.id
        _add_activity(db, lead.id, current_user.id, "Lead Assigned", f"Assigned to {target.name}")

    ok, error = safe_commit(db, "assign leads")
    if not ok:
        raise HTTPException(status_code=500, detail=error)

    logger.info(f"[Leads] User {current_user.id} assigned {len(leads)} leads to {target.id}")
    return {"success": True, "updated": len(leads), "assigned_to": target.id}


@router.post("/auto-assign")
async def auto_assign_leads(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Run the resolver over every unassigned lead, oldest first, one commit per lead."""
    require_role(current_user, any_of=UserRole.ADMINS, detail="Admin privileges required")
    org_id = require_org(current_user)

    leads = (
        db.query(Lead)
        .filter(Lead.org_id == org_id, Lead.assigned_to.is_(None))
        .order_by(Lead.created_at.asc(), Lead.id.asc())
        .all()
    )

    assigned = 0
    methods: Dict[str, Any] = {}
    for lead in leads:
        assignment = assign_lead(db, lead, org_id)
        if not assignment.assigned_to:
            continue

        lead.assigned_to = assignment.assigned_to
        ok, _ = safe_commit(db, f"auto-assign lead {lead.id}")
        if ok:
            assigned += 1
            methods[assignment.assignment_method] = methods.get(assignment.assignment_method, 0) + 1

    logger.info(f"[Leads] Auto-assign for org {org_id}: {assigned}/{len(leads)} assigned")
    return {
        "success": True,
        "total": len(leads),
        "assigned": assigned,
        "unassigned": len(leads) - assigned,
        "methods": methods,
    }
