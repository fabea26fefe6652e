# backend/bharatcrm/api/assignments.py
"""
Routing rules for integration leads.

Campaign and lead-form assignments map a Meta campaign/form to a rep; the
resolver checks form rules first, then campaign rules. Both collections share
the same CRUD shape:

    GET    /api/integrations/{id}/campaign-assignments          (any org member)
    POST   /api/integrations/{id}/campaign-assignments          (admin, upsert)
    PATCH  /api/integrations/{id}/campaign-assignments/{rule}   (admin)
    DELETE /api/integrations/{id}/campaign-assignments/{rule}   (admin)

and the same under /form-assignments.
"""

from typing import Optional, Type, Union

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bharatcrm.database import get_db, safe_commit
from bharatcrm.auth.dependencies import get_current_user, require_org, require_role
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.integration import CampaignAssignment, LeadFormAssignment
from bharatcrm.models.user import User, UserRole
from bharatcrm.api.integrations import get_org_integration
from bharatcrm.utils.logger import logger

router = APIRouter(prefix="/api/integrations", tags=["assignments"])

Rule = Union[CampaignAssignment, LeadFormAssignment]


class CampaignAssignmentCreate(BaseModel):
    campaign_id: str
    campaign_name: str
    assigned_to: int


class FormAssignmentCreate(BaseModel):
    form_id: str
    form_name: str
    assigned_to: int


class AssignmentUpdate(BaseModel):
    assigned_to: Optional[int] = None
    is_active: Optional[bool] = None
    name: Optional[str] = None


# (model, key column, name column)
RULES = {
    "campaign": (CampaignAssignment, "campaign_id", "campaign_name"),
    "form": (LeadFormAssignment, "form_id", "form_name"),
}


def rule_to_dict(rule: Rule, key_attr: str, name_attr: str) -> dict:
    user = rule.assigned_user
    return {
        "id": rule.id,
        "integration_id": rule.integration_id,
        key_attr: getattr(rule, key_attr),
        name_attr: getattr(rule, name_attr),
        "assigned_to": rule.assigned_to,
        "assigned_user": {"id": user.id, "name": user.name, "email": user.email} if user else None,
        "is_active": rule.is_active,
        "created_at": rule.created_at.isoformat() if rule.created_at else None,
    }


def _require_org_member(db: Session, org_id: int, user_id: int) -> None:
    exists = db.query(User.id).filter(User.id == user_id, User.org_id == org_id).first()
    if not exists:
        raise HTTPException(status_code=400, detail="Assigned user must belong to your organization")


def _list_rules(db: Session, kind: str, integration_id: int, user: CurrentUser) -> dict:
    model, key_attr, name_attr = RULES[kind]
    integration = get_org_integration(db, integration_id, user)
    rules = (
        db.query(model)
        .filter(model.integration_id == integration.id, model.org_id == integration.org_id)
        .order_by(model.created_at.desc(), model.id.desc())
        .all()
    )
    return {"assignments": [rule_to_dict(rule, key_attr, name_attr) for rule in rules]}


def _upsert_rule(
    db: Session,
    kind: str,
    integration_id: int,
    user: CurrentUser,
    key: str,
    name: str,
    assigned_to: int,
) -> dict:
    require_role(user, any_of=UserRole.ADMINS, detail="Admin privileges required")
    model, key_attr, name_attr = RULES[kind]
    integration = get_org_integration(db, integration_id, user)

    if not key or not name or not assigned_to:
        raise HTTPException(status_code=400, detail=f"{key_attr}, {name_attr} and assigned_to are required")
    _require_org_member(db, integration.org_id, assigned_to)

    rule = (
        db.query(model)
        .filter(
            model.org_id == integration.org_id,
            model.integration_id == integration.id,
            getattr(model, key_attr) == key,
        )
        .first()
    )
    if not rule:
        rule = model(org_id=integration.org_id, integration_id=integration.id)
        setattr(rule, key_attr, key)
        db.add(rule)

    setattr(rule, name_attr, name)
    rule.assigned_to = assigned_to
    rule.is_active = True

    ok, error = safe_commit(db, f"save {kind} assignment")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    db.refresh(rule)

    logger.info(f"[Assignments] {kind} {key} -> user {assigned_to} (integration {integration.id})")
    return rule_to_dict(rule, key_attr, name_attr)


def _get_rule(db: Session, model: Type, integration_id: int, rule_id: int, org_id: int) -> Rule:
    rule = (
        db.query(model)
        .filter(model.id == rule_id, model.integration_id == integration_id, model.org_id == org_id)
        .first()
    )
    if not rule:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return rule


def _update_rule(
    db: Session,
    kind: str,
    integration_id: int,
    rule_id: int,
    user: CurrentUser,
    payload: AssignmentUpdate,
) -> dict:
    require_role(user, any_of=UserRole.ADMINS, detail="Admin privileges required")
    model, key_attr, name_attr = RULES[kind]
    integration = get_org_integration(db, integration_id, user)
    rule = _get_rule(db, model, integration.id, rule_id, integration.org_id)

    if payload.assigned_to is not None:
        _require_org_member(db, integration.org_id, payload.assigned_to)
        rule.assigned_to = payload.assigned_to
    if payload.is_active is not None:
        rule.is_active = payload.is_active
    if payload.name:
        setattr(rule, name_attr, payload.name)

    ok, error = safe_commit(db, f"update {kind} assignment")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    db.refresh(rule)
    return rule_to_dict(rule, key_attr, name_attr)


def _delete_rule(db: Session, kind: str, integration_id: int, rule_id: int, user: CurrentUser) -> dict:
    require_role(user, any_of=UserRole.ADMINS, detail="Admin privileges required")
    model, _, _ = RULES[kind]
    integration = get_org_integration(db, integration_id, user)
    rule = _get_rule(db, model, integration.id, rule_id, integration.org_id)

    db.delete(rule)
    ok, error = safe_commit(db, f"delete {kind} assignment")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    return {"success": True}


# ==================== Campaign assignments ====================

@router.get("/{integration_id}/campaign-assignments")
async def list_campaign_assignments(
    integration_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_org(current_user)
    return _list_rules(db, "campaign", integration_id, current_user)


@router.post("/{integration_id}/campaign-assignments", status_code=status.HTTP_201_CREATED)
async def create_campaign_assignment(
    integration_id: int,
    payload: CampaignAssignmentCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _upsert_rule(
        db, "campaign", integration_id, current_user,
        payload.campaign_id, payload.campaign_name, payload.assigned_to,
    )


@router.patch("/{integration_id}/campaign-assignments/{assignment_id}")
async def update_campaign_assignment(
    integration_id: int,
    assignment_id: int,
    payload: AssignmentUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _update_rule(db, "campaign", integration_id, assignment_id, current_user, payload)


@router.delete("/{integration_id}/campaign-assignments/{assignment_id}")
async def delete_campaign_assignment(
    integration_id: int,
    assignment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _delete_rule(db, "campaign", integration_id, assignment_id, current_user)


# ==================== Form assignments ====================

@router.get("/{integration_id}/form-assignments")
async def list_form_assignments(
    integration_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_org(current_user)
    return _list_rules(db, "form", integration_id, current_user)


@router.post("/{integration_id}/form-assignments", status_code=status.HTTP_201_CREATED)
async def create_form_assignment(
    integration_id: int,
    payload: FormAssignmentCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _upsert_rule(
        db, "form", integration_id, current_user,
        payload.form_id, payload.form_name, payload.assigned_to,
    )


@router.patch("/{integration_id}/form-assignments/{assignment_id}")
async def update_form_assignment(
    integration_id: int,
    assignment_id: int,
    payload: AssignmentUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _update_rule(db, "form", integration_id, assignment_id, current_user, payload)


@router.delete("/{integration_id}/form-assignments/{assignment_id}")
async def delete_form_assignment(
    integration_id: int,
    assignment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _delete_rule(db, "form", integration_id, assignment_id, current_user)
