# backend/bharatcrm/api/team.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bharatcrm.database import get_db, safe_commit
from bharatcrm.auth.dependencies import get_current_user, require_admin, require_org
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.user import User
from bharatcrm.services.hierarchy_service import get_all_reportees, validate_manager_assignment
from bharatcrm.utils.logger import logger

router = APIRouter(prefix="/api/team", tags=["team"])


class ManagerUpdate(BaseModel):
    manager_id: int


class AllocationUpdate(BaseModel):
    lead_allocation_percent: Optional[int] = Field(default=None, ge=0, le=100)


def member_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "manager_id": user.manager_id,
        "lead_allocation_percent": user.lead_allocation_percent,
        "is_active": user.is_active,
        "is_approved": user.is_approved,
    }


def _get_member(db: Session, user_id: int, org_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.org_id == org_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/{user_id}/reportees")
async def list_reportees(
    user_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    org_id = require_org(current_user)
    _get_member(db, user_id, org_id)

    ids = get_all_reportees(db, user_id)
    users = db.query(User).filter(User.id.in_(ids)).order_by(User.name.asc()).all() if ids else []
    return {"reportees": [member_to_dict(u) for u in users]}


@router.put("/{user_id}/manager")
async def set_manager(
    user_id: int,
    payload: ManagerUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    org_id = require_org(current_user)
    user = _get_member(db, user_id, org_id)

    ok, error = validate_manager_assignment(db, user_id, payload.manager_id)
    if not ok:
        raise HTTPException(status_code=400, detail=error)

    user.manager_id = payload.manager_id
    ok, error = safe_commit(db, "set manager")
    if not ok:
        raise HTTPException(status_code=500, detail=error)

    logger.info(f"[Team] User {user_id} now reports to {payload.manager_id}")
    return member_to_dict(user)


@router.delete("/{user_id}/manager")
async def remove_manager(
    user_id: int,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    org_id = require_org(current_user)
    user = _get_member(db, user_id, org_id)

    user.manager_id = None
    ok, error = safe_commit(db, "remove manager")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    return member_to_dict(user)


@router.put("/{user_id}/allocation")
async def set_allocation(
    user_id: int,
    payload: AllocationUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Percentage allocation only takes effect once the org's sales pool sums to 100."""
    org_id = require_org(current_user)
    user = _get_member(db, user_id, org_id)

    user.lead_allocation_percent = payload.lead_allocation_percent
    ok, error = safe_commit(db, "set allocation")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    return member_to_dict(user)
