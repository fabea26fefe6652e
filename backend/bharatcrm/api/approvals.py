# backend/bharatcrm/api/approvals.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bharatcrm.database import get_db, safe_commit
from bharatcrm.auth.dependencies import get_current_user, require_role
from bharatcrm.auth.models import CurrentUser
from bharatcrm.models.approval import Subscription, SubscriptionApproval
from bharatcrm.models.user import UserRole
from bharatcrm.utils.logger import logger

router = APIRouter(prefix="/api/approvals", tags=["approvals"])

APPROVER_ROLES = (UserRole.ACCOUNTANT, UserRole.ADMIN, UserRole.SUPER_ADMIN)


class ApprovalDecision(BaseModel):
    action: str
    rejection_reason: Optional[str] = None


def approval_to_dict(approval: SubscriptionApproval) -> dict:
    return {
        "id": approval.id,
        "lead_id": approval.lead_id,
        "requested_by": approval.requested_by,
        "amount": approval.amount,
        "status": approval.status,
        "approved_by": approval.approved_by,
        "approved_at": approval.approved_at.isoformat() if approval.approved_at else None,
        "rejection_reason": approval.rejection_reason,
    }


@router.patch("/{approval_id}")
async def decide_approval(
    approval_id: int,
    payload: ApprovalDecision,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Approve or reject a subscription request.

    approve -> approved, stamped, and an active Subscription is created
    reject  -> rejected, stamped, optional reason
    """
    if payload.action not in ("approve", "reject"):
        raise HTTPException(status_code=400, detail="Invalid action. Must be 'approve' or 'reject'")

    require_role(current_user, any_of=APPROVER_ROLES)

    approval = db.query(SubscriptionApproval).filter(SubscriptionApproval.id == approval_id).first()
    if not approval:
        raise HTTPException(status_code=404, detail="Approval not found")

    lead = approval.lead
    if not current_user.is_super_admin and (not lead or lead.org_id != current_user.org_id):
        raise HTTPException(status_code=403, detail="Forbidden")

    if approval.status != "pending":
        raise HTTPException(status_code=400, detail=f"Approval already {approval.status}")

    approval.approved_by = current_user.id
    approval.approved_at = datetime.utcnow()

    if payload.action == "approve":
        approval.status = "approved"
        approval.rejection_reason = None
        db.add(
            Subscription(
                org_id=lead.org_id,
                lead_id=lead.id,
                approval_id=approval.id,
                amount=approval.amount,
                status="active",
            )
        )
    else:
        approval.status = "rejected"
        approval.rejection_reason = (payload.rejection_reason or "").strip() or None

    ok, error = safe_commit(db, f"{payload.action} approval {approval_id}")
    if not ok:
        raise HTTPException(status_code=500, detail=error)
    db.refresh(approval)

    logger.info(f"[Approvals] Approval {approval_id} {approval.status} by user {current_user.id}")
    return {"success": True, "approval": approval_to_dict(approval)}
