# backend/bharatcrm/services/assignment_service.py
"""
Lead Assignment Resolver

Decides the owner of a new lead. Rules are tried in priority order and the
first hit wins:

    1. form        - active form mapping for (integration, form_id)
    2. campaign    - active campaign mapping for (integration, campaign_id)
    3. sales_auto  - manual lead created by an approved sales rep
    4. percentage  - weighted pool, only when allocations sum to exactly 100
    5. round_robin - rep with the fewest assigned leads
    6. unassigned

An integration lead that carries a form_id but has no active form mapping is
left unassigned; rules 2-5 are not consulted for it.

The resolver only reads. Lookup failures are logged and treated as "no match",
so callers always get a result.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bharatcrm.models.integration import CampaignAssignment, LeadFormAssignment
from bharatcrm.models.lead import Lead
from bharatcrm.models.user import User, UserRole
from bharatcrm.utils.logger import logger


FORM = "form"
CAMPAIGN = "campaign"
SALES_AUTO = "sales_auto"
PERCENTAGE = "percentage"
ROUND_ROBIN = "round_robin"
UNASSIGNED = "unassigned"


@dataclass
class AssignmentResult:
    assigned_to: Optional[int]
    created_by: Optional[int]
    assignment_method: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def assign_lead(
    db: Session,
    lead: Any,
    org_id: int,
    created_by_user_id: Optional[int] = None,
) -> AssignmentResult:
    """
    Resolve the assignee for `lead`.

    Args:
        db: Database session (read-only use)
        lead: Anything exposing `integration_id` and `integration_metadata`
              (an unsaved Lead, a MappedLead)
        org_id: Organization the lead belongs to
        created_by_user_id: User creating the lead, if any

    Returns:
        AssignmentResult
    """
    integration_id = getattr(lead, "integration_id", None)
    metadata = _metadata_dict(getattr(lead, "integration_metadata", None))

    # Priority 1: form mapping
    if integration_id and metadata:
        form_id = metadata.get("form_id")
        if form_id:
            assignee = _get_form_assignee(db, org_id, integration_id, str(form_id))
            if assignee:
                return AssignmentResult(assignee, assignee, FORM)
            # No mapping for a known form: stays unassigned, no fallback
            return AssignmentResult(None, created_by_user_id, UNASSIGNED)

    # Priority 2: campaign mapping
    if integration_id and metadata:
        campaign_id = metadata.get("campaign_id")
        if campaign_id:
            assignee = _get_campaign_assignee(db, org_id, integration_id, str(campaign_id))
            if assignee:
                return AssignmentResult(assignee, assignee, CAMPAIGN)

    # Priority 3: sales rep creating their own lead
    if created_by_user_id:
        creator = _get_user(db, created_by_user_id)
        if (
            creator
            and creator.role == UserRole.SALES
            and creator.is_approved
            and creator.org_id == org_id
        ):
            return AssignmentResult(creator.id, creator.id, SALES_AUTO)

    # Priority 4: percentage allocation
    user_id = get_percentage_based_assignee(db, org_id)
    if user_id:
        return AssignmentResult(user_id, created_by_user_id, PERCENTAGE)

    # Priority 5: round-robin
    user_id = get_round_robin_assignee(db, org_id)
    if user_id:
        return AssignmentResult(user_id, created_by_user_id, ROUND_ROBIN)

    return AssignmentResult(None, created_by_user_id, UNASSIGNED)


def get_percentage_based_assignee(db: Session, org_id: int) -> Optional[int]:
    """
    Pick the rep furthest below their allocation target.

    Pool order is percent descending then id ascending; on equal ratios the
    earlier pool member wins. Returns None when the pool is empty, the
    percentages do not sum to 100, or no rep has a non-zero target.
    """
    try:
        pool = (
            _sales_pool_query(db, org_id)
            .filter(User.lead_allocation_percent.isnot(None))
            .order_by(User.lead_allocation_percent.desc(), User.id.asc())
            .all()
        )
        if not pool:
            return None

        if sum(u.lead_allocation_percent or 0 for u in pool) != 100:
            return None

        unassigned_count = (
            db.query(func.count(Lead.id))
            .filter(Lead.org_id == org_id, Lead.assigned_to.is_(None))
            .scalar()
        ) or 0

        if unassigned_count == 0:
            # First lead goes to the highest allocation
            return pool[0].id

        counts = get_assigned_lead_counts(db, org_id, [u.id for u in pool])
    except SQLAlchemyError as e:
        logger.error(f"[Assignment] Percentage pool lookup failed for org {org_id}: {e}")
        return None

    selected = None
    min_ratio = float("inf")
    for user in pool:
        target = (unassigned_count + 1) * (user.lead_allocation_percent or 0) // 100
        ratio = counts.get(user.id, 0) / target if target > 0 else float("inf")
        if ratio < min_ratio:
            min_ratio = ratio
            selected = user.id

    return selected


def get_round_robin_assignee(db: Session, org_id: int) -> Optional[int]:
    """Rep with the fewest assigned leads; ties go to the earliest created rep."""
    try:
        pool = (
            _sales_pool_query(db, org_id)
            .order_by(User.created_at.asc(), User.id.asc())
            .all()
        )
        if not pool:
            return None
        counts = get_assigned_lead_counts(db, org_id, [u.id for u in pool])
    except SQLAlchemyError as e:
        logger.error(f"[Assignment] Round-robin pool lookup failed for org {org_id}: {e}")
        return None

    selected = None
    min_count = None
    for user in pool:
        count = counts.get(user.id, 0)
        if min_count is None or count < min_count:
            min_count = count
            selected = user.id

    return selected


def get_assigned_lead_counts(db: Session, org_id: int, user_ids: List[int]) -> Dict[int, int]:
    """Number of org leads currently assigned to each user (zero-filled)."""
    counts = {uid: 0 for uid in user_ids}
    if not user_ids:
        return counts

    rows = (
        db.query(Lead.assigned_to, func.count(Lead.id))
        .filter(Lead.org_id == org_id, Lead.assigned_to.in_(user_ids))
        .group_by(Lead.assigned_to)
        .all()
    )
    for assigned_to, count in rows:
        counts[assigned_to] = count
    return counts


# ==================== Internal Helper Functions ====================

def _sales_pool_query(db: Session, org_id: int):
    return db.query(User).filter(
        User.org_id == org_id,
        User.role == UserRole.SALES,
        User.is_approved.is_(True),
        User.is_active.is_(True),
    )


def _metadata_dict(metadata: Any) -> Dict[str, Any]:
    if metadata is None:
        return {}
    if hasattr(metadata, "model_dump"):
        return metadata.model_dump(exclude_none=True)
    if isinstance(metadata, dict):
        return metadata
    return {}


def _get_form_assignee(db: Session, org_id: int, integration_id: int, form_id: str) -> Optional[int]:
    try:
        row = (
            db.query(LeadFormAssignment)
            .filter(
                LeadFormAssignment.org_id == org_id,
                LeadFormAssignment.integration_id == integration_id,
                LeadFormAssignment.form_id == form_id,
                LeadFormAssignment.is_active.is_(True),
            )
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"[Assignment] Form mapping lookup failed (form {form_id}): {e}")
        return None
    return row.assigned_to if row else None


def _get_campaign_assignee(db: Session, org_id: int, integration_id: int, campaign_id: str) -> Optional[int]:
    try:
        row = (
            db.query(CampaignAssignment)
            .filter(
                CampaignAssignment.org_id == org_id,
                CampaignAssignment.integration_id == integration_id,
                CampaignAssignment.campaign_id == campaign_id,
                CampaignAssignment.is_active.is_(True),
            )
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"[Assignment] Campaign mapping lookup failed (campaign {campaign_id}): {e}")
        return None
    return row.assigned_to if row else None


def _get_user(db: Session, user_id: int) -> Optional[User]:
    try:
        return db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError as e:
        logger.error(f"[Assignment] User lookup failed ({user_id}): {e}")
        return None
