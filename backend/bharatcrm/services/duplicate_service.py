# backend/bharatcrm/services/duplicate_service.py
"""
Duplicate lead detection by phone number.

Every org lead with a phone is compared in normalized form. Formatting varies
too much between sources ("098765 43210", "+91-98765-43210") for a SQL LIKE to
be reliable, so leads are streamed in batches and compared in Python.

Lookup order:
    1. exact normalized match
    2. same last 10 digits (catches country-code variants; may also match two
       different international numbers that share a suffix)
"""

from typing import Iterator, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bharatcrm.config import settings
from bharatcrm.models.lead import Lead
from bharatcrm.models.user import User
from bharatcrm.utils.logger import logger
from bharatcrm.utils.phone import normalize_phone, last_ten_digits


class DuplicateMatch(BaseModel):
    id: int
    name: str
    phone: Optional[str] = None
    assigned_to: Optional[int] = None
    assignee_name: Optional[str] = None


def iter_org_phone_leads(db: Session, org_id: int, batch_size: Optional[int] = None) -> Iterator[List[Lead]]:
    """Yield batches of the org's leads that have a phone, newest first."""
    batch_size = batch_size or settings.DUPLICATE_BATCH_SIZE
    offset = 0
    while True:
        batch = (
            db.query(Lead)
            .filter(Lead.org_id == org_id, Lead.phone.isnot(None))
            .order_by(Lead.created_at.desc(), Lead.id.desc())
            .offset(offset)
            .limit(batch_size)
            .all()
        )
        if not batch:
            return
        yield batch
        if len(batch) < batch_size:
            return
        offset += batch_size


def check_duplicate(db: Session, phone: Optional[str], org_id: Optional[int]) -> Optional[DuplicateMatch]:
    """
    Find an existing lead in the org with the same phone number.

    Returns None when phone or org is missing, or when nothing matches.
    A database error is logged and reported as "no duplicate".
    """
    if not phone or not org_id:
        return None

    normalized = normalize_phone(phone)
    if not normalized:
        return None
    target_last10 = last_ten_digits(phone)

    try:
        leads: List[Lead] = []
        for batch in iter_org_phone_leads(db, org_id):
            leads.extend(batch)
    except SQLAlchemyError as e:
        logger.error(f"[Duplicate] Lead scan failed for org {org_id}: {e}")
        return None

    match = next((lead for lead in leads if normalize_phone(lead.phone) == normalized), None)

    if match is None and target_last10:
        match = next((lead for lead in leads if last_ten_digits(lead.phone) == target_last10), None)
        if match is not None:
            logger.warning(
                f"[Duplicate] Lead {match.id} matched {normalized} on last 10 digits only"
            )

    if match is None:
        return None

    return DuplicateMatch(
        id=match.id,
        name=match.name,
        phone=match.phone,
        assigned_to=match.assigned_to,
        assignee_name=_assignee_label(db, match.assigned_to),
    )


def _assignee_label(db: Session, user_id: Optional[int]) -> Optional[str]:
    if not user_id:
        return None
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None
    return f"{user.name} ({user.email})"
