# backend/bharatcrm/services/hierarchy_service.py
"""
Team hierarchy (manager -> reportees).

manager_id is a plain self-reference; the tree stays acyclic because every
manager change goes through validate_manager_assignment.
"""

from typing import List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from bharatcrm.models.user import User


def get_direct_reportee_ids(db: Session, manager_ids: List[int]) -> List[int]:
    if not manager_ids:
        return []
    rows = db.query(User.id).filter(User.manager_id.in_(manager_ids)).all()
    return [row[0] for row in rows]


def get_all_reportees(db: Session, user_id: int) -> Set[int]:
    """Ids of everyone below `user_id`, at any depth. The user is never included."""
    seen: Set[int] = set()
    frontier = [user_id]

    while frontier:
        children = [uid for uid in get_direct_reportee_ids(db, frontier) if uid not in seen and uid != user_id]
        seen.update(children)
        frontier = children

    return seen


def get_accessible_user_ids(db: Session, user_id: int) -> Set[int]:
    """The user plus all of their reportees."""
    return {user_id} | get_all_reportees(db, user_id)


def validate_manager_assignment(db: Session, user_id: int, manager_id: int) -> Tuple[bool, Optional[str]]:
    """
    Check that `manager_id` may become the manager of `user_id`.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if user_id == manager_id:
        return False, "User cannot be their own manager"

    user = db.query(User).filter(User.id == user_id).first()
    manager = db.query(User).filter(User.id == manager_id).first()
    if not user or not manager:
        return False, "Users not found"

    if user.org_id != manager.org_id:
        return False, "Users must be in same organization"

    if manager_id in get_all_reportees(db, user_id):
        return False, (
            "Cannot create circular reference: this user is already a reportee of the target manager"
        )

    if not manager.is_active:
        return False, "Manager must be an active user"

    return True, None
