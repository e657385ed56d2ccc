import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dmreply.core.database import get_db
from dmreply.core.errors import NotFound
from dmreply.core.session import SessionUser, require_session
from dmreply.services.membership_service import MembershipService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_membership_service() -> MembershipService:
    """Dependency to get membership service instance"""
    return MembershipService()


@router.get("/member-ship")
def get_membership(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    membership_service: MembershipService = Depends(get_membership_service),
):
    """Effective membership of the caller; an expired trial is downgraded on read"""
    return membership_service.get_membership(db, session_user.id)


@router.get("/user/status")
def get_user_status(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    membership_service: MembershipService = Depends(get_membership_service),
):
    return membership_service.user_status(db, session_user.id)


@router.post("/membership/start-trial")
def start_trial(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    membership_service: MembershipService = Depends(get_membership_service),
):
    return membership_service.start_trial(db, session_user.id)


@router.post("/membership/expire-trial")
def expire_trial(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    membership_service: MembershipService = Depends(get_membership_service),
):
    return membership_service.expire_trial(db, session_user.id)


@router.get("/membership/{user_id}")
def get_membership_details(
    user_id: str,
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    membership_service: MembershipService = Depends(get_membership_service),
):
    """
    Membership and subscription details.
    Only the caller's own record is visible; other ids read as not found.
    """
    if user_id != session_user.id:
        logger.warning(f"get_membership_details: Foreign user id requested by {session_user.id}")
        raise NotFound("User not found")
    return membership_service.membership_details(db, user_id)
