import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dmreply.core.database import get_db
from dmreply.core.session import SessionUser, require_session
from dmreply.services.instagram_auth_service import InstagramAuthService
from dmreply.services.instagram_service import InstagramService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_instagram_auth_service() -> InstagramAuthService:
    """Dependency to get Instagram connection service instance"""
    return InstagramAuthService()


@router.get("/connections/status")
def connection_status(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
):
    """Whether the caller has a connected Instagram account"""
    return InstagramService().connection_status(db, session_user.id)


@router.get("/auth/instagram-callback")
async def instagram_callback(
    code: Optional[str] = Query(None),
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    auth_service: InstagramAuthService = Depends(get_instagram_auth_service),
):
    """
    OAuth redirect target for the Instagram login.
    Stores the long-lived token on the caller's account; the token itself is never returned.
    """
    logger.info(f"instagram_callback: Entry - user: {session_user.id}")
    return await auth_service.connect(db, session_user.id, code)
