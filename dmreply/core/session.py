"""
Session resolution.

A resolver turns an inbound request into a ``SessionUser`` or ``None``. It
never raises for a missing or bad credential. The resolver is chosen once,
in ``get_session_resolver``; route code only ever sees the resolved value.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from dmreply.core.config import settings
from dmreply.core.database import get_db
from dmreply.core.errors import Unauthorized
from dmreply.core.firebase import verify_firebase_token
from dmreply.models.user import MembershipType, User

logger = logging.getLogger(__name__)

TEST_SESSION_USER_ID = "test-user-id"
TEST_SESSION_EMAIL = "test@example.com"


class InstagramProfile(BaseModel):
    id: str
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    instagram: Optional[InstagramProfile] = None


class SessionResolver:
    def resolve(self, request: Request, db: Session) -> Optional[SessionUser]:
        raise NotImplementedError


class FirebaseSessionResolver(SessionResolver):
    """Resolve the caller from a Firebase ID token in the Authorization header"""

    def resolve(self, request: Request, db: Session) -> Optional[SessionUser]:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None

        token = auth_header.split(" ", 1)[1].strip()
        if not token:
            return None

        try:
            decoded_token = verify_firebase_token(token)
        except Exception as e:
            logger.info(f"FirebaseSessionResolver: Rejected token - {e}")
            return None

        uid = decoded_token.get("uid")
        if not uid:
            return None

        try:
            user = self._find_or_provision_user(db, uid, decoded_token)
        except Exception as e:
            db.rollback()
            logger.error(f"FirebaseSessionResolver: Failure loading user {uid} - {e}")
            return None

        if user is None:
            return None

        account = user.ig_accounts[0] if user.ig_accounts else None
        instagram = None
        if account is not None and account.instagram_id:
            instagram = InstagramProfile(
                id=account.instagram_id,
                name=account.username,
                profile_picture_url=account.profile_picture_url,
            )

        return SessionUser(id=user.id, email=user.email, name=user.name, instagram=instagram)

    def _find_or_provision_user(self, db: Session, uid: str, decoded_token: dict) -> Optional[User]:
        user = db.query(User).filter(User.id == uid).first()
        if user:
            return user

        email = decoded_token.get("email")
        if not email:
            return None

        user = db.query(User).filter(User.email == email.lower()).first()
        if user:
            return user

        # First sign-in through an OAuth provider creates the local account
        user = User(
            id=uid,
            email=email.lower(),
            name=decoded_token.get("name"),
            membership_type=MembershipType.FREE,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"FirebaseSessionResolver: Provisioned user {user.id}")
        return user


class FixedSessionResolver(SessionResolver):
    """Deterministic session used by end-to-end test runs"""

    def __init__(self, user: Optional[SessionUser] = None):
        self.user = user or SessionUser(
            id=TEST_SESSION_USER_ID,
            email=TEST_SESSION_EMAIL,
            name="Test User",
        )

    def resolve(self, request: Request, db: Session) -> Optional[SessionUser]:
        return self.user


_firebase_resolver = FirebaseSessionResolver()


def get_session_resolver() -> SessionResolver:
    """Pick the resolver for this process"""
    if settings.session_test_mode:
        if settings.is_production:
            logger.error("get_session_resolver: SESSION_TEST_MODE ignored in production")
            return _firebase_resolver
        return FixedSessionResolver()
    return _firebase_resolver


def get_session(
    request: Request,
    db: Session = Depends(get_db),
    resolver: SessionResolver = Depends(get_session_resolver),
) -> Optional[SessionUser]:
    """Resolve the session once per request; later calls reuse request.state"""
    if getattr(request.state, "session_resolved", False):
        return request.state.session_user

    session_user = resolver.resolve(request, db)
    request.state.session_user = session_user
    request.state.session_resolved = True
    return session_user


def require_session(session_user: Optional[SessionUser] = Depends(get_session)) -> SessionUser:
    """Dependency for routes that need an authenticated caller"""
    if session_user is None:
        raise Unauthorized()
    return session_user
