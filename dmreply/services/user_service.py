import logging
import re
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dmreply.core.errors import EmailAlreadyRegistered, NotFound, Unauthorized, ValidationFailure
from dmreply.core.firebase import create_custom_token
from dmreply.core.security import hash_password, verify_password
from dmreply.models.user import MembershipType, User
from dmreply.services.execution_log_service import ExecutionLogService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    def __init__(self):
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def get_user(self, db: Session, user_id: str) -> User:
        """Get a user by id or raise NotFound"""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFound("User not found")
        return user

    def get_user_by_email(self, db: Session, email: str) -> User | None:
        return db.query(User).filter(User.email == normalize_email(email)).first()

    def register(self, db: Session, email: str, password: str, name: str | None = None) -> User:
        """Create a FREE account; a duplicate email raises EmailAlreadyRegistered"""
        email = normalize_email(email)
        self.logger.info(f"register: Entry - email: {email}")

        if not EMAIL_PATTERN.match(email):
            raise ValidationFailure("Invalid email format")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if self.get_user_by_email(db, email):
            self.logger.info(f"register: Duplicate email - {email}")
            raise EmailAlreadyRegistered()

        user = User(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            hashed_password=hash_password(password),
            membership_type=MembershipType.FREE,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            db.rollback()
            self.logger.info(f"register: Duplicate email on insert - {email}")
            raise EmailAlreadyRegistered()
        except Exception as e:
            db.rollback()
            self.execution_log.log(db, f"Registration error: {e}")
            self.logger.error(f"register: Failure - {e}")
            raise
        db.refresh(user)

        self.execution_log.log(db, f"User registered: {email}")
        self.logger.info(f"register: Success - user: {user.id}")
        return user

    def login(self, db: Session, email: str, password: str) -> str:
        """Check credentials and return a Firebase custom token for the user"""
        email = normalize_email(email)
        self.logger.info(f"login: Entry - email: {email}")

        user = self.get_user_by_email(db, email)
        if not user or not verify_password(password, user.hashed_password):
            self.logger.info(f"login: Invalid credentials - {email}")
            raise Unauthorized("Invalid email or password")

        token = create_custom_token(user.id, {"email": user.email})
        self.logger.info(f"login: Success - user: {user.id}")
        return token
