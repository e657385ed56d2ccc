import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from dmreply.core.database import get_db
from dmreply.services.user_service import UserService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_user_service() -> UserService:
    """Dependency to get user service instance"""
    return UserService()


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
):
    """
    Create an email/password account.
    A duplicate email is rejected with 400.
    """
    logger.info("register: Entry")
    user = user_service.register(db, request.email, request.password, request.name)
    logger.info(f"register: Success - user: {user.id}")
    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "membershipType": user.membership_type.value,
        }
    }


@router.post("/auth/login")
def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    user_service: UserService = Depends(get_user_service),
):
    """Exchange email and password for a Firebase custom token"""
    logger.info("login: Entry")
    token = user_service.login(db, request.email, request.password)
    logger.info("login: Success")
    return {"token": token}
