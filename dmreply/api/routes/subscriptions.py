import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from dmreply.core.database import get_db
from dmreply.core.session import SessionUser, require_session
from dmreply.services.subscription_service import SubscriptionService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_subscription_service() -> SubscriptionService:
    """Dependency to get subscription service instance"""
    return SubscriptionService()


class UpgradeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_method_id: Optional[str] = Field(None, alias="paymentMethodId")
    user_id: Optional[str] = Field(None, alias="userId")


@router.post("/cancel-subscription")
def cancel_subscription(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Cancel at the end of the current billing period"""
    logger.info(f"cancel_subscription: Entry - user: {session_user.id}")
    return subscription_service.cancel_at_period_end(db, session_user.id)


@router.post("/subscription/cancel")
def cancel_subscription_immediately(
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Cancel now; the caller drops to FREE"""
    logger.info(f"cancel_subscription_immediately: Entry - user: {session_user.id}")
    return subscription_service.cancel_immediately(db, session_user.id)


@router.post("/create-checkout-session")
def create_checkout_session(
    session_user: SessionUser = Depends(require_session),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    logger.info(f"create_checkout_session: Entry - user: {session_user.id}")
    return subscription_service.create_checkout_session(session_user.id, session_user.email)


@router.post("/upgrade")
def upgrade(
    request: UpgradeRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """
    One-off upgrade charge.
    Always 200; failure is reported as {"success": false, "error": ...}.
    """
    return subscription_service.upgrade(request.payment_method_id, request.user_id)
