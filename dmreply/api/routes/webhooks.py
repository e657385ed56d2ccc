import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dmreply.core.database import get_db
from dmreply.core.errors import AppError, ValidationFailure
from dmreply.services.billing_gateway import BillingGateway
from dmreply.services.execution_log_service import ExecutionLogService
from dmreply.services.instagram_service import InstagramService
from dmreply.services.subscription_service import SubscriptionService
from dmreply.services.webhook_events import parse_event

router = APIRouter()
logger = logging.getLogger(__name__)


def get_billing_gateway() -> BillingGateway:
    return BillingGateway()


def get_subscription_service(gateway: BillingGateway = Depends(get_billing_gateway)) -> SubscriptionService:
    return SubscriptionService(gateway)


def get_instagram_service() -> InstagramService:
    return InstagramService()


@router.post("/webhooks")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Stripe webhook receiver.

    The signature is checked over the raw body before anything is parsed.
    Event types without a handler are acknowledged and ignored.
    """
    payload = await request.body()
    raw_event = gateway.verify_webhook(payload, stripe_signature)
    event = parse_event(raw_event)
    logger.info(f"stripe_webhook: Entry - {event.kind} ({event.event_id})")

    try:
        await run_in_threadpool(subscription_service.handle_event, db, event)
    except Exception as e:
        logger.error(f"stripe_webhook: Failure - {event.kind}: {e}")
        await run_in_threadpool(
            ExecutionLogService().log, db, f"Stripe webhook handler failed for {event.kind} ({event.event_id}): {e}"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook handler failed"},
        )

    logger.info(f"stripe_webhook: Success - {event.kind}")
    return {"received": True}


@router.get("/webhooks/instagram")
async def verify_instagram_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    instagram_service: InstagramService = Depends(get_instagram_service),
):
    """Meta subscription handshake"""
    challenge = instagram_service.verify_subscription(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)
    return PlainTextResponse(challenge)


@router.post("/webhooks/instagram")
async def instagram_comment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    instagram_service: InstagramService = Depends(get_instagram_service),
):
    """Comment notifications; a matching keyword triggers a DM"""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationFailure("Invalid webhook data format")

    try:
        result = await instagram_service.handle_comment_webhook(db, payload)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"instagram_comment_webhook: Failure - {e}")
        await run_in_threadpool(ExecutionLogService().log, db, f"Instagram webhook error: {e}")
        raise AppError("Webhook handler failed")

    return {"message": "Success", **result}
