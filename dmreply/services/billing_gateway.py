"""
Stripe access.

All Stripe calls go through ``BillingGateway`` so that every call shares the
same no-retry, bounded-timeout client and every Stripe error surfaces as
``UpstreamFailure``.
"""

import json
import logging
from typing import Any, Mapping, Optional

import stripe

from dmreply.core.config import settings
from dmreply.core.errors import AppError, UpstreamFailure, ValidationFailure

logger = logging.getLogger(__name__)

UPGRADE_AMOUNT = 1000
UPGRADE_CURRENCY = "jpy"


class WebhookSignatureError(ValidationFailure):
    default_message = "Invalid webhook signature"


def configure_stripe():
    """Apply API key, retry and timeout policy to the Stripe SDK"""
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    else:
        logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    # Failed calls are surfaced to the caller, never retried here
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.HTTPXClient(
        timeout=settings.stripe_timeout_seconds,
        allow_sync_methods=True,
    )


class BillingGateway:
    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def _require_key(self, action: str):
        if not settings.stripe_secret_key:
            self.logger.error(f"{action}: STRIPE_SECRET_KEY is not set")
            raise AppError("Billing is not configured")

    def cancel_at_period_end(self, stripe_subscription_id: str):
        """Flag the subscription to end with the current billing period"""
        self._require_key("cancel_at_period_end")
        self.logger.info(f"cancel_at_period_end: Entry - subscription: {stripe_subscription_id}")
        try:
            result = stripe.Subscription.modify(stripe_subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            self.logger.error(f"cancel_at_period_end: Failure - {e}")
            raise UpstreamFailure("Failed to cancel subscription", details=str(e))
        self.logger.info(f"cancel_at_period_end: Success - subscription: {stripe_subscription_id}")
        return result

    def cancel_immediately(self, stripe_subscription_id: str):
        """End the subscription now"""
        self._require_key("cancel_immediately")
        self.logger.info(f"cancel_immediately: Entry - subscription: {stripe_subscription_id}")
        try:
            result = stripe.Subscription.cancel(stripe_subscription_id)
        except stripe.StripeError as e:
            self.logger.error(f"cancel_immediately: Failure - {e}")
            raise UpstreamFailure("Failed to cancel subscription", details=str(e))
        self.logger.info(f"cancel_immediately: Success - subscription: {stripe_subscription_id}")
        return result

    def retrieve_subscription(self, stripe_subscription_id: str) -> Mapping[str, Any]:
        self._require_key("retrieve_subscription")
        try:
            return stripe.Subscription.retrieve(stripe_subscription_id)
        except stripe.StripeError as e:
            self.logger.error(f"retrieve_subscription: Failure - {e}")
            raise UpstreamFailure("Failed to retrieve subscription", details=str(e))

    def create_checkout_session(self, user_id: str, email: Optional[str] = None) -> dict:
        """Create a subscription-mode Checkout Session tagged with the user id"""
        self._require_key("create_checkout_session")
        if not settings.stripe_price_id:
            self.logger.error("create_checkout_session: STRIPE_PRICE_ID is not set")
            raise AppError("Billing is not configured")

        self.logger.info(f"create_checkout_session: Entry - user: {user_id}")
        app_url = settings.app_url.rstrip("/")
        params = {
            "payment_method_types": ["card"],
            "line_items": [{"price": settings.stripe_price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{app_url}/upgrade/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{app_url}/upgrade",
            "client_reference_id": user_id,
            # Copied onto the subscription so its webhooks carry the user id
            "subscription_data": {"metadata": {"userId": user_id}},
            "metadata": {"userId": user_id},
        }
        if email:
            params["customer_email"] = email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            self.logger.error(f"create_checkout_session: Failure - {e}")
            raise UpstreamFailure("Failed to create checkout session", details=str(e))

        self.logger.info(f"create_checkout_session: Success - session: {session.id}")
        return {"sessionId": session.id, "url": session.url}

    def create_payment_intent(self, payment_method_id: str, user_id: Optional[str] = None):
        """Charge the fixed upgrade amount and confirm immediately"""
        self._require_key("create_payment_intent")
        self.logger.info(f"create_payment_intent: Entry - user: {user_id}")
        try:
            intent = stripe.PaymentIntent.create(
                amount=UPGRADE_AMOUNT,
                currency=UPGRADE_CURRENCY,
                payment_method=payment_method_id,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"userId": user_id} if user_id else {},
            )
        except stripe.StripeError as e:
            self.logger.error(f"create_payment_intent: Failure - {e}")
            raise UpstreamFailure("Payment failed", details=str(e))
        self.logger.info(f"create_payment_intent: Success - intent: {intent.id}")
        return intent

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify the Stripe-Signature header over the raw body.

        Returns the decoded event. The payload must be the exact bytes
        received; a re-serialized body no longer matches the signature.
        """
        if not settings.stripe_webhook_secret:
            self.logger.error("verify_webhook: STRIPE_WEBHOOK_SECRET is not configured")
            raise AppError("Webhook secret missing")
        if not signature:
            raise WebhookSignatureError("Stripe signature missing")

        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"verify_webhook: Signature verification failed - {e}")
            raise WebhookSignatureError(details=str(e))
        except ValueError as e:
            self.logger.warning(f"verify_webhook: Invalid payload - {e}")
            raise ValidationFailure("Invalid webhook payload")

        return json.loads(payload)
