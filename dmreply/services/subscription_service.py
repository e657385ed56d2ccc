import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session
from typing_extensions import assert_never

from dmreply.core.cache import subscription_lock
from dmreply.core.errors import NotFound
from dmreply.models.subscription import SubscriptionStatus, UserSubscription
from dmreply.models.user import MembershipType, User
from dmreply.services.billing_gateway import BillingGateway
from dmreply.services.execution_log_service import ExecutionLogService
from dmreply.services.webhook_events import (InvoicePaymentFailed,
                                             InvoicePaymentSucceeded,
                                             SubscriptionCreated,
                                             SubscriptionDeleted,
                                             SubscriptionPayload,
                                             SubscriptionUpdated,
                                             UnhandledEvent, WebhookEvent)

logger = logging.getLogger(__name__)


class SubscriptionService:
    def __init__(self, gateway: Optional[BillingGateway] = None):
        self.gateway = gateway or BillingGateway()
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def _cancellable_subscription(self, db: Session, user_id: str) -> UserSubscription:
        subscription = db.query(UserSubscription).filter(
            UserSubscription.user_id == user_id
        ).first()

        if (
            subscription is None
            or not subscription.stripe_subscription_id
            or subscription.status == SubscriptionStatus.CANCELED
        ):
            raise NotFound("Subscription not found")
        return subscription

    def cancel_at_period_end(self, db: Session, user_id: str) -> dict:
        """Ask Stripe to end the subscription at period end; local status becomes CANCELING"""
        self.logger.info(f"cancel_at_period_end: Entry - user: {user_id}")
        subscription = self._cancellable_subscription(db, user_id)
        stripe_id = subscription.stripe_subscription_id

        with subscription_lock(stripe_id):
            db.refresh(subscription)
            if subscription.status == SubscriptionStatus.CANCELED:
                raise NotFound("Subscription not found")

            # Raises UpstreamFailure before any local change
            self.gateway.cancel_at_period_end(stripe_id)

            try:
                subscription.status = SubscriptionStatus.CANCELING
                db.commit()
            except Exception as e:
                db.rollback()
                self.logger.error(f"cancel_at_period_end: Failure - local update after Stripe cancel - {e}")
                self.execution_log.log(
                    db,
                    f"Local update failed after Stripe cancel_at_period_end for {stripe_id}: {e}",
                )
                raise

        self.logger.info(f"cancel_at_period_end: Success - user: {user_id}, subscription: {stripe_id}")
        return {"success": True, "status": SubscriptionStatus.CANCELING.value}

    def cancel_immediately(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Cancel in Stripe now, end the local record and drop the user to FREE"""
        self.logger.info(f"cancel_immediately: Entry - user: {user_id}")
        subscription = self._cancellable_subscription(db, user_id)
        stripe_id = subscription.stripe_subscription_id

        with subscription_lock(stripe_id):
            db.refresh(subscription)
            if subscription.status == SubscriptionStatus.CANCELED:
                raise NotFound("Subscription not found")

            self.gateway.cancel_immediately(stripe_id)

            ended_at = now or datetime.utcnow()
            try:
                subscription.status = SubscriptionStatus.CANCELED
                subscription.end_date = ended_at
                user = db.query(User).filter(User.id == user_id).first()
                if user:
                    user.membership_type = MembershipType.FREE
                db.commit()
            except Exception as e:
                db.rollback()
                self.logger.error(f"cancel_immediately: Failure - local update after Stripe cancel - {e}")
                self.execution_log.log(
                    db,
                    f"Local update failed after Stripe cancel for {stripe_id}: {e}",
                )
                raise

        self.execution_log.log(db, f"Subscription canceled immediately: user={user_id}, subscription={stripe_id}")
        self.logger.info(f"cancel_immediately: Success - user: {user_id}, subscription: {stripe_id}")
        return {
            "success": True,
            "message": "Subscription canceled",
            "status": SubscriptionStatus.CANCELED.value,
            "endDate": ended_at.isoformat(),
        }

    def create_checkout_session(self, user_id: str, email: Optional[str] = None) -> dict:
        return self.gateway.create_checkout_session(user_id, email)

    def upgrade(self, payment_method_id: Optional[str], user_id: Optional[str] = None) -> dict:
        """
        Charge the one-off upgrade amount.

        Never raises: callers always get ``{"success": ...}``. Membership is
        not changed here; PAID is granted by the subscription webhooks.
        """
        self.logger.info(f"upgrade: Entry - user: {user_id}")
        if not payment_method_id:
            return {"success": False, "error": "Payment failed"}
        try:
            self.gateway.create_payment_intent(payment_method_id, user_id)
        except Exception as e:
            self.logger.error(f"upgrade: Failure - {e}")
            return {"success": False, "error": "Payment failed"}
        self.logger.info(f"upgrade: Success - user: {user_id}")
        return {"success": True}

    def handle_event(self, db: Session, event: WebhookEvent, now: Optional[datetime] = None) -> bool:
        """
        Apply one verified webhook event.

        Returns False for event kinds that are acknowledged but not processed.
        """
        self.logger.info(f"handle_event: Entry - {event.kind} ({event.event_id})")
        now = now or datetime.utcnow()

        if isinstance(event, SubscriptionCreated):
            self._on_subscription_created(db, event.subscription)
        elif isinstance(event, SubscriptionUpdated):
            self._on_subscription_updated(db, event.subscription)
        elif isinstance(event, SubscriptionDeleted):
            self._on_subscription_deleted(db, event.subscription, now)
        elif isinstance(event, InvoicePaymentSucceeded):
            self._on_payment_succeeded(db, event)
        elif isinstance(event, InvoicePaymentFailed):
            self._on_payment_failed(db, event, now)
        elif isinstance(event, UnhandledEvent):
            self.logger.info(f"handle_event: Ignored - {event.kind}")
            return False
        else:
            assert_never(event)

        self.logger.info(f"handle_event: Success - {event.kind} ({event.event_id})")
        return True

    def _find_by_stripe_id(self, db: Session, stripe_subscription_id: str) -> Optional[UserSubscription]:
        return db.query(UserSubscription).filter(
            UserSubscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    def _commit(self, db: Session, action: str):
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"{action}: Failure - {e}")
            raise

    def _on_subscription_created(self, db: Session, payload: SubscriptionPayload):
        user_id = payload.metadata.get("userId")
        if not user_id:
            self.logger.warning(f"_on_subscription_created: No userId in metadata - {payload.id}")
            self.execution_log.log(db, f"Subscription {payload.id} created without userId metadata")
            return

        with subscription_lock(payload.id):
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise NotFound(f"User not found: {user_id}")

            # One record per user; a new Stripe subscription replaces the old one
            subscription = db.query(UserSubscription).filter(
                UserSubscription.user_id == user_id
            ).first()
            if subscription is None:
                subscription = UserSubscription(id=str(uuid.uuid4()), user_id=user_id)
                db.add(subscription)
            elif (
                subscription.stripe_subscription_id == payload.id
                and subscription.status == SubscriptionStatus.CANCELED
            ):
                self.logger.info(f"_on_subscription_created: Ignored for canceled subscription - {payload.id}")
                return

            subscription.stripe_subscription_id = payload.id
            subscription.stripe_customer_id = payload.customer
            subscription.stripe_price_id = payload.price_id
            subscription.stripe_current_period_end = payload.period_end
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.end_date = None
            user.membership_type = MembershipType.PAID
            self._commit(db, "_on_subscription_created")

        self.execution_log.log(db, f"Subscription created: user={user_id}, subscription={payload.id}")

    def _on_subscription_updated(self, db: Session, payload: SubscriptionPayload):
        with subscription_lock(payload.id):
            subscription = self._find_by_stripe_id(db, payload.id)
            if subscription is None:
                self.logger.warning(f"_on_subscription_updated: Unknown subscription - {payload.id}")
                return
            if subscription.status == SubscriptionStatus.CANCELED:
                self.logger.info(f"_on_subscription_updated: Ignored for canceled subscription - {payload.id}")
                return

            status = payload.local_status()
            if status is not None:
                subscription.status = status
            if payload.period_end is not None:
                subscription.stripe_current_period_end = payload.period_end
            if payload.price_id:
                subscription.stripe_price_id = payload.price_id

            user = subscription.user
            if user is not None and status == SubscriptionStatus.CANCELED:
                user.membership_type = MembershipType.FREE
            self._commit(db, "_on_subscription_updated")

    def _on_subscription_deleted(self, db: Session, payload: SubscriptionPayload, now: datetime):
        with subscription_lock(payload.id):
            subscription = self._find_by_stripe_id(db, payload.id)
            if subscription is None:
                self.logger.warning(f"_on_subscription_deleted: Unknown subscription - {payload.id}")
                return

            subscription.status = SubscriptionStatus.CANCELED
            subscription.end_date = subscription.end_date or now
            if subscription.user is not None:
                subscription.user.membership_type = MembershipType.FREE
            self._commit(db, "_on_subscription_deleted")

        self.execution_log.log(db, f"Subscription deleted: subscription={payload.id}")

    def _on_payment_succeeded(self, db: Session, event: InvoicePaymentSucceeded):
        if not event.subscription_id:
            return

        with subscription_lock(event.subscription_id):
            subscription = self._find_by_stripe_id(db, event.subscription_id)
            if subscription is None:
                self.logger.warning(f"_on_payment_succeeded: Unknown subscription - {event.subscription_id}")
                return

            remote = SubscriptionPayload.from_stripe(self.gateway.retrieve_subscription(event.subscription_id))
            if remote.period_end is not None:
                subscription.stripe_current_period_end = remote.period_end
            if remote.price_id:
                subscription.stripe_price_id = remote.price_id
            self._commit(db, "_on_payment_succeeded")

    def _on_payment_failed(self, db: Session, event: InvoicePaymentFailed, now: datetime):
        if not event.subscription_id:
            return

        with subscription_lock(event.subscription_id):
            subscription = self._find_by_stripe_id(db, event.subscription_id)
            if subscription is None:
                self.logger.warning(f"_on_payment_failed: Unknown subscription - {event.subscription_id}")
                return
            if subscription.status == SubscriptionStatus.CANCELED:
                return

            remote = self.gateway.retrieve_subscription(event.subscription_id)
            if remote.get("status") != "past_due":
                self.logger.info(f"_on_payment_failed: Subscription not past due - {event.subscription_id}")
                return

            subscription.status = SubscriptionStatus.PAST_DUE
            subscription.stripe_current_period_end = now
            if subscription.user is not None:
                subscription.user.membership_type = MembershipType.FREE
            self._commit(db, "_on_payment_failed")

        self.execution_log.log(
            db,
            f"Payment failed: subscription={event.subscription_id}, invoice={event.invoice_id}",
            {"amount_due": event.amount_due},
        )
