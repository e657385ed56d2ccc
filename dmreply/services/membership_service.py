import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from dmreply.core.config import settings
from dmreply.core.errors import ValidationFailure
from dmreply.models.user import MembershipType, User
from dmreply.services.execution_log_service import ExecutionLogService
from dmreply.services.user_service import UserService

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def trial_end_date(user: User) -> Optional[datetime]:
    if user.trial_start_date is None:
        return None
    return user.trial_start_date + timedelta(days=settings.trial_days)


def is_trial_expired(user: User, now: datetime) -> bool:
    """A trial is expired strictly after trial_start_date + trial_days"""
    end = trial_end_date(user)
    return end is not None and now > end


class MembershipService:
    def __init__(self):
        self.users = UserService()
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def effective_membership(self, db: Session, user: User, now: Optional[datetime] = None) -> MembershipType:
        """
        Return the membership the user is entitled to right now.

        An expired TRIAL is downgraded to FREE and the downgrade is persisted.
        Repeating the call after expiry repeats the same write, which is safe.
        If the write fails FREE is still returned: the caller always gets the
        current entitlement, the stored value catches up on a later call.
        """
        stored = user.membership_type
        if stored != MembershipType.TRIAL:
            return stored

        now = now or datetime.utcnow()
        if not is_trial_expired(user, now):
            return MembershipType.TRIAL

        self.logger.info(f"effective_membership: Trial expired - user: {user.id}")
        try:
            user.membership_type = MembershipType.FREE
            db.commit()
            self.logger.info(f"effective_membership: Downgraded to FREE - user: {user.id}")
        except Exception as e:
            db.rollback()
            self.logger.error(f"effective_membership: Failure persisting downgrade - user: {user.id}, error: {e}")
            self.execution_log.log(db, f"Trial downgrade write failed for user {user.id}: {e}")
        return MembershipType.FREE

    def get_membership(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Effective membership type for the session user"""
        self.logger.info(f"get_membership: Entry - user: {user_id}")
        user = self.users.get_user(db, user_id)
        membership = self.effective_membership(db, user, now)
        self.logger.info(f"get_membership: Success - user: {user_id}, membership: {membership.value}")
        return {"membershipType": membership.value}

    def membership_details(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Membership plus trial and subscription fields"""
        self.logger.info(f"membership_details: Entry - user: {user_id}")
        user = self.users.get_user(db, user_id)
        membership = self.effective_membership(db, user, now)
        subscription = user.subscription

        return {
            "membershipType": membership.value,
            "trialStartDate": _iso(user.trial_start_date),
            "trialEndDate": _iso(trial_end_date(user)),
            "stripeSubscriptionId": subscription.stripe_subscription_id if subscription else None,
            "stripeCurrentPeriodEnd": _iso(subscription.stripe_current_period_end) if subscription else None,
            "status": subscription.status.value if subscription else None,
        }

    def start_trial(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Move a FREE user that never had a trial onto TRIAL"""
        self.logger.info(f"start_trial: Entry - user: {user_id}")
        user = self.users.get_user(db, user_id)

        if user.membership_type != MembershipType.FREE:
            raise ValidationFailure("Trial is only available for free users")
        if user.trial_start_date is not None:
            raise ValidationFailure("Trial has already been used")

        started_at = now or datetime.utcnow()
        try:
            user.membership_type = MembershipType.TRIAL
            user.trial_start_date = started_at
            db.commit()
        except Exception as e:
            db.rollback()
            self.execution_log.log(db, f"Trial start error: {e}")
            self.logger.error(f"start_trial: Failure - {e}")
            raise

        self.logger.info(f"start_trial: Success - user: {user_id}")
        return {
            "message": "Trial started successfully",
            "trialStartDate": _iso(started_at),
            "trialEndDate": _iso(trial_end_date(user)),
        }

    def expire_trial(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Apply trial expiry for one user and report the result"""
        self.logger.info(f"expire_trial: Entry - user: {user_id}")
        user = self.users.get_user(db, user_id)
        membership = self.effective_membership(db, user, now)
        return {
            "membershipType": membership.value,
            "trialStartDate": _iso(user.trial_start_date),
            "status": None,
        }

    def user_status(self, db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
        """Combined membership, subscription and trial view for the dashboard"""
        self.logger.info(f"user_status: Entry - user: {user_id}")
        now = now or datetime.utcnow()
        user = self.users.get_user(db, user_id)

        stored = user.membership_type
        membership = self.effective_membership(db, user, now)

        subscription = user.subscription
        subscription_info = None
        if subscription:
            subscription_info = {
                "status": subscription.status.value,
                "currentPeriodEnd": _iso(subscription.stripe_current_period_end),
                "subscriptionId": subscription.stripe_subscription_id,
            }

        trial_info = None
        if membership == MembershipType.TRIAL and user.trial_start_date:
            days_passed = (now - user.trial_start_date).days
            trial_info = {
                "startDate": _iso(user.trial_start_date),
                "endDate": _iso(trial_end_date(user)),
                "daysRemaining": max(0, settings.trial_days - days_passed),
            }

        return {
            "membership": {
                "type": membership.value,
                "trialStartDate": _iso(user.trial_start_date),
                "updated": stored != membership,
            },
            "subscription": subscription_info,
            "trial": trial_info,
        }

    def expire_trials(self, db: Session, now: Optional[datetime] = None) -> int:
        """Downgrade every expired trial in one pass"""
        self.logger.info("expire_trials: Entry")
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=settings.trial_days)

        try:
            expired = db.query(User).filter(
                User.membership_type == MembershipType.TRIAL,
                User.trial_start_date.isnot(None),
                User.trial_start_date < cutoff,
            ).all()

            for user in expired:
                user.membership_type = MembershipType.FREE
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"expire_trials: Failure - {e}")
            raise

        if expired:
            self.execution_log.log(db, f"Expired {len(expired)} trials")
        self.logger.info(f"expire_trials: Success - expired: {len(expired)}")
        return len(expired)
