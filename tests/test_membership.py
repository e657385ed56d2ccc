"""
Tests for membership evaluation and trial handling
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from dmreply.core.errors import ValidationFailure
from dmreply.models.execution_log import ExecutionLog
from dmreply.models.user import MembershipType, User
from dmreply.services.membership_service import MembershipService, is_trial_expired


@pytest.fixture
def service():
    return MembershipService()


class TestEffectiveMembership:
    """Lazy trial downgrade"""

    def test_expired_trial_downgrades_and_persists(self, service, db_session, make_user):
        """A trial started 15 days ago evaluates to FREE and the FREE is stored"""
        now = datetime.utcnow()
        user = make_user(membership_type=MembershipType.TRIAL, trial_start_date=now - timedelta(days=15))

        assert service.effective_membership(db_session, user, now) == MembershipType.FREE

        db_session.expire_all()
        stored = db_session.query(User).filter(User.id == user.id).one()
        assert stored.membership_type == MembershipType.FREE

    def test_active_trial_stays_trial_without_write(self, service, make_user):
        """A trial started yesterday stays TRIAL and nothing is committed"""
        now = datetime.utcnow()
        user = make_user(membership_type=MembershipType.TRIAL, trial_start_date=now - timedelta(days=1))
        db = MagicMock()

        assert service.effective_membership(db, user, now) == MembershipType.TRIAL
        db.commit.assert_not_called()

    def test_trial_boundary_is_inclusive(self, service):
        """Exactly 14 days after the start is still inside the trial"""
        start = datetime(2026, 1, 1)
        user = User(id="u1", email="a@example.com", membership_type=MembershipType.TRIAL, trial_start_date=start)

        assert not is_trial_expired(user, start + timedelta(days=14))
        assert is_trial_expired(user, start + timedelta(days=14, seconds=1))

    @pytest.mark.parametrize("membership", [MembershipType.FREE, MembershipType.PAID])
    def test_non_trial_returns_stored_value(self, service, membership):
        user = User(id="u1", email="a@example.com", membership_type=membership,
                    trial_start_date=datetime.utcnow() - timedelta(days=60))
        db = MagicMock()

        assert service.effective_membership(db, user) == membership
        db.commit.assert_not_called()

    def test_trial_without_start_date_stays_trial(self, service):
        user = User(id="u1", email="a@example.com", membership_type=MembershipType.TRIAL, trial_start_date=None)
        db = MagicMock()

        assert service.effective_membership(db, user) == MembershipType.TRIAL
        db.commit.assert_not_called()

    def test_write_failure_still_returns_free(self, service):
        """A failed downgrade write is rolled back, logged and FREE is still returned"""
        user = User(id="u1", email="a@example.com", membership_type=MembershipType.TRIAL,
                    trial_start_date=datetime.utcnow() - timedelta(days=30))
        db = MagicMock()
        db.commit.side_effect = Exception("database is locked")

        assert service.effective_membership(db, user) == MembershipType.FREE
        db.rollback.assert_called()


class TestTrialLifecycle:
    """start_trial / expire_trial / expire_trials"""

    def test_start_trial_for_free_user(self, service, db_session, make_user):
        user = make_user()

        result = service.start_trial(db_session, user.id)

        db_session.refresh(user)
        assert user.membership_type == MembershipType.TRIAL
        assert user.trial_start_date is not None
        assert result["message"] == "Trial started successfully"
        assert result["trialEndDate"] is not None

    def test_start_trial_rejected_for_paid_user(self, service, make_user, db_session):
        user = make_user(membership_type=MembershipType.PAID)

        with pytest.raises(ValidationFailure):
            service.start_trial(db_session, user.id)

    def test_start_trial_rejected_when_trial_used(self, service, make_user, db_session):
        user = make_user(trial_start_date=datetime.utcnow() - timedelta(days=40))

        with pytest.raises(ValidationFailure):
            service.start_trial(db_session, user.id)

    def test_expire_trials_sweeps_only_expired(self, service, db_session, make_user):
        now = datetime.utcnow()
        expired = make_user(membership_type=MembershipType.TRIAL, trial_start_date=now - timedelta(days=20))
        active = make_user(membership_type=MembershipType.TRIAL, trial_start_date=now - timedelta(days=3))

        assert service.expire_trials(db_session, now) == 1

        db_session.expire_all()
        assert db_session.get(User, expired.id).membership_type == MembershipType.FREE
        assert db_session.get(User, active.id).membership_type == MembershipType.TRIAL
        assert db_session.query(ExecutionLog).count() == 1

    def test_user_status_reports_days_remaining(self, service, db_session, make_user):
        now = datetime.utcnow()
        user = make_user(membership_type=MembershipType.TRIAL, trial_start_date=now - timedelta(days=4))

        status = service.user_status(db_session, user.id, now)

        assert status["membership"]["type"] == "TRIAL"
        assert status["membership"]["updated"] is False
        assert status["trial"]["daysRemaining"] == 10
        assert status["subscription"] is None


class TestMembershipEndpoints:
    """HTTP surface of the membership evaluator"""

    def test_requires_session(self, client):
        response = client.get("/api/member-ship")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_expired_trial_scenario(self, client, login_as, make_user, db_session):
        """Trial started 20 days ago reads as FREE; the re-fetch does not write again"""
        user = make_user(membership_type=MembershipType.TRIAL,
                         trial_start_date=datetime.utcnow() - timedelta(days=20))
        login_as(user)

        first = client.get("/api/member-ship")
        assert first.status_code == 200
        assert first.json() == {"membershipType": "FREE"}

        with patch.object(db_session, "commit", wraps=db_session.commit) as commit:
            second = client.get("/api/member-ship")
            commit.assert_not_called()
        assert second.json() == {"membershipType": "FREE"}

    def test_membership_details_for_self(self, client, login_as, make_user, make_subscription):
        user = make_user(membership_type=MembershipType.PAID)
        make_subscription(user, stripe_subscription_id="sub_details")
        login_as(user)

        response = client.get(f"/api/membership/{user.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["membershipType"] == "PAID"
        assert body["stripeSubscriptionId"] == "sub_details"
        assert body["status"] == "ACTIVE"

    def test_membership_details_for_other_user_is_not_found(self, client, login_as, make_user):
        user = make_user()
        other = make_user()
        login_as(user)

        response = client.get(f"/api/membership/{other.id}")
        assert response.status_code == 404

    def test_start_trial_twice(self, client, login_as, make_user):
        user = make_user()
        login_as(user)

        assert client.post("/api/membership/start-trial").status_code == 200
        second = client.post("/api/membership/start-trial")
        assert second.status_code == 400
