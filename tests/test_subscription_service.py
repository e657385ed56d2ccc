"""
Tests for the subscription lifecycle: cancellation, checkout and upgrade
"""

from unittest.mock import MagicMock

import pytest

from dmreply.core.errors import NotFound, SubscriptionBusy, UpstreamFailure
from dmreply.models.execution_log import ExecutionLog
from dmreply.models.subscription import SubscriptionStatus, UserSubscription
from dmreply.models.user import MembershipType
from dmreply.services.billing_gateway import BillingGateway
from dmreply.services.subscription_service import SubscriptionService


@pytest.fixture
def gateway():
    return MagicMock(spec=BillingGateway)


@pytest.fixture
def service(gateway):
    return SubscriptionService(gateway)


class TestCancelAtPeriodEnd:

    def test_sets_canceling(self, service, gateway, db_session, make_user, make_subscription):
        user = make_user(membership_type=MembershipType.PAID)
        subscription = make_subscription(user, "sub_period_end")

        result = service.cancel_at_period_end(db_session, user.id)

        gateway.cancel_at_period_end.assert_called_once_with("sub_period_end")
        db_session.refresh(subscription)
        assert subscription.status == SubscriptionStatus.CANCELING
        assert result["status"] == "CANCELING"

    def test_no_subscription_is_not_found(self, service, gateway, db_session, make_user):
        """Cancelling a non-existent subscription mutates nothing"""
        user = make_user()

        with pytest.raises(NotFound):
            service.cancel_at_period_end(db_session, user.id)

        gateway.cancel_at_period_end.assert_not_called()
        assert db_session.query(UserSubscription).count() == 0

    def test_canceled_subscription_is_not_found(self, service, gateway, db_session, make_user, make_subscription):
        user = make_user()
        make_subscription(user, "sub_done", status=SubscriptionStatus.CANCELED)

        with pytest.raises(NotFound):
            service.cancel_at_period_end(db_session, user.id)
        gateway.cancel_at_period_end.assert_not_called()

    def test_stripe_failure_leaves_record_untouched(self, service, gateway, db_session, make_user,
                                                    make_subscription):
        user = make_user(membership_type=MembershipType.PAID)
        subscription = make_subscription(user, "sub_fail")
        gateway.cancel_at_period_end.side_effect = UpstreamFailure("Failed to cancel subscription", details="timeout")

        with pytest.raises(UpstreamFailure):
            service.cancel_at_period_end(db_session, user.id)

        db_session.refresh(subscription)
        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_runs_under_subscription_lock(self, service, db_session, make_user, make_subscription, fake_cache):
        user = make_user(membership_type=MembershipType.PAID)
        make_subscription(user, "sub_locked")

        service.cancel_at_period_end(db_session, user.id)

        assert fake_cache.acquired == ["lock:subscription:sub_locked"]
        assert fake_cache.locks == {}

    def test_busy_lock_surfaces_error(self, service, gateway, db_session, make_user, make_subscription,
                                      fake_cache):
        """A webhook holding the lock makes the cancel fail before Stripe is called"""
        user = make_user(membership_type=MembershipType.PAID)
        subscription = make_subscription(user, "sub_contended")
        fake_cache.locks["lock:subscription:sub_contended"] = "held-by-webhook"

        with pytest.raises(SubscriptionBusy):
            service.cancel_at_period_end(db_session, user.id)

        gateway.cancel_at_period_end.assert_not_called()
        db_session.refresh(subscription)
        assert subscription.status == SubscriptionStatus.ACTIVE


class TestCancelImmediately:

    def test_cancels_and_downgrades(self, service, gateway, db_session, make_user, make_subscription):
        user = make_user(membership_type=MembershipType.PAID)
        subscription = make_subscription(user, "sub_now")

        result = service.cancel_immediately(db_session, user.id)

        gateway.cancel_immediately.assert_called_once_with("sub_now")
        db_session.refresh(subscription)
        db_session.refresh(user)
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.end_date is not None
        assert user.membership_type == MembershipType.FREE
        assert result["success"] is True
        assert db_session.query(ExecutionLog).count() == 1

    def test_without_redis_still_cancels(self, service, gateway, db_session, make_user, make_subscription,
                                         fake_cache):
        fake_cache.available = False
        user = make_user(membership_type=MembershipType.PAID)
        subscription = make_subscription(user, "sub_no_redis")

        service.cancel_immediately(db_session, user.id)

        db_session.refresh(subscription)
        assert subscription.status == SubscriptionStatus.CANCELED


class TestUpgrade:

    def test_success(self, service, gateway):
        assert service.upgrade("pm_card_visa", "user-1") == {"success": True}
        gateway.create_payment_intent.assert_called_once_with("pm_card_visa", "user-1")

    def test_failure_is_reported_not_raised(self, service, gateway):
        gateway.create_payment_intent.side_effect = UpstreamFailure("Payment failed")

        assert service.upgrade("pm_card_declined") == {"success": False, "error": "Payment failed"}

    def test_missing_payment_method(self, service, gateway):
        assert service.upgrade(None)["success"] is False
        gateway.create_payment_intent.assert_not_called()


class TestSubscriptionEndpoints:

    @pytest.fixture
    def routed_gateway(self, app, gateway):
        from dmreply.api.routes.subscriptions import get_subscription_service

        app.dependency_overrides[get_subscription_service] = lambda: SubscriptionService(gateway)
        return gateway

    def test_cancel_requires_session(self, client, routed_gateway):
        assert client.post("/api/cancel-subscription").status_code == 401
        routed_gateway.cancel_at_period_end.assert_not_called()

    def test_cancel_without_subscription(self, client, login_as, make_user, routed_gateway):
        login_as(make_user())

        response = client.post("/api/cancel-subscription")

        assert response.status_code == 404
        assert response.json()["error"] == "Subscription not found"

    def test_immediate_cancel(self, client, login_as, make_user, make_subscription, routed_gateway):
        user = make_user(membership_type=MembershipType.PAID)
        make_subscription(user, "sub_route")
        login_as(user)

        response = client.post("/api/subscription/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELED"

    def test_upstream_failure_body(self, client, login_as, make_user, make_subscription, routed_gateway):
        user = make_user(membership_type=MembershipType.PAID)
        make_subscription(user, "sub_upstream")
        login_as(user)
        routed_gateway.cancel_at_period_end.side_effect = UpstreamFailure(
            "Failed to cancel subscription", details="Request timed out")

        response = client.post("/api/cancel-subscription")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to cancel subscription", "details": "Request timed out"}

    def test_busy_subscription_is_conflict(self, client, login_as, make_user, make_subscription,
                                           routed_gateway, fake_cache):
        user = make_user(membership_type=MembershipType.PAID)
        make_subscription(user, "sub_route_busy")
        fake_cache.locks["lock:subscription:sub_route_busy"] = "held-by-webhook"
        login_as(user)

        response = client.post("/api/subscription/cancel")

        assert response.status_code == 409
        routed_gateway.cancel_immediately.assert_not_called()

    def test_checkout_session(self, client, login_as, make_user, routed_gateway):
        user = make_user()
        login_as(user)
        routed_gateway.create_checkout_session.return_value = {"sessionId": "cs_1", "url": "https://checkout"}

        response = client.post("/api/create-checkout-session")

        assert response.status_code == 200
        assert response.json()["sessionId"] == "cs_1"
        routed_gateway.create_checkout_session.assert_called_once_with(user.id, user.email)

    def test_upgrade_failure_is_200(self, client, routed_gateway):
        routed_gateway.create_payment_intent.side_effect = UpstreamFailure("Payment failed")

        response = client.post("/api/upgrade", json={"paymentMethodId": "pm_x", "userId": "u1"})

        assert response.status_code == 200
        assert response.json() == {"success": False, "error": "Payment failed"}
