"""
Pytest configuration for testing
"""

import os
import uuid
from datetime import datetime
from unittest.mock import MagicMock

import pytest

# Set up environment variables for testing before any imports
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["FIREBASE_PROJECT_ID"] = "test-project"
os.environ["FIREBASE_CREDENTIALS_PATH"] = ""
os.environ["ENCRYPTION_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["REDIS_PASSWORD"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID"] = "price_test"
os.environ["INSTAGRAM_VERIFY_TOKEN"] = "verify-me"
os.environ["SESSION_TEST_MODE"] = "false"
os.environ["ENVIRONMENT"] = "test"

from dmreply.core.redis_cache import LockTimeout  # noqa: E402


class FakeCache:
    """In-process stand-in for RedisCache"""

    def __init__(self, available: bool = True):
        self.available = available
        self.counters = {}
        self.locks = {}
        self.acquired = []

    def incr_with_ttl(self, key, ttl_seconds):
        if not self.available:
            return None
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def acquire_lock(self, lock_key, timeout_seconds=10, block_seconds=5):
        if not self.available:
            return None
        if lock_key in self.locks:
            raise LockTimeout(lock_key)
        token = str(uuid.uuid4())
        self.locks[lock_key] = token
        self.acquired.append(lock_key)
        return token

    def release_lock(self, lock_key, token):
        if self.locks.get(lock_key) == token:
            del self.locks[lock_key]

    def ping(self):
        return self.available


@pytest.fixture(autouse=True)
def fake_cache(monkeypatch):
    """Keep Redis out of unit tests"""
    import dmreply.core.cache as cache_module

    cache = FakeCache()
    monkeypatch.setattr(cache_module, "_cache_instance", cache)
    yield cache


@pytest.fixture(autouse=True)
def mock_firebase_auth(monkeypatch):
    """Mock Firebase Admin auth to avoid network calls in tests"""
    mock_auth = MagicMock()
    monkeypatch.setattr("dmreply.core.firebase.auth", mock_auth)
    yield mock_auth


@pytest.fixture(scope="function")
def db_session():
    """Fresh in-memory schema for every test"""
    from dmreply.core.database import Base, SessionLocal, engine
    import dmreply.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db_session):
    """Factory for persisted users"""
    from dmreply.models.user import MembershipType, User

    def _make_user(email=None, membership_type=MembershipType.FREE, trial_start_date=None, user_id=None):
        user = User(
            id=user_id or str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            name="Test User",
            membership_type=membership_type,
            trial_start_date=trial_start_date,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_subscription(db_session):
    """Factory for persisted subscription records"""
    from dmreply.models.subscription import SubscriptionStatus, UserSubscription

    def _make_subscription(user, stripe_subscription_id="sub_123", status=SubscriptionStatus.ACTIVE):
        subscription = UserSubscription(
            id=str(uuid.uuid4()),
            user_id=user.id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id="cus_123",
            stripe_price_id="price_test",
            status=status,
            stripe_current_period_end=datetime(2030, 1, 1),
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _make_subscription


@pytest.fixture
def make_ig_account(db_session):
    """Factory for persisted Instagram accounts"""
    from dmreply.core.security import encrypt_access_token
    from dmreply.models.ig_account import IGAccount

    def _make_ig_account(user, instagram_id="17841400000000000", access_token="ig-token", username="shop"):
        account = IGAccount(
            id=str(uuid.uuid4()),
            user_id=user.id,
            instagram_id=instagram_id,
            username=username,
            access_token_encrypted=encrypt_access_token(access_token) if access_token else None,
            profile_picture_url="https://cdn.example.com/shop.jpg",
        )
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make_ig_account


@pytest.fixture
def app(db_session):
    """FastAPI app bound to the test session"""
    from dmreply.core.database import get_db
    from dmreply.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_db] = lambda: db_session
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Unauthenticated test client"""
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def login_as(app):
    """Make every request resolve to the given user"""
    from dmreply.core.session import FixedSessionResolver, SessionUser, get_session_resolver

    def _login_as(user):
        session_user = SessionUser(id=user.id, email=user.email, name=user.name)
        app.dependency_overrides[get_session_resolver] = lambda: FixedSessionResolver(session_user)
        return session_user

    return _login_as
