"""
Tests for connecting an Instagram account and refreshing its token
"""

from datetime import datetime, timedelta
from urllib.parse import parse_qs

import httpx
import pytest
from click.testing import CliRunner

from dmreply.core.config import settings
from dmreply.core.errors import Conflict, UpstreamFailure, ValidationFailure
from dmreply.core.security import decrypt_access_token
from dmreply.models.execution_log import ExecutionLog
from dmreply.models.ig_account import IGAccount
from dmreply.services.instagram_auth_service import InstagramAuthService

NOW = datetime(2026, 1, 1)
SIXTY_DAYS = 60 * 24 * 60 * 60


class InstagramApiStub:
    """Answers the OAuth and token endpoints through httpx.MockTransport"""

    def __init__(self, fail_profile=False, revoked_tokens=()):
        self.calls = []
        self.fail_profile = fail_profile
        self.revoked_tokens = set(revoked_tokens)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        if request.url.host == "api.instagram.com" and path == "/oauth/access_token":
            return httpx.Response(200, json={"access_token": "short-token", "user_id": 17841499})
        if path == "/access_token":
            return httpx.Response(200, json={"access_token": "long-token", "token_type": "bearer",
                                             "expires_in": SIXTY_DAYS})
        if path == "/me":
            if self.fail_profile:
                return httpx.Response(500, json={"error": {"message": "Service unavailable"}})
            return httpx.Response(200, json={"id": "17841499", "username": "brand"})
        if path == "/refresh_access_token":
            token = request.url.params["access_token"]
            if token in self.revoked_tokens:
                return httpx.Response(400, json={"error": {"message": "Session has been invalidated"}})
            return httpx.Response(200, json={"access_token": f"refreshed-{token}", "expires_in": SIXTY_DAYS})
        return httpx.Response(404)


@pytest.fixture(autouse=True)
def instagram_app(monkeypatch):
    monkeypatch.setattr(settings, "instagram_app_id", "app-123")
    monkeypatch.setattr(settings, "instagram_app_secret", "app-secret")


@pytest.fixture
def instagram_api():
    return InstagramApiStub()


@pytest.fixture
def auth_service(instagram_api):
    return InstagramAuthService(transport=httpx.MockTransport(instagram_api))


class TestConnect:

    @pytest.mark.asyncio
    async def test_creates_account_with_encrypted_token(self, auth_service, instagram_api, db_session, make_user):
        user = make_user()

        result = await auth_service.connect(db_session, user.id, "auth-code", now=NOW)

        assert result == {"connected": True, "id": "17841499", "username": "brand",
                          "expiresAt": (NOW + timedelta(days=60)).isoformat()}
        account = db_session.query(IGAccount).filter(IGAccount.user_id == user.id).one()
        assert account.access_token_encrypted != "long-token"
        assert decrypt_access_token(account.access_token_encrypted) == "long-token"
        assert account.token_expires_at == NOW + timedelta(days=60)

        form = parse_qs(instagram_api.calls[0].content.decode())
        assert form["code"] == ["auth-code"]
        assert form["redirect_uri"] == [f"{settings.app_url}/instagram-callback"]
        assert instagram_api.calls[1].url.params["access_token"] == "short-token"

    @pytest.mark.asyncio
    async def test_updates_existing_account(self, auth_service, db_session, make_user, make_ig_account):
        user = make_user()
        existing = make_ig_account(user, instagram_id="old-id", access_token="stale-token")

        await auth_service.connect(db_session, user.id, "auth-code", now=NOW)

        assert db_session.query(IGAccount).count() == 1
        db_session.refresh(existing)
        assert existing.instagram_id == "17841499"
        assert decrypt_access_token(existing.access_token_encrypted) == "long-token"

    @pytest.mark.asyncio
    async def test_account_of_another_user(self, auth_service, db_session, make_user, make_ig_account):
        owner = make_user()
        make_ig_account(owner, instagram_id="17841499")
        intruder = make_user()

        with pytest.raises(Conflict):
            await auth_service.connect(db_session, intruder.id, "auth-code", now=NOW)

        assert db_session.query(IGAccount).filter(IGAccount.user_id == intruder.id).count() == 0

    @pytest.mark.asyncio
    async def test_missing_code(self, auth_service, instagram_api, db_session, make_user):
        with pytest.raises(ValidationFailure):
            await auth_service.connect(db_session, make_user().id, None)
        assert instagram_api.calls == []

    @pytest.mark.asyncio
    async def test_upstream_failure_stores_nothing(self, db_session, make_user):
        service = InstagramAuthService(transport=httpx.MockTransport(InstagramApiStub(fail_profile=True)))

        with pytest.raises(UpstreamFailure):
            await service.connect(db_session, make_user().id, "auth-code")

        assert db_session.query(IGAccount).count() == 0


class TestCallbackEndpoint:

    @pytest.fixture
    def routed(self, app, auth_service):
        from dmreply.api.routes.connections import get_instagram_auth_service

        app.dependency_overrides[get_instagram_auth_service] = lambda: auth_service

    def test_connect_then_status(self, client, routed, make_user, login_as):
        login_as(make_user())

        response = client.get("/api/auth/instagram-callback", params={"code": "auth-code"})

        assert response.status_code == 200
        assert "long-token" not in response.text
        status = client.get("/api/connections/status").json()["instagram"]
        assert status["connected"] is True
        assert status["name"] == "brand"

    def test_missing_code(self, client, routed, make_user, login_as):
        login_as(make_user())

        response = client.get("/api/auth/instagram-callback")

        assert response.status_code == 400
        assert response.json()["error"] == "No authorization code provided"

    def test_requires_session(self, client, routed):
        assert client.get("/api/auth/instagram-callback", params={"code": "x"}).status_code == 401


@pytest.fixture
def expiring_accounts(db_session, make_user, make_ig_account):
    """One token due soon, one revoked and due, one outside the refresh window"""
    def _account(instagram_id, token, expires_at):
        account = make_ig_account(make_user(), instagram_id=instagram_id, access_token=token,
                                  username=instagram_id)
        account.token_expires_at = expires_at
        db_session.commit()
        return account

    return {
        "due": _account("ig-due", "token-due", NOW + timedelta(days=10)),
        "revoked": _account("ig-revoked", "token-revoked", NOW + timedelta(days=4)),
        "fresh": _account("ig-fresh", "token-fresh", NOW + timedelta(days=59)),
    }


class TestRefreshTokens:

    @pytest.mark.asyncio
    async def test_refreshes_due_tokens(self, db_session, expiring_accounts):
        stub = InstagramApiStub(revoked_tokens={"token-revoked"})
        service = InstagramAuthService(transport=httpx.MockTransport(stub))

        results = await service.refresh_expiring_tokens(db_session, now=NOW)

        assert results["total"] == 2
        assert results["success"] == 1
        assert results["failed"] == 1
        assert results["errors"][0]["username"] == "ig-revoked"

        db_session.expire_all()
        due = expiring_accounts["due"]
        assert decrypt_access_token(due.access_token_encrypted) == "refreshed-token-due"
        assert due.token_expires_at == NOW + timedelta(days=60)

        revoked = expiring_accounts["revoked"]
        assert decrypt_access_token(revoked.access_token_encrypted) == "token-revoked"
        assert db_session.query(ExecutionLog).filter(
            ExecutionLog.message.contains("reconnect required")
        ).count() == 1

        fresh = expiring_accounts["fresh"]
        assert decrypt_access_token(fresh.access_token_encrypted) == "token-fresh"
        refreshed = [c.url.params["access_token"] for c in stub.calls]
        assert "token-fresh" not in refreshed

    @pytest.mark.asyncio
    async def test_accounts_without_expiry_are_skipped(self, auth_service, instagram_api, db_session, make_user,
                                                      make_ig_account):
        make_ig_account(make_user())

        results = await auth_service.refresh_expiring_tokens(db_session, now=NOW)

        assert results["total"] == 0
        assert instagram_api.calls == []


class TestRefreshCommand:

    def test_cli_refresh(self, monkeypatch, db_session, make_user, make_ig_account):
        from dmreply.cli.admin import cli

        account = make_ig_account(make_user(), access_token="token-cli")
        account.token_expires_at = datetime.utcnow() + timedelta(days=3)
        db_session.commit()
        monkeypatch.setattr(
            "dmreply.cli.admin.InstagramAuthService",
            lambda: InstagramAuthService(transport=httpx.MockTransport(InstagramApiStub())),
        )

        result = CliRunner().invoke(cli, ["refresh-instagram-tokens"])

        assert result.exit_code == 0
        assert "Refreshed 1 of 1" in result.output
        db_session.refresh(account)
        assert decrypt_access_token(account.access_token_encrypted) == "refreshed-token-cli"
