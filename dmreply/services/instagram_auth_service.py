import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dmreply.core.config import settings
from dmreply.core.errors import AppError, Conflict, UpstreamFailure, ValidationFailure
from dmreply.core.security import decrypt_access_token, encrypt_access_token
from dmreply.models.ig_account import IGAccount
from dmreply.services.execution_log_service import ExecutionLogService


def _expiry(expires_in: Optional[int], now: datetime) -> Optional[datetime]:
    return now + timedelta(seconds=int(expires_in)) if expires_in else None


class InstagramAuthService:
    """
    Instagram account connection.

    ``connect`` trades an OAuth authorization code for a long-lived token and
    stores it encrypted on the user's account. ``refresh_expiring_tokens``
    renews long-lived tokens before they lapse.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.graph_api_timeout_seconds,
            follow_redirects=False,
            transport=self.transport,
        )

    async def _call(self, action: str, method: str, url: str, **kwargs) -> dict:
        """One Instagram API request; transport and HTTP errors become UpstreamFailure"""
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            self.logger.error(f"{action}: Failure - timeout - {e}")
            raise UpstreamFailure(f"Instagram {action} failed", details="Instagram API timed out")
        except httpx.HTTPStatusError as e:
            self.logger.error(f"{action}: Failure - HTTP {e.response.status_code}")
            raise UpstreamFailure(f"Instagram {action} failed", details=e.response.text)
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"{action}: Failure - {e}")
            raise UpstreamFailure(f"Instagram {action} failed", details=str(e))

    async def exchange_code(self, code: str) -> dict:
        """Authorization code -> long-lived token plus the account's id and username"""
        if not code:
            raise ValidationFailure("No authorization code provided")
        if not settings.instagram_app_id or not settings.instagram_app_secret:
            self.logger.error("exchange_code: INSTAGRAM_APP_ID or INSTAGRAM_APP_SECRET is not configured")
            raise AppError("Instagram app is not configured")

        short_lived = await self._call(
            "token exchange", "POST", f"{settings.instagram_oauth_url}/oauth/access_token",
            data={
                "client_id": settings.instagram_app_id,
                "client_secret": settings.instagram_app_secret,
                "grant_type": "authorization_code",
                "redirect_uri": f"{settings.app_url}/instagram-callback",
                "code": code,
            },
        )
        long_lived = await self._call(
            "long-lived token", "GET", f"{settings.instagram_graph_url}/access_token",
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": settings.instagram_app_secret,
                "access_token": short_lived.get("access_token"),
            },
        )
        access_token = long_lived.get("access_token")
        if not access_token:
            raise UpstreamFailure("Instagram long-lived token failed", details="No access token in response")

        profile = await self._call(
            "profile", "GET", f"{settings.instagram_graph_url}/me",
            params={"fields": "id,username,account_type", "access_token": access_token},
        )
        if not profile.get("id"):
            raise UpstreamFailure("Instagram profile failed", details="No account id in response")

        return {
            "access_token": access_token,
            "expires_in": long_lived.get("expires_in"),
            "id": str(profile["id"]),
            "username": profile.get("username"),
        }

    def save_account(self, db: Session, user_id: str, token: dict, now: Optional[datetime] = None) -> dict:
        """Upsert the user's account with the new token; one Instagram id belongs to one user"""
        now = now or datetime.utcnow()
        instagram_id = token["id"]

        owner = db.query(IGAccount).filter(IGAccount.instagram_id == instagram_id).first()
        if owner is not None and owner.user_id != user_id:
            self.logger.warning(f"save_account: Instagram account {instagram_id} belongs to another user")
            raise Conflict("Instagram account is connected to another user")

        account = owner or db.query(IGAccount).filter(
            IGAccount.user_id == user_id
        ).order_by(IGAccount.created_at.asc()).first()
        if account is None:
            account = IGAccount(id=str(uuid.uuid4()), user_id=user_id)
            db.add(account)

        account.instagram_id = instagram_id
        account.username = token.get("username") or account.username
        account.access_token_encrypted = encrypt_access_token(token["access_token"])
        account.token_expires_at = _expiry(token.get("expires_in"), now)
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"save_account: Failure - {e}")
            raise
        result = {
            "connected": True,
            "id": account.instagram_id,
            "username": account.username,
            "expiresAt": account.token_expires_at.isoformat() if account.token_expires_at else None,
        }

        self.execution_log.log(db, f"Instagram connected: user={user_id}, account={instagram_id}")
        return result

    async def connect(self, db: Session, user_id: str, code: str, now: Optional[datetime] = None) -> dict:
        self.logger.info(f"connect: Entry - user: {user_id}")
        token = await self.exchange_code(code)
        result = await run_in_threadpool(self.save_account, db, user_id, token, now)

        self.logger.info(f"connect: Success - user: {user_id}, account: {result['id']}")
        return result

    async def refresh_token(self, access_token: str) -> dict:
        data = await self._call(
            "token refresh", "GET", f"{settings.instagram_graph_url}/refresh_access_token",
            params={"grant_type": "ig_refresh_token", "access_token": access_token},
        )
        if not data.get("access_token") or not data.get("expires_in"):
            raise UpstreamFailure("Instagram token refresh failed", details="Incomplete refresh response")
        return data

    def accounts_due_for_refresh(self, db: Session, now: datetime) -> list[IGAccount]:
        cutoff = now + timedelta(days=settings.instagram_token_refresh_days)
        return db.query(IGAccount).filter(
            IGAccount.token_expires_at.isnot(None),
            IGAccount.token_expires_at < cutoff,
            IGAccount.access_token_encrypted.isnot(None),
        ).order_by(IGAccount.token_expires_at.asc()).all()

    def _due_snapshot(self, db: Session, now: datetime) -> list[dict]:
        return [
            {
                "id": account.id,
                "user_id": account.user_id,
                "username": account.username,
                "instagram_id": account.instagram_id,
                "access_token": decrypt_access_token(account.access_token_encrypted),
            }
            for account in self.accounts_due_for_refresh(db, now)
        ]

    def _store_refreshed(self, db: Session, account_id: str, data: dict, now: datetime):
        account = db.query(IGAccount).filter(IGAccount.id == account_id).one()
        account.access_token_encrypted = encrypt_access_token(data["access_token"])
        account.token_expires_at = _expiry(data["expires_in"], now)
        db.commit()

    async def refresh_expiring_tokens(self, db: Session, now: Optional[datetime] = None) -> dict:
        """
        Refresh every long-lived token that expires within the refresh window.

        A failed account keeps its current token; the failure is recorded so
        the user can be asked to reconnect.
        """
        now = now or datetime.utcnow()
        accounts = await run_in_threadpool(self._due_snapshot, db, now)
        self.logger.info(f"refresh_expiring_tokens: Entry - {len(accounts)} accounts")

        results = {"total": len(accounts), "success": 0, "failed": 0, "errors": []}
        for account in accounts:
            try:
                data = await self.refresh_token(account["access_token"])
                await run_in_threadpool(self._store_refreshed, db, account["id"], data, now)
                results["success"] += 1
            except Exception as e:
                await run_in_threadpool(db.rollback)
                results["failed"] += 1
                results["errors"].append(
                    {"userId": account["user_id"], "username": account["username"], "error": str(e)}
                )
                self.logger.error(f"refresh_expiring_tokens: Failure - account: {account['id']} - {e}")
                await run_in_threadpool(
                    self.execution_log.log, db,
                    f"Instagram token refresh failed, reconnect required: user={account['user_id']}, "
                    f"account={account['instagram_id']}: {e}",
                )

        self.logger.info(
            f"refresh_expiring_tokens: Success - refreshed: {results['success']}, failed: {results['failed']}"
        )
        return results
