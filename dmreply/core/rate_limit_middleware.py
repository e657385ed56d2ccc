from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from dmreply.core.cache import get_cache
from dmreply.core.config import settings
from dmreply.core.database import SessionLocal
from dmreply.core.session import get_session_resolver
from dmreply.models.user import MembershipType, User
from dmreply.services.membership_service import is_trial_expired
from datetime import datetime, timedelta
import logging

logger = logging.getLogger(__name__)

# Requests per minute by membership
RATE_LIMITS = {
    MembershipType.FREE: 60,
    MembershipType.TRIAL: 120,
    MembershipType.PAID: 300,
}

# Unauthenticated requests (IP-based)
DEFAULT_IP_LIMIT = 30

EXEMPT_PATHS = {'/health', '/docs', '/openapi.json', '/redoc'}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Apply per-minute limits by membership, or by client IP for anonymous calls.

    The session resolved here is stored on request.state, so route
    dependencies reuse it instead of verifying the token twice.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.cache = get_cache()

    def _is_exempt(self, path: str) -> bool:
        if path in EXEMPT_PATHS:
            return True
        # Webhooks carry their own verification
        return path.startswith(f"{settings.api_prefix}/webhooks")

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or self._is_exempt(request.url.path):
            return await call_next(request)

        session_user, membership = await run_in_threadpool(self._resolve_membership, request)

        if session_user is not None and membership is not None:
            limit = RATE_LIMITS[membership]
            count = self._hit(f"rate_limit:user:{session_user.id}")
            if count is not None and count > limit:
                logger.warning(f"Rate limit exceeded - user: {session_user.id}, membership: {membership.value}")
                return self._too_many_requests(
                    f"Rate limit exceeded. Your {membership.value} membership allows {limit} requests per minute.",
                    limit,
                )
        else:
            limit = DEFAULT_IP_LIMIT
            client_ip = self._get_client_ip(request)
            count = self._hit(f"rate_limit:ip:{client_ip}")
            if count is not None and count > limit:
                logger.warning(f"Rate limit exceeded - IP: {client_ip}")
                return self._too_many_requests(
                    "Rate limit exceeded. Please sign in or try again later.",
                    limit,
                )

        response = await call_next(request)

        if count is not None:
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
            response.headers["X-RateLimit-Reset"] = str(int((self._current_window() + timedelta(minutes=1)).timestamp()))
        return response

    def _resolve_membership(self, request: Request):
        """Session and rate-limit tier for the caller; (None, None) when anonymous"""
        membership = None
        session_user = None
        db = SessionLocal()
        try:
            session_user = get_session_resolver().resolve(request, db)
            request.state.session_user = session_user
            request.state.session_resolved = True

            if session_user is not None:
                user = db.query(User).filter(User.id == session_user.id).first()
                membership = MembershipType.FREE
                if user is not None:
                    membership = user.membership_type
                    # Limits only; the downgrade itself is written by the membership routes
                    if membership == MembershipType.TRIAL and is_trial_expired(user, datetime.utcnow()):
                        membership = MembershipType.FREE
        except Exception as e:
            logger.error(f"Rate limit middleware: Could not resolve session: {e}")
        finally:
            db.close()
        return session_user, membership

    def _current_window(self) -> datetime:
        return datetime.utcnow().replace(second=0, microsecond=0)

    def _hit(self, prefix: str):
        """Count this request in the current minute; None when Redis is unavailable"""
        key = f"{prefix}:minute:{self._current_window().isoformat()}"
        return self.cache.incr_with_ttl(key, ttl_seconds=60)

    def _too_many_requests(self, message: str, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": message, "retry_after": 60},
            headers={
                "Retry-After": "60",
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
