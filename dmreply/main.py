from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dmreply.core.config import settings
from dmreply.core.firebase import init_firebase
from dmreply.core.database import engine, Base
from dmreply.core.errors import register_error_handlers
from dmreply.core.rate_limit_middleware import RateLimitMiddleware
from dmreply.services.billing_gateway import configure_stripe
from dmreply.api.router import api_router
import dmreply.models  # noqa: F401  registers tables on Base.metadata
import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Read version from VERSION file, fallback to default if not found."""
    version_file = os.path.join(os.path.dirname(os.path.dirname(__file__)), "VERSION")
    try:
        if os.path.exists(version_file):
            with open(version_file, "r") as f:
                version = f.read().strip()
                if version:
                    return version
    except OSError as e:
        logger.warning(f"Could not read VERSION file: {e}")
    return "0.1.0"


init_firebase()
configure_stripe()

if settings.session_test_mode:
    if settings.is_production:
        logger.error("SESSION_TEST_MODE is set in production and will be ignored")
    else:
        logger.warning("SESSION_TEST_MODE is enabled: every request runs as the fixed test user")

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="DM Reply API",
    version=get_version(),
    debug=settings.debug,
    redirect_slashes=False,
)

app.add_middleware(RateLimitMiddleware)

# Renders AppError responses and wraps everything above in a generic 500
register_error_handlers(app)

# CORS outermost so error responses carry the headers too
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
