import firebase_admin
from firebase_admin import credentials, auth
from dmreply.core.config import settings
import logging

logger = logging.getLogger(__name__)


def init_firebase():
    """Initialize Firebase Admin SDK"""
    logger.info("init_firebase: Entry")

    if not settings.firebase_credentials_path:
        logger.warning("init_firebase: FIREBASE_CREDENTIALS_PATH is not set, sessions will not resolve")
        return

    try:
        if not firebase_admin._apps:
            cred = credentials.Certificate(settings.firebase_credentials_path)
            firebase_admin.initialize_app(cred, {
                'projectId': settings.firebase_project_id,
            })
            logger.info("init_firebase: Success")
        else:
            logger.info("init_firebase: Already initialized")
    except Exception as e:
        logger.error(f"init_firebase: Failure - {e}")
        raise


def verify_firebase_token(token: str) -> dict:
    """Verify Firebase ID token and return decoded claims"""
    logger.info("verify_firebase_token: Entry")

    try:
        decoded_token = auth.verify_id_token(token, check_revoked=True)
        logger.info(f"verify_firebase_token: Success - {decoded_token.get('uid')}")
        return decoded_token
    except Exception as e:
        logger.error(f"verify_firebase_token: Failure - {e}")
        raise


def create_custom_token(user_id: str, claims: dict | None = None) -> str:
    """Mint a custom token the client exchanges for a Firebase ID token"""
    logger.info(f"create_custom_token: Entry - user: {user_id}")

    try:
        token = auth.create_custom_token(user_id, claims)
        if isinstance(token, bytes):
            token = token.decode()
        logger.info(f"create_custom_token: Success - user: {user_id}")
        return token
    except Exception as e:
        logger.error(f"create_custom_token: Failure - {e}")
        raise
