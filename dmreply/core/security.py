from cryptography.fernet import Fernet
from passlib.context import CryptContext
from dmreply.core.config import settings
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify a password against its hash; users without a password never match"""
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def get_cipher():
    """Get Fernet cipher instance for encryption/decryption"""
    key = settings.encryption_key.encode()
    return Fernet(key)


def encrypt_access_token(access_token: str) -> str:
    """Encrypt an Instagram Graph API token before storing it"""
    logger.info("encrypt_access_token: Entry")

    try:
        cipher = get_cipher()
        encrypted = cipher.encrypt(access_token.encode())
        logger.info("encrypt_access_token: Success")
        return encrypted.decode()
    except Exception as e:
        logger.error(f"encrypt_access_token: Failure - {e}")
        raise


def decrypt_access_token(encrypted_token: str) -> str:
    """Decrypt an Instagram Graph API token read from the database"""
    logger.info("decrypt_access_token: Entry")

    try:
        cipher = get_cipher()
        decrypted = cipher.decrypt(encrypted_token.encode())
        logger.info("decrypt_access_token: Success")
        return decrypted.decode()
    except Exception as e:
        logger.error(f"decrypt_access_token: Failure - {e}")
        raise
