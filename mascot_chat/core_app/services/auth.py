# mascot_chat/core_app/services/auth.py
import hashlib
import hmac
import secrets
from typing import Optional

from mascot_chat.core_app.exceptions import ConflictError, UnauthorizedError
from mascot_chat.core_app.schemas.user import User
from mascot_chat.core_app.services.storage import Storage
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1
KEY_LENGTH = 64
INVALID_CREDENTIALS = "Invalid username or password"


def _scrypt(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=KEY_LENGTH,
    )


def hash_password(password: str) -> str:
    """
    Stored form is "<hex digest>.<hex salt>", the salt is fresh for every call
    """
    salt = secrets.token_hex(16)
    return f"{_scrypt(password, salt).hex()}.{salt}"


def compare_passwords(supplied: str, stored: str) -> bool:
    try:
        hashed, salt = stored.split(".", 1)
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    if not salt or len(expected) != KEY_LENGTH:
        return False
    return hmac.compare_digest(expected, _scrypt(supplied, salt))


def register(storage: Storage, username: str, password: str) -> User:
    if storage.get_user_by_username(username) is not None:
        raise ConflictError("Username already exists")
    user = storage.create_user(username, hash_password(password))
    logger.info(f"User created: id={user.id} username={user.username}")
    return user


def authenticate(storage: Storage, username: str, password: str) -> User:
    user = storage.get_user_by_username(username)
    if user is None:
        logger.info(f"Login failed, unknown user: {username}")
        raise UnauthorizedError(INVALID_CREDENTIALS)
    if not compare_passwords(password, user.password):
        logger.info(f"Login failed, wrong password for: {username}")
        raise UnauthorizedError(INVALID_CREDENTIALS)
    return user


def _signature(sid: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), sid.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_session_id(sid: str, secret: str) -> str:
    return f"{sid}.{_signature(sid, secret)}"


def unsign_session_id(token: Optional[str], secret: str) -> Optional[str]:
    """Returns the session id when the cookie signature checks out, otherwise None."""
    if not token or "." not in token:
        return None
    sid, signature = token.rsplit(".", 1)
    if not sid or not hmac.compare_digest(signature, _signature(sid, secret)):
        return None
    return sid
