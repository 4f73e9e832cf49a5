import logging
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import jwt, JWTError

from timechat.config import settings
from timechat.core.exceptions import AuthenticationError
from timechat.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password with bcrypt; returns the hash as text."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a signed bearer token for a user.

    Args:
        user_id: Stored as the ``sub`` claim
        expires_delta: Token lifetime, defaults to the configured lifetime

    Returns:
        Encoded JWT
    """
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret.get_secret_value(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Verify a bearer token and return the user id it was issued for."""
    try:
        payload = jwt.decode(token, settings.jwt_secret.get_secret_value(), algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError(f"Invalid or expired token: {e}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token missing subject")
    return user_id
