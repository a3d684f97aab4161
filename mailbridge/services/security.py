"""
Password hashing and session tokens.

Session tokens are HS256 JWTs carrying the user's id and email.
"""

from datetime import datetime, timedelta, timezone

import jwt
from werkzeug.security import generate_password_hash, check_password_hash

from mailbridge.config import get_settings


class InvalidSessionToken(Exception):
    """Raised when a bearer token is expired, tampered with, or incomplete."""


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    # Google-only accounts have no password to check against
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def create_access_token(user_id: int, email: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRE_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify a session token and return its payload.

    Raises:
        InvalidSessionToken: expired, bad signature, or missing claims
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "user_id", "email"]},
        )
    except jwt.ExpiredSignatureError:
        raise InvalidSessionToken("Your session has expired. Please log in again.")
    except jwt.InvalidTokenError as e:
        raise InvalidSessionToken(f"Invalid token: {e}")

    if not isinstance(payload["user_id"], int):
        raise InvalidSessionToken("Invalid token: malformed user_id claim")
    return payload
