"""Password hashing, access tokens and generated secrets."""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from app.config import settings
from app.exceptions import ValidationError

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValidationError(
            f"Password cannot exceed {BCRYPT_MAX_BYTES} bytes", "PASSWORD_TOO_LONG"
        )
    return encoded


def hash_password(password: str) -> str:
    """
    Hash a password with a fresh bcrypt salt.

    Raises:
        ValidationError: If the password is longer than bcrypt supports

    Example:
        >>> hash_password("mypassword123").startswith("$2b$")
        True
    """
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Check a password against a stored hash.

    Accounts that were never activated have no hash and never match.
    """
    if not hashed_password:
        return False
    try:
        plain = _password_bytes(plain_password)
    except ValidationError:
        return False
    return bcrypt.checkpw(plain, hashed_password.encode("utf-8"))


def generate_password(length: int = 16) -> str:
    """Random URL-safe password, used for the bootstrap admin."""
    return secrets.token_urlsafe(length)[:length]


def generate_activation_token() -> str:
    """One-time account activation token."""
    return secrets.token_urlsafe(32)


def create_access_token(
    user_id: str,
    is_admin: bool = False,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed access token.

    Claims: ``sub`` (user id), ``admin`` (role at login) and ``exp``.
    The admin claim is informational; admin endpoints re-read the role.

    Args:
        user_id: Subject of the token
        is_admin: Role of the user at login
        expires_delta: Lifetime, defaults to ``jwt_expiration_minutes``
    """
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expiration_minutes)
    claims = {
        "sub": user_id,
        "admin": is_admin,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """
    Decode and check an access token.

    Raises:
        JWTError: If the signature is wrong, the token expired or has no subject
    """
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    if not claims.get("sub"):
        raise JWTError("Token payload missing 'sub' claim")
    return claims


def verify_access_token(token: str) -> str:
    """Return the user id of a valid access token, raising ``JWTError`` otherwise."""
    return decode_access_token(token)["sub"]


def generate_api_token() -> str:
    """Long-lived token for the token-authenticated entry API."""
    return secrets.token_urlsafe(32)
