"""
Authentication Security
=======================
Password hashing and signed tokens for sessions and email links.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import get_config, APIConfig
from .exceptions import AuthenticationError

# Token purposes
ACCESS = "access"
CONFIRM_EMAIL = "confirm-email"
RESET_PASSWORD = "reset-password"

# Fallback only for dev
_DEV_SECRET = "secret"

# Hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# JWT
def create_token(
    username: str,
    purpose: str = ACCESS,
    expires_delta: Optional[timedelta] = None,
    config: Optional[APIConfig] = None,
) -> str:
    config = config or get_config().api

    if expires_delta is None:
        hours = config.jwt_expiry_hours if purpose == ACCESS else config.email_token_expiry_hours
        expires_delta = timedelta(hours=hours)

    to_encode = {
        "sub": username,
        "purpose": purpose,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    secret = config.jwt_secret or _DEV_SECRET
    return jwt.encode(to_encode, secret, algorithm=config.jwt_algorithm)


def decode_token(
    token: str,
    purpose: str = ACCESS,
    config: Optional[APIConfig] = None,
) -> str:
    """
    Verify a token and return the username it was issued for.

    Raises:
        AuthenticationError: If the token is invalid, expired or was issued
            for another purpose
    """
    config = config or get_config().api
    secret = config.jwt_secret or _DEV_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[config.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token", code="INVALID_TOKEN", cause=e)

    if payload.get("purpose") != purpose:
        raise AuthenticationError(
            "You provided an invalid token type",
            code="INVALID_TOKEN_TYPE",
            details={"expected": purpose},
        )

    username = payload.get("sub")
    if not username:
        raise AuthenticationError("Token has no subject", code="INVALID_TOKEN")
    return username
