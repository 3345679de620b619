"""
Security helpers: password hashing, JWT tokens, rate limiting, response headers
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional
import secrets

from fastapi import HTTPException, status
from jose import jwt, JWTError
from passlib.context import CryptContext
from slowapi import Limiter
from slowapi.util import get_remote_address

from wheel_tracker.core.config import settings


pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

limiter = Limiter(key_func=get_remote_address)

rate_limit_signup = limiter.limit(settings.RATE_LIMIT_SIGNUP)
rate_limit_auth = limiter.limit(settings.RATE_LIMIT_LOGIN)


# ============================================================================
# PASSWORDS
# ============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Stored value is not a recognised hash
        return False


def validate_password_strength(password: str) -> tuple[bool, str]:
    """Minimum rules for new passwords. Returns (is_valid, error_message)."""
    if len(password) < 8:
        return False, "Password must be at least 8 characters"
    if len(password.encode("utf-8")) > 72:
        return False, "Password must be at most 72 bytes"
    return True, ""


# ============================================================================
# JWT
# ============================================================================

def _create_token(data: Dict[str, Any], expires_delta: timedelta, token_type: str) -> str:
    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(UTC) + expires_delta,
        "type": token_type,
        # Unique per token so refresh rotation never repeats a value
        "jti": secrets.token_hex(8),
    })
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(data: Dict[str, Any]) -> str:
    return _create_token(
        data, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), "access"
    )


def create_refresh_token(data: Dict[str, Any]) -> str:
    return _create_token(
        data, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), "refresh"
    )


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT. Raises 401 on any failure."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ============================================================================
# RESPONSE HEADERS
# ============================================================================

def get_security_headers() -> Dict[str, str]:
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }
    if settings.ENVIRONMENT == "production":
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers
