"""
Authentication API routes
Handles signup, login, token refresh and logout
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select, or_
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.config import settings
from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import get_current_user
from wheel_tracker.core.security import (
    hash_password,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    validate_password_strength,
    rate_limit_signup,
    rate_limit_auth,
)
from wheel_tracker.models.common import utcnow
from wheel_tracker.models.user import (
    User,
    UserSignup,
    UserLogin,
    UserResponse,
    TokenResponse,
    RefreshToken,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    secure = settings.ENVIRONMENT == "production"
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


async def _issue_tokens(session: AsyncSession, user_id, response: Response) -> TokenResponse:
    """Create an access/refresh pair, persist the refresh token and set cookies."""
    access_token = create_access_token(data={"sub": str(user_id)})
    refresh_token = create_refresh_token(data={"sub": str(user_id)})

    session.add(RefreshToken(
        user_id=user_id,
        token=refresh_token,
        expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    ))
    await session.commit()

    _set_auth_cookies(response, access_token, refresh_token)
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
@rate_limit_signup
async def signup(
    request: Request,
    user_data: UserSignup,
    session: AsyncSession = Depends(get_session),
):
    """
    Register a new user account

    - Enforces the minimum password rules
    - Rejects a username or email that is already taken
    - Stores a bcrypt hash of the password
    """
    is_valid, error_message = validate_password_strength(user_data.password)
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_message,
        )

    email = user_data.email.strip().lower()
    username = user_data.username.strip()

    result = await session.execute(
        select(User).where(or_(User.username == username, User.email == email))
    )
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email already taken",
        )

    new_user = User(
        first_name=user_data.first_name.strip(),
        last_name=user_data.last_name.strip(),
        email=email,
        username=username,
        password_hash=hash_password(user_data.password),
    )

    try:
        session.add(new_user)
        await session.commit()
        await session.refresh(new_user)
    except IntegrityError:
        # Lost a race with a concurrent signup for the same username or email
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email already taken",
        )
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Signup failed for username={username}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user",
        )

    logger.info(f"User created: {new_user.id}")
    return {"message": "User created", "userId": str(new_user.id)}


@router.post("/login", response_model=TokenResponse)
@rate_limit_auth
async def login(
    request: Request,
    credentials: UserLogin,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """
    Login with username and password

    - Returns an access token
    - Sets access and refresh tokens as HTTP-only cookies
    """
    result = await session.execute(
        select(User).where(User.username == credentials.username.strip())
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.info(f"Failed login for username={credentials.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user.last_login = utcnow()
    await session.commit()

    return await _issue_tokens(session, user.id, response)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_access_token(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """
    Refresh access token using refresh token from httpOnly cookie.

    The presented refresh token is revoked and a new pair is issued.
    """
    refresh_token = request.cookies.get("refresh_token")
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token provided",
        )

    try:
        payload = decode_token(refresh_token)
    except HTTPException:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )

    if payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    result = await session.execute(
        select(RefreshToken).where(
            RefreshToken.token == refresh_token,
            RefreshToken.revoked == False,  # noqa: E712
        )
    )
    token_record = result.scalar_one_or_none()

    if not token_record:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token not found or revoked",
        )

    if token_record.expires_at < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token has expired",
        )

    token_record.revoked = True
    return await _issue_tokens(session, token_record.user_id, response)


@router.post("/logout")
async def logout(
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Logout user

    - Revokes all refresh tokens for user
    - Clears auth cookies
    """
    result = await session.execute(
        select(RefreshToken).where(
            RefreshToken.user_id == current_user.id,
            RefreshToken.revoked == False,  # noqa: E712
        )
    )
    for token in result.scalars().all():
        token.revoked = True

    await session.commit()

    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")

    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
):
    """Get current authenticated user information"""
    return current_user
