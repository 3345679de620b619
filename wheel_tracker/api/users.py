"""
User profile API routes
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import get_current_user
from wheel_tracker.core.security import (
    hash_password,
    verify_password,
    validate_password_strength,
)
from wheel_tracker.models.common import utcnow
from wheel_tracker.models.user import (
    User,
    ProfileUpdate,
    ProfileResponse,
    PasswordChange,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Update name, avatar, email or bio. Only supplied fields change."""
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No changes provided",
        )

    if changes.get("email") is not None:
        result = await session.execute(
            select(User).where(User.email == changes["email"], User.id != current_user.id)
        )
        if result.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already in use",
            )

    for field, value in changes.items():
        setattr(current_user, field, value)
    current_user.updated_at = utcnow()

    try:
        await session.commit()
        await session.refresh(current_user)
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already in use",
        )
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Profile update failed for user {current_user.id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile",
        )

    return current_user


@router.patch("/password")
async def change_password(
    data: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Change password after checking the current one"""
    if not data.current_password or not data.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    is_valid, error_message = validate_password_strength(data.new_password)
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_message,
        )

    if not verify_password(data.current_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    current_user.password_hash = hash_password(data.new_password)
    current_user.updated_at = utcnow()
    await session.commit()

    logger.info(f"Password changed for user {current_user.id}")
    return {"ok": True}
