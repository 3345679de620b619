"""
Admin API routes
Seed route for local setups and the admin user listing.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.config import settings
from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import require_admin
from wheel_tracker.models.user import User, UserResponse
from wheel_tracker.seed import create_portfolio, get_or_create_user

router = APIRouter(tags=["Admin"])


@router.get("/seed-user")
async def seed_user(session: AsyncSession = Depends(get_session)):
    """Create the seed admin with a default portfolio, once"""
    if not settings.SEED_ROUTE_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    user, created = await get_or_create_user(
        session,
        settings.SEED_ADMIN_USERNAME,
        settings.SEED_ADMIN_PASSWORD,
    )
    if created:
        await create_portfolio(session, user)

    return {
        "message": "User created" if created else "User already exists",
        "user": UserResponse.model_validate(user).model_dump(by_alias=True, mode="json"),
    }


@router.get("/admin/users", response_model=list[UserResponse])
async def list_users(
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """List all users (admin only)"""
    result = await session.execute(select(User).order_by(User.created_at))
    return result.scalars().all()
