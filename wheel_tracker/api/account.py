"""
Account API routes
Cross-portfolio summary for the signed-in user.
"""

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import get_current_user
from wheel_tracker.models.user import User
from wheel_tracker.services.portfolio_calculator import PortfolioCalculator

router = APIRouter()


@router.get("/summary")
async def get_account_summary(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Per-portfolio snapshots, totals, next expiration and top tickers"""
    return await PortfolioCalculator(session).get_account_summary(current_user.id)
