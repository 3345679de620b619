"""
FastAPI dependencies: current user, admin guard, ownership lookups
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.security import decode_token
from wheel_tracker.models.portfolio import Portfolio
from wheel_tracker.models.stock import StockLot
from wheel_tracker.models.trade import Trade
from wheel_tracker.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    Resolve the caller from a Bearer token, falling back to the
    access_token cookie. Raises 401 when neither yields a live user.
    """
    token = credentials.credentials if credentials else request.cookies.get("access_token")
    if not token:
        raise _unauthorized()

    payload = decode_token(token)
    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id = _parse_uuid(payload.get("sub"))
    if user_id is None:
        raise _unauthorized("Could not validate credentials")

    user = await session.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")

    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


# ============================================================================
# OWNERSHIP LOOKUPS
# Entities owned by another user are reported as missing.
# ============================================================================

async def get_owned_portfolio(session: AsyncSession, portfolio_id, user: User) -> Portfolio:
    pid = _parse_uuid(portfolio_id)
    if pid is not None:
        result = await session.execute(
            select(Portfolio).where(Portfolio.id == pid, Portfolio.user_id == user.id)
        )
        portfolio = result.scalar_one_or_none()
        if portfolio:
            return portfolio
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portfolio not found")


async def get_owned_trade(session: AsyncSession, trade_id, user: User) -> Trade:
    tid = _parse_uuid(trade_id)
    if tid is not None:
        result = await session.execute(
            select(Trade)
            .join(Portfolio, Trade.portfolio_id == Portfolio.id)
            .where(Trade.id == tid, Portfolio.user_id == user.id)
        )
        trade = result.scalar_one_or_none()
        if trade:
            return trade
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trade not found")


async def get_owned_stock_lot(session: AsyncSession, stock_lot_id, user: User) -> StockLot:
    sid = _parse_uuid(stock_lot_id)
    if sid is not None:
        result = await session.execute(
            select(StockLot)
            .join(Portfolio, StockLot.portfolio_id == Portfolio.id)
            .where(StockLot.id == sid, Portfolio.user_id == user.id)
        )
        lot = result.scalar_one_or_none()
        if lot:
            return lot
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock lot not found")
