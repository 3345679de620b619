"""
Portfolio API routes
CRUD, metrics, capital reconciliation and bulk snapshots.
"""

from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import get_current_user, get_owned_portfolio
from wheel_tracker.models.portfolio import (
    Portfolio,
    PortfolioCreate,
    PortfolioUpdate,
    PortfolioResponse,
    BulkSnapshotRequest,
)
from wheel_tracker.models.stock import StockLot, StockLotSale
from wheel_tracker.models.trade import Trade, TradeAdjustment
from wheel_tracker.models.user import User
from wheel_tracker.services.portfolio_calculator import PortfolioCalculator
from wheel_tracker.services.trade_executor import TradeExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


def _server_error(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


# ============================================================================
# CRUD
# ============================================================================

@router.get("", response_model=list[PortfolioResponse])
async def list_portfolios(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        select(Portfolio)
        .where(Portfolio.user_id == current_user.id)
        .order_by(Portfolio.created_at)
    )
    return result.scalars().all()


@router.post("", response_model=PortfolioResponse, status_code=status.HTTP_201_CREATED)
async def create_portfolio(
    data: PortfolioCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Create a portfolio; current capital starts at starting + additional."""
    portfolio = Portfolio(
        user_id=current_user.id,
        name=data.name,
        starting_capital=data.starting_capital,
        additional_capital=data.additional_capital,
        current_capital=data.starting_capital + data.additional_capital,
        notes=data.notes,
    )

    try:
        session.add(portfolio)
        await session.commit()
        await session.refresh(portfolio)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to create portfolio for user {current_user.id}", exc_info=True)
        raise _server_error("Failed to create portfolio")

    logger.info(f"Portfolio {portfolio.id} created for user {current_user.id}")
    return portfolio


@router.get("/{portfolio_id}", response_model=PortfolioResponse)
async def get_portfolio(
    portfolio_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await get_owned_portfolio(session, portfolio_id, current_user)


@router.patch("/{portfolio_id}", response_model=PortfolioResponse)
async def update_portfolio(
    portfolio_id: str,
    data: PortfolioUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Edit a portfolio. Capital edits move current capital by the same delta."""
    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)

    if not data.model_dump(exclude_unset=True):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No changes provided",
        )

    try:
        return await TradeExecutor(session).update_portfolio(portfolio, data)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to update portfolio {portfolio_id}", exc_info=True)
        raise _server_error("Failed to update portfolio")


@router.delete("/{portfolio_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_portfolio(
    portfolio_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Delete a portfolio with its trades, adjustments, lots and sales."""
    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)

    trade_ids = select(Trade.id).where(Trade.portfolio_id == portfolio.id)
    lot_ids = select(StockLot.id).where(StockLot.portfolio_id == portfolio.id)

    try:
        await session.execute(delete(TradeAdjustment).where(TradeAdjustment.trade_id.in_(trade_ids)))
        await session.execute(delete(Trade).where(Trade.portfolio_id == portfolio.id))
        await session.execute(delete(StockLotSale).where(StockLotSale.stock_lot_id.in_(lot_ids)))
        await session.execute(delete(StockLot).where(StockLot.portfolio_id == portfolio.id))
        await session.delete(portfolio)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to delete portfolio {portfolio_id}", exc_info=True)
        raise _server_error("Failed to delete portfolio")

    logger.info(f"Portfolio {portfolio_id} deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# METRICS
# ============================================================================

@router.get("/{portfolio_id}/metrics")
async def get_portfolio_metrics(
    portfolio_id: str,
    limit: int = Query(3),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Open positions, capital in use, biggest CSP and upcoming expirations"""
    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)
    return await PortfolioCalculator(session).get_overview_metrics(portfolio, limit=limit)


@router.get("/{portfolio_id}/detail-metrics")
async def get_portfolio_detail_metrics(
    portfolio_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)
    return await PortfolioCalculator(session).get_detail_metrics(portfolio)


@router.post("/{portfolio_id}/reconcile", response_model=PortfolioResponse)
async def reconcile_portfolio(
    portfolio_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Recompute current capital from the base and all realized P/L"""
    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)
    try:
        return await TradeExecutor(session).recalculate_current_capital(portfolio)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to reconcile portfolio {portfolio_id}", exc_info=True)
        raise _server_error("Failed to reconcile portfolio")


@router.post("/snapshot/bulk")
async def bulk_snapshot(
    data: BulkSnapshotRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Snapshot several portfolios at once.

    Every requested id appears in the response; ids that are malformed or
    not owned by the caller map to null.
    """
    wanted = {}
    for raw in data.ids:
        try:
            wanted[raw] = UUID(str(raw))
        except ValueError:
            wanted[raw] = None

    valid_ids = [pid for pid in wanted.values() if pid is not None]
    owned = {}
    if valid_ids:
        result = await session.execute(
            select(Portfolio).where(
                Portfolio.id.in_(valid_ids),
                Portfolio.user_id == current_user.id,
            )
        )
        owned = {p.id: p for p in result.scalars().all()}

    calculator = PortfolioCalculator(session)
    snapshots = {}
    for raw, pid in wanted.items():
        portfolio = owned.get(pid) if pid is not None else None
        snapshots[raw] = await calculator.get_snapshot(portfolio) if portfolio else None

    return snapshots
