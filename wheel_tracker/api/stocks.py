"""
Stock lot API routes
Share lots held in a portfolio and sales out of them.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import (
    get_current_user,
    get_owned_portfolio,
    get_owned_stock_lot,
)
from wheel_tracker.models.stock import (
    StockLot,
    StockLotStatus,
    StockLotCreate,
    StockLotResponse,
    StockLotSaleResponse,
    SellShares,
)
from wheel_tracker.models.trade import Trade, TradeResponse
from wheel_tracker.models.user import User
from wheel_tracker.services.trade_executor import TradeExecutor, TradeExecutionError

logger = logging.getLogger(__name__)

router = APIRouter()


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


@router.get("")
async def list_stock_lots(
    portfolio_id: Optional[str] = Query(None, alias="portfolioId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    if not portfolio_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="portfolioId required")

    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)

    query = select(StockLot).where(StockLot.portfolio_id == portfolio.id)
    if status_filter:
        wanted = status_filter.upper()
        if wanted not in (StockLotStatus.OPEN.value, StockLotStatus.CLOSED.value):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="status must be 'open' or 'closed'",
            )
        query = query.where(StockLot.status == wanted)

    result = await session.execute(query.order_by(StockLot.opened_at.desc()))
    return {
        "stockLots": [_dump(StockLotResponse.model_validate(lot)) for lot in result.scalars().all()]
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_stock_lot(
    data: StockLotCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Record shares held in a portfolio"""
    portfolio = await get_owned_portfolio(session, data.portfolio_id, current_user)

    lot = StockLot(
        portfolio_id=portfolio.id,
        ticker=data.ticker,
        shares=data.shares,
        avg_cost=data.avg_cost,
        notes=data.notes,
    )
    try:
        session.add(lot)
        await session.commit()
        await session.refresh(lot)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to create stock lot in portfolio {portfolio.id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create stock lot",
        )

    logger.info(f"Stock lot {lot.id}: {lot.shares} {lot.ticker} @ {lot.avg_cost}")
    return {"stockLot": _dump(StockLotResponse.model_validate(lot))}


@router.get("/{stock_lot_id}")
async def get_stock_lot(
    stock_lot_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """A lot with the trades written against it, newest first"""
    lot = await get_owned_stock_lot(session, stock_lot_id, current_user)

    result = await session.execute(
        select(Trade)
        .where(Trade.stock_lot_id == lot.id)
        .order_by(Trade.created_at.desc())
    )
    body = _dump(StockLotResponse.model_validate(lot))
    body["trades"] = [_dump(TradeResponse.model_validate(t)) for t in result.scalars().all()]
    return {"stockLot": body}


@router.post("/{stock_lot_id}/sell")
async def sell_shares(
    stock_lot_id: str,
    data: SellShares,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Sell shares out of an open lot.

    Shares backing open covered calls on the lot cannot be sold. Selling the
    last share closes the lot.
    """
    lot = await get_owned_stock_lot(session, stock_lot_id, current_user)

    try:
        result = await TradeExecutor(session).sell_shares(
            lot,
            shares_sold=data.shares_sold,
            sale_price=data.sale_price,
            fees=data.fees,
            notes=data.notes,
        )
    except TradeExecutionError as e:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to sell shares from lot {stock_lot_id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sell shares",
        )

    return {
        "sale": _dump(StockLotSaleResponse.model_validate(result["sale"])),
        "reservedShares": result["reserved_shares"],
        "availableToSell": result["available_to_sell"],
        "newShares": result["new_shares"],
        "cumulativeRealized": result["cumulative_realized"],
    }
