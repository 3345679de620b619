"""
Trade API routes
Opening, editing, adding to and closing option trades, plus adjustments.
"""

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import (
    get_current_user,
    get_owned_portfolio,
    get_owned_trade,
)
from wheel_tracker.models.common import utcnow
from wheel_tracker.models.trade import (
    Trade,
    TradeAdjustment,
    TradeStatus,
    TradeCreate,
    TradeUpdate,
    AddToTrade,
    CloseTrade,
    AdjustmentCreate,
    AdjustmentResponse,
    TradeResponse,
    TradeDetailResponse,
    CloseTradeResponse,
)
from wheel_tracker.models.user import User
from wheel_tracker.services.trade_executor import TradeExecutor, TradeExecutionError
from wheel_tracker.services.trade_metrics import (
    calculate_adjusted_contracts,
    calculate_average_contract_price,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _server_error(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


def build_trade_detail(trade: Trade, adjustments: List[TradeAdjustment]) -> TradeDetailResponse:
    """Trade plus its adjustments and the derived position."""
    base = TradeResponse.model_validate(trade).model_dump()
    return TradeDetailResponse(
        **base,
        adjustments=[AdjustmentResponse.model_validate(a) for a in adjustments],
        adjusted_contracts=calculate_adjusted_contracts(trade, adjustments),
        average_contract_price=calculate_average_contract_price(trade, adjustments),
    )


# ============================================================================
# TRADES
# ============================================================================

@router.post("", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def create_trade(
    data: TradeCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Open a trade in one of the caller's portfolios"""
    portfolio = await get_owned_portfolio(session, data.portfolio_id, current_user)

    try:
        return await TradeExecutor(session).create_trade(portfolio, data)
    except TradeExecutionError as e:
        raise _bad_request(str(e))
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to create trade in portfolio {portfolio.id}", exc_info=True)
        raise _server_error("Failed to create trade")


@router.get("", response_model=list[TradeResponse])
async def list_trades(
    status_filter: Optional[str] = Query(None, alias="status"),
    portfolio_id: Optional[str] = Query(None, alias="portfolioId"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Trades of one portfolio with the given status.

    Closed trades come back newest close first, open trades oldest first.
    """
    if not status_filter or not portfolio_id:
        raise _bad_request("Missing status or portfolioId")

    status_filter = status_filter.lower()
    if status_filter not in (TradeStatus.OPEN.value, TradeStatus.CLOSED.value):
        raise _bad_request("status must be 'open' or 'closed'")

    portfolio = await get_owned_portfolio(session, portfolio_id, current_user)

    query = select(Trade).where(
        Trade.portfolio_id == portfolio.id,
        Trade.status == status_filter,
    )
    if status_filter == TradeStatus.CLOSED.value:
        query = query.order_by(Trade.closed_at.desc())
    else:
        query = query.order_by(Trade.created_at)

    result = await session.execute(query)
    return result.scalars().all()


@router.get("/{trade_id}", response_model=TradeDetailResponse)
async def get_trade(
    trade_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    trade = await get_owned_trade(session, trade_id, current_user)
    adjustments = await TradeExecutor(session).get_adjustments(trade.id)
    return build_trade_detail(trade, adjustments)


@router.patch("/{trade_id}", response_model=TradeResponse)
async def update_trade(
    trade_id: str,
    data: TradeUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Edit expiration date, entry price and notes"""
    trade = await get_owned_trade(session, trade_id, current_user)
    changes = data.model_dump(exclude_unset=True)

    trade.expiration_date = data.expiration_date
    if "entry_price" in changes:
        trade.entry_price = data.entry_price
    if "notes" in changes:
        trade.notes = data.notes
    trade.updated_at = utcnow()

    try:
        await session.commit()
        await session.refresh(trade)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to update trade {trade_id}", exc_info=True)
        raise _server_error("Failed to update trade")

    return trade


@router.patch("/{trade_id}/add", response_model=TradeDetailResponse)
async def add_to_trade(
    trade_id: str,
    data: AddToTrade,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Add contracts to an open trade; the average price is re-weighted"""
    trade = await get_owned_trade(session, trade_id, current_user)
    executor = TradeExecutor(session)

    try:
        await executor.add_to_trade(trade, data.added_contracts, data.added_contract_price)
    except TradeExecutionError as e:
        raise _bad_request(str(e))
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to add to trade {trade_id}", exc_info=True)
        raise _server_error("Failed to add to trade")

    await session.refresh(trade)
    return build_trade_detail(trade, await executor.get_adjustments(trade.id))


@router.post(
    "/{trade_id}/close",
    response_model=CloseTradeResponse,
    response_model_exclude_none=True,
)
async def close_trade(
    trade_id: str,
    data: CloseTrade,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Buy back some or all open contracts and book the realized P/L"""
    trade = await get_owned_trade(session, trade_id, current_user)

    try:
        result = await TradeExecutor(session).close_trade(
            trade,
            contracts_to_close=data.contracts_to_close,
            closing_price=data.closing_price,
            full_close=data.full_close,
            fees_per_contract=data.fees_per_contract,
            flat_fees=data.flat_fees,
        )
    except TradeExecutionError as e:
        await session.rollback()
        raise _bad_request(str(e))
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to close trade {trade_id}", exc_info=True)
        raise _server_error("Failed to close trade")

    return CloseTradeResponse(**result)


# ============================================================================
# ADJUSTMENTS
# ============================================================================

@router.get("/{trade_id}/adjustments", response_model=list[AdjustmentResponse])
async def list_adjustments(
    trade_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    trade = await get_owned_trade(session, trade_id, current_user)
    return await TradeExecutor(session).get_adjustments(trade.id)


@router.post(
    "/{trade_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_adjustment(
    trade_id: str,
    data: AdjustmentCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Record a signed contract change against an open trade"""
    trade = await get_owned_trade(session, trade_id, current_user)

    try:
        return await TradeExecutor(session).add_adjustment(
            trade, data.contracts, data.price, data.notes
        )
    except TradeExecutionError as e:
        raise _bad_request(str(e))
    except SQLAlchemyError:
        await session.rollback()
        logger.error(f"Failed to create adjustment for trade {trade_id}", exc_info=True)
        raise _server_error("Failed to create adjustment")
