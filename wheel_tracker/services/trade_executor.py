"""
Trade Execution Service

Every write that changes an option position or realizes P/L goes through
here, so the portfolio capital ledger stays consistent:

    current_capital = starting_capital + additional_capital
                      + realized P/L of closed trade legs
                      + realized P/L of share sales
"""

from typing import Optional, Dict, Any, List
from uuid import UUID
import logging

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.models.common import utcnow
from wheel_tracker.models.portfolio import Portfolio, PortfolioUpdate
from wheel_tracker.models.stock import StockLot, StockLotSale, StockLotStatus
from wheel_tracker.models.trade import (
    Trade, TradeAdjustment, TradeCreate, TradeStatus, TradeType,
)
from wheel_tracker.services.trade_metrics import (
    SHARES_PER_CONTRACT,
    calculate_adjusted_contracts,
    calculate_average_contract_price,
    close_leg_pnl,
    realized_pnl,
)

logger = logging.getLogger(__name__)


class TradeExecutionError(Exception):
    """Base exception for rejected trade operations"""
    pass


class InvalidQuantityError(TradeExecutionError):
    """Raised for contract or share quantities the position cannot support"""
    pass


class TradeNotOpenError(TradeExecutionError):
    """Raised when modifying a trade that is already closed"""
    pass


class InsufficientSharesError(TradeExecutionError):
    """Raised when selling shares that are closed or reserved by covered calls"""
    pass


class TradeExecutor:
    """
    Position and ledger writes.

    Each public method commits its own unit of work. Rows that are read and
    then modified are taken with SELECT ... FOR UPDATE.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # TRADES
    # ========================================================================

    async def create_trade(self, portfolio: Portfolio, data: TradeCreate) -> Trade:
        if data.stock_lot_id is not None:
            lot = await self.db.get(StockLot, data.stock_lot_id)
            if lot is None or lot.portfolio_id != portfolio.id:
                raise TradeExecutionError("Stock lot not found in this portfolio")

        trade = Trade(
            portfolio_id=portfolio.id,
            stock_lot_id=data.stock_lot_id,
            ticker=data.ticker,
            strike_price=data.strike_price,
            entry_price=data.entry_price,
            expiration_date=data.expiration_date,
            type=data.type.value,
            contracts=data.contracts,
            contract_price=data.contract_price,
            notes=data.notes,
            status=TradeStatus.OPEN.value,
        )
        self.db.add(trade)
        await self.db.commit()
        await self.db.refresh(trade)

        logger.info(
            f"Opened {trade.type} {trade.ticker} x{trade.contracts} "
            f"@ {trade.contract_price} in portfolio {portfolio.id}"
        )
        return trade

    async def add_adjustment(
        self,
        trade: Trade,
        contracts: int,
        price: float,
        notes: Optional[str] = None,
    ) -> TradeAdjustment:
        """Record a signed change to an open position."""
        if trade.status != TradeStatus.OPEN.value:
            raise TradeNotOpenError("Trade is not open")

        adjustment = TradeAdjustment(
            trade_id=trade.id,
            contracts=contracts,
            price=price,
            notes=notes,
        )
        self.db.add(adjustment)
        trade.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(adjustment)

        logger.info(f"Adjusted trade {trade.id}: {contracts:+d} @ {price}")
        return adjustment

    async def add_to_trade(self, trade: Trade, added_contracts: int, added_price: float) -> TradeAdjustment:
        if added_contracts <= 0:
            raise InvalidQuantityError("addedContracts must be positive")
        return await self.add_adjustment(
            trade, added_contracts, added_price, notes="Added to position"
        )

    async def close_trade(
        self,
        trade: Trade,
        contracts_to_close: int,
        closing_price: float,
        full_close: bool = False,
        fees_per_contract: float = 0.0,
        flat_fees: float = 0.0,
    ) -> Dict[str, Any]:
        """
        Buy back some or all contracts.

        Full close marks the trade closed. A partial close shrinks the open
        position with a negative adjustment at the current average (so the
        average is unchanged) and books the leg as its own closed trade.
        """
        trade = await self._lock_trade(trade.id)
        if trade.status != TradeStatus.OPEN.value:
            raise TradeNotOpenError("Trade is not open")

        adjustments = await self.get_adjustments(trade.id)
        open_contracts = calculate_adjusted_contracts(trade, adjustments)
        avg_price = calculate_average_contract_price(trade, adjustments)

        if open_contracts <= 0 or contracts_to_close > open_contracts:
            raise InvalidQuantityError("contractsToClose exceeds open contracts")

        realized, fees_total, percent_pl = close_leg_pnl(
            avg_price, closing_price, contracts_to_close, fees_per_contract, flat_fees
        )
        remaining = open_contracts - contracts_to_close
        now = utcnow()

        portfolio = await self._lock_portfolio(trade.portfolio_id)

        if full_close or remaining <= 0:
            trade.status = TradeStatus.CLOSED.value
            trade.closed_at = now
            trade.closing_price = closing_price
            trade.contracts_closed = open_contracts
            trade.premium_captured = (trade.premium_captured or 0) + realized
            trade.percent_pl = percent_pl
            trade.updated_at = now
            result: Dict[str, Any] = {"realized_now": realized, "fees_total": fees_total}
        else:
            self.db.add(TradeAdjustment(
                trade_id=trade.id,
                contracts=-contracts_to_close,
                price=avg_price,
                notes=f"Partial close @ {closing_price}",
            ))
            trade.updated_at = now

            self.db.add(Trade(
                portfolio_id=trade.portfolio_id,
                stock_lot_id=trade.stock_lot_id,
                ticker=trade.ticker,
                strike_price=trade.strike_price,
                entry_price=trade.entry_price,
                expiration_date=trade.expiration_date,
                type=trade.type,
                contracts=contracts_to_close,
                contract_price=avg_price,
                status=TradeStatus.CLOSED.value,
                contracts_closed=contracts_to_close,
                closing_price=closing_price,
                closed_at=now,
                premium_captured=realized,
                percent_pl=percent_pl,
                created_at=trade.created_at,
            ))
            result = {
                "realized_now": realized,
                "fees_total": fees_total,
                "remaining": remaining,
            }

        self._credit(portfolio, realized, f"close of trade {trade.id}")
        await self.db.commit()
        return result

    # ========================================================================
    # SHARES
    # ========================================================================

    async def sell_shares(
        self,
        lot: StockLot,
        shares_sold: int,
        sale_price: float,
        fees: float = 0.0,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        lot = await self._lock_stock_lot(lot.id)
        if lot.status != StockLotStatus.OPEN.value:
            raise InsufficientSharesError("StockLot is not OPEN")

        reserved_shares = await self._reserved_shares(lot.id)
        available = lot.shares - reserved_shares
        if shares_sold > available:
            raise InsufficientSharesError(
                f"Cannot sell {shares_sold} shares. {reserved_shares} shares reserved "
                f"by open covered calls. Available: {available}."
            )

        realized = (sale_price - lot.avg_cost) * shares_sold - fees
        sale = StockLotSale(
            stock_lot_id=lot.id,
            shares_sold=shares_sold,
            sale_price=sale_price,
            fees=fees if fees > 0 else None,
            realized_pnl=realized,
            notes=notes,
        )
        self.db.add(sale)

        cumulative = (lot.realized_pnl or 0) + realized
        new_shares = lot.shares - shares_sold
        lot.realized_pnl = cumulative
        if new_shares == 0:
            lot.shares = 0
            lot.status = StockLotStatus.CLOSED.value
            lot.closed_at = utcnow()
            lot.close_price = sale_price
        else:
            lot.shares = new_shares

        portfolio = await self._lock_portfolio(lot.portfolio_id)
        self._credit(portfolio, realized, f"sale from lot {lot.id}")

        await self.db.commit()
        await self.db.refresh(sale)

        return {
            "sale": sale,
            "reserved_shares": reserved_shares,
            "available_to_sell": available,
            "new_shares": new_shares,
            "cumulative_realized": f"{cumulative:.2f}",
        }

    # ========================================================================
    # PORTFOLIO CAPITAL
    # ========================================================================

    async def update_portfolio(self, portfolio: Portfolio, data: PortfolioUpdate) -> Portfolio:
        """Apply an edit; capital changes shift current_capital by the same delta."""
        portfolio = await self._lock_portfolio(portfolio.id)
        changes = data.model_dump(exclude_unset=True)

        delta = 0.0
        if changes.get("starting_capital") is not None:
            delta += changes["starting_capital"] - portfolio.starting_capital
            portfolio.starting_capital = changes["starting_capital"]
        if changes.get("additional_capital") is not None:
            delta += changes["additional_capital"] - portfolio.additional_capital
            portfolio.additional_capital = changes["additional_capital"]
        if changes.get("name") is not None:
            portfolio.name = changes["name"]
        if "notes" in changes:
            portfolio.notes = changes["notes"]

        if delta:
            self._credit(portfolio, delta, "capital edit")
        portfolio.updated_at = utcnow()

        await self.db.commit()
        await self.db.refresh(portfolio)
        return portfolio

    async def recalculate_current_capital(self, portfolio: Portfolio) -> Portfolio:
        """Rebuild current_capital from the base and every realized leg."""
        portfolio = await self._lock_portfolio(portfolio.id)

        result = await self.db.execute(
            select(Trade).where(
                Trade.portfolio_id == portfolio.id,
                Trade.status == TradeStatus.CLOSED.value,
            )
        )
        realized_trades = sum(
            realized_pnl(
                t.contracts_closed if t.contracts_closed is not None else t.contracts,
                t.contract_price,
                t.closing_price,
                t.premium_captured,
            )
            for t in result.scalars().all()
        )

        result = await self.db.execute(
            select(func.coalesce(func.sum(StockLotSale.realized_pnl), 0))
            .join(StockLot, StockLotSale.stock_lot_id == StockLot.id)
            .where(StockLot.portfolio_id == portfolio.id)
        )
        realized_shares = float(result.scalar_one())

        expected = (
            portfolio.starting_capital
            + portfolio.additional_capital
            + realized_trades
            + realized_shares
        )
        if abs(expected - portfolio.current_capital) > 1e-6:
            logger.info(
                f"Reconciled portfolio {portfolio.id}: "
                f"{portfolio.current_capital} -> {expected}"
            )
        portfolio.current_capital = expected
        portfolio.updated_at = utcnow()

        await self.db.commit()
        await self.db.refresh(portfolio)
        return portfolio

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def get_adjustments(self, trade_id: UUID) -> List[TradeAdjustment]:
        result = await self.db.execute(
            select(TradeAdjustment)
            .where(TradeAdjustment.trade_id == trade_id)
            .order_by(TradeAdjustment.created_at)
        )
        return list(result.scalars().all())

    def _credit(self, portfolio: Portfolio, amount: float, reason: str) -> None:
        portfolio.current_capital = (portfolio.current_capital or 0) + amount
        portfolio.updated_at = utcnow()
        logger.info(f"Portfolio {portfolio.id} capital {amount:+.2f} ({reason})")

    async def _reserved_shares(self, stock_lot_id: UUID) -> int:
        """Shares backing open covered calls written against the lot."""
        result = await self.db.execute(
            select(Trade).where(
                Trade.stock_lot_id == stock_lot_id,
                Trade.status == TradeStatus.OPEN.value,
                Trade.type == TradeType.COVERED_CALL.value,
            )
        )
        contracts = 0
        for cc in result.scalars().all():
            contracts += calculate_adjusted_contracts(cc, await self.get_adjustments(cc.id))
        return max(0, contracts) * SHARES_PER_CONTRACT

    async def _lock_portfolio(self, portfolio_id: UUID) -> Portfolio:
        result = await self.db.execute(
            select(Portfolio)
            .where(Portfolio.id == portfolio_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _lock_trade(self, trade_id: UUID) -> Trade:
        result = await self.db.execute(
            select(Trade)
            .where(Trade.id == trade_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _lock_stock_lot(self, stock_lot_id: UUID) -> StockLot:
        result = await self.db.execute(
            select(StockLot)
            .where(StockLot.id == stock_lot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
