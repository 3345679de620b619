"""
Portfolio Calculator Service

Read-side portfolio metrics: capital in use, realized P/L buckets,
expirations and per-portfolio snapshots. Open positions are evaluated at
their adjusted contract count and average contract price.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Dict, Any, Optional, Iterable
from uuid import UUID
import logging

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.models.common import utcnow
from wheel_tracker.models.portfolio import Portfolio
from wheel_tracker.models.stock import StockLot, StockLotSale, StockLotStatus
from wheel_tracker.models.trade import Trade, TradeAdjustment, TradeStatus
from wheel_tracker.services.trade_metrics import (
    calculate_adjusted_contracts,
    calculate_average_contract_price,
    capital_used_for_trade,
    is_cash_secured_put,
    is_put,
    locked_collateral,
    premium_notional,
    realized_pnl,
)

logger = logging.getLogger(__name__)

DAY_SECONDS = 86_400
EXPIRING_SOON_DAYS = 7
MAX_NEXT_EXPIRATIONS = 10


@dataclass
class OpenPosition:
    """An open trade evaluated through its adjustments."""
    trade: Trade
    contracts: int
    avg_price: float

    @property
    def collateral(self) -> float:
        return locked_collateral(self.trade.strike_price, self.contracts)


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def year_start(now: datetime) -> datetime:
    return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)


def closed_trade_realized(trade: Trade) -> float:
    contracts = trade.contracts_closed if trade.contracts_closed is not None else trade.contracts
    return realized_pnl(contracts, trade.contract_price, trade.closing_price, trade.premium_captured)


class PortfolioCalculator:
    """Metrics over one portfolio or all of a user's portfolios."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # OVERVIEW METRICS
    # ========================================================================

    async def get_overview_metrics(self, portfolio: Portfolio, limit: int = 3) -> Dict[str, Any]:
        limit = min(max(limit, 1), MAX_NEXT_EXPIRATIONS)
        positions = await self._open_positions(portfolio.id)
        lots = await self._open_stock_lots(portfolio.id)

        capital_used_options = sum(
            capital_used_for_trade(p.trade.type, p.trade.strike_price, p.contracts, p.avg_price)
            for p in positions
        )
        capital_used_stocks = sum(lot.shares * lot.avg_cost for lot in lots)

        csp = [p for p in positions if is_cash_secured_put(p.trade.type)]
        biggest = max(csp, key=lambda p: p.collateral, default=None)

        now = utcnow()
        upcoming = sorted(
            (p for p in positions if p.trade.expiration_date > now),
            key=lambda p: p.trade.expiration_date,
        )[:limit]

        return {
            "openTradesCount": len(positions),
            "capitalUsed": capital_used_options + capital_used_stocks,
            "capitalUsedOptions": capital_used_options,
            "capitalUsedStocks": capital_used_stocks,
            "biggestPosition": {
                "id": str(biggest.trade.id),
                "ticker": biggest.trade.ticker,
                "strikePrice": biggest.trade.strike_price,
                "contracts": biggest.contracts,
                "expirationDate": biggest.trade.expiration_date.isoformat(),
                "locked": biggest.collateral,
            } if biggest else None,
            "nextExpirations": [
                {
                    "ticker": p.trade.ticker,
                    "expirationDate": p.trade.expiration_date.isoformat(),
                    "contracts": p.contracts,
                    "strikePrice": p.trade.strike_price,
                    "type": p.trade.type,
                }
                for p in upcoming
            ],
        }

    # ========================================================================
    # DETAIL METRICS
    # ========================================================================

    async def get_detail_metrics(self, portfolio: Portfolio) -> Dict[str, Any]:
        positions = await self._open_positions(portfolio.id)
        closed = await self._closed_trades(portfolio.id)
        sales = await self._stock_sales(portfolio.id)

        capital_base = portfolio.starting_capital + portfolio.additional_capital
        capital_used = sum(p.collateral for p in positions if is_put(p.trade.type))
        potential_premium = sum(premium_notional(p.avg_price, p.contracts) for p in positions)

        now = utcnow()
        this_month, this_year = month_start(now), year_start(now)

        realized_total = realized_mtd = realized_ytd = 0.0
        pl_percents: List[float] = []
        wins = 0
        close_count = 0
        days: List[float] = []

        for t in closed:
            realized = closed_trade_realized(t)
            realized_total += realized
            if t.closed_at is None:
                continue

            if t.closed_at >= this_month:
                realized_mtd += realized
            if t.closed_at >= this_year:
                realized_ytd += realized

            close_count += 1
            if t.percent_pl is not None:
                pl_percents.append(t.percent_pl)
                if t.percent_pl > 0:
                    wins += 1

            held = (t.closed_at - t.created_at).total_seconds() / DAY_SECONDS
            if held >= 0:
                days.append(held)

        for sale in sales:
            realized_total += sale.realized_pnl
            if sale.created_at >= this_month:
                realized_mtd += sale.realized_pnl
            if sale.created_at >= this_year:
                realized_ytd += sale.realized_pnl

        current_capital = capital_base + realized_total

        return {
            "capitalBase": capital_base,
            "currentCapital": current_capital,
            "cashAvailable": current_capital - capital_used,
            "capitalUsed": capital_used,
            "percentCapitalDeployed": (
                capital_used / current_capital * 100 if current_capital > 0 else 0
            ),
            "totalProfit": realized_total,
            "realizedMTD": realized_mtd,
            "realizedYTD": realized_ytd,
            "potentialPremium": potential_premium,
            "avgPLPercent": sum(pl_percents) / len(pl_percents) if pl_percents else 0,
            "winRate": wins / close_count if close_count else 0,
            "avgDaysInTrade": sum(days) / len(days) if days else 0,
        }

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    async def get_snapshot(self, portfolio: Portfolio) -> Dict[str, Any]:
        """Per-portfolio card used by the overview page and account summary."""
        positions = await self._open_positions(portfolio.id)
        closed = await self._closed_trades(portfolio.id)
        sales = await self._stock_sales(portfolio.id)

        now = utcnow()
        today = now.date()
        this_month, this_year = month_start(now), year_start(now)

        csp = [p for p in positions if is_cash_secured_put(p.trade.type)]
        capital_in_use = sum(p.collateral for p in csp)
        biggest = max(csp, key=lambda p: p.collateral, default=None)

        by_ticker: Dict[str, float] = defaultdict(float)
        for p in csp:
            by_ticker[p.trade.ticker] += p.collateral
        total_collateral = sum(by_ticker.values()) or 1
        top_tickers = [
            {"ticker": ticker, "collateral": coll, "pct": coll / total_collateral * 100}
            for ticker, coll in sorted(by_ticker.items(), key=lambda kv: kv[1], reverse=True)[:3]
        ]

        expirations = self._expirations_by_day(positions, today)
        next_day = min(expirations, default=None)
        expiring_soon = sum(
            count for day, count in expirations.items()
            if (day - today).days <= EXPIRING_SOON_DAYS
        )

        open_avg_days = None
        if positions:
            ages = [
                max(0.0, (now - p.trade.created_at).total_seconds() / DAY_SECONDS)
                for p in positions
            ]
            open_avg_days = round(sum(ages) / len(ages), 1)

        realized_all = sum(closed_trade_realized(t) for t in closed)
        realized_mtd = sum(
            closed_trade_realized(t) for t in closed
            if t.closed_at and t.closed_at >= this_month
        )
        realized_ytd = sum(
            closed_trade_realized(t) for t in closed
            if t.closed_at and t.closed_at >= this_year
        )
        for sale in sales:
            realized_all += sale.realized_pnl
            if sale.created_at >= this_month:
                realized_mtd += sale.realized_pnl
            if sale.created_at >= this_year:
                realized_ytd += sale.realized_pnl

        capital_base = portfolio.starting_capital + portfolio.additional_capital
        current_capital = capital_base + realized_all

        return {
            "portfolioId": str(portfolio.id),
            "name": portfolio.name,
            "startingCapital": portfolio.starting_capital,
            "additionalCapital": portfolio.additional_capital,
            "capitalBase": capital_base,
            "currentCapital": current_capital,
            "totalProfitAll": realized_all,
            "openCount": len(positions),
            "capitalInUse": capital_in_use,
            "cashAvailable": current_capital - capital_in_use,
            "biggest": {
                "ticker": biggest.trade.ticker,
                "strikePrice": biggest.trade.strike_price,
                "contracts": biggest.contracts,
                "collateral": biggest.collateral,
                "expirationDate": biggest.trade.expiration_date.isoformat(),
            } if biggest else None,
            "topTickers": top_tickers,
            "nextExpiration": {
                "date": next_day.isoformat(),
                "contracts": expirations[next_day],
            } if next_day else None,
            "expiringSoonCount": expiring_soon,
            "openAvgDays": open_avg_days,
            "realizedMTD": realized_mtd,
            "realizedYTD": realized_ytd,
        }

    async def get_account_summary(self, user_id: UUID) -> Dict[str, Any]:
        result = await self.db.execute(
            select(Portfolio)
            .where(Portfolio.user_id == user_id)
            .order_by(Portfolio.created_at)
        )
        portfolios = result.scalars().all()

        totals = {
            "portfolioCount": 0,
            "capitalBase": 0.0,
            "currentCapital": 0.0,
            "capitalInUse": 0.0,
            "cashAvailable": 0.0,
            "realizedMTD": 0.0,
            "realizedYTD": 0.0,
        }
        per_portfolio: Dict[str, Dict[str, Any]] = {}
        all_positions: List[OpenPosition] = []

        for portfolio in portfolios:
            snap = await self.get_snapshot(portfolio)
            per_portfolio[snap["portfolioId"]] = snap
            all_positions.extend(await self._open_positions(portfolio.id))

            totals["portfolioCount"] += 1
            for key in ("capitalBase", "currentCapital", "capitalInUse",
                        "cashAvailable", "realizedMTD", "realizedYTD"):
                totals[key] += snap[key]

        totals["percentUsed"] = (
            totals["capitalInUse"] / totals["currentCapital"] * 100
            if totals["currentCapital"] > 0 else 0
        )

        return {
            "perPortfolio": per_portfolio,
            "totals": totals,
            "nextExpiration": self._global_next_expiration(all_positions, utcnow().date()),
            "topTickers": self._global_top_tickers(per_portfolio.values()),
        }

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _expirations_by_day(positions: Iterable[OpenPosition], today: date) -> Dict[date, int]:
        """Open contracts per expiration day, today or later only."""
        by_day: Dict[date, int] = defaultdict(int)
        for p in positions:
            if p.contracts <= 0:
                continue
            day = p.trade.expiration_date.date()
            if day < today:
                continue
            by_day[day] += p.contracts
        return dict(by_day)

    def _global_next_expiration(
        self, positions: List[OpenPosition], today: date
    ) -> Optional[Dict[str, Any]]:
        expirations = self._expirations_by_day(positions, today)
        if not expirations:
            return None
        day = min(expirations)

        by_ticker: Dict[str, int] = defaultdict(int)
        for p in positions:
            if p.contracts > 0 and p.trade.expiration_date.date() == day:
                by_ticker[p.trade.ticker] += p.contracts
        top_ticker = max(by_ticker.items(), key=lambda kv: kv[1])[0]

        return {"date": day.isoformat(), "contracts": expirations[day], "topTicker": top_ticker}

    @staticmethod
    def _global_top_tickers(snapshots: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        agg: Dict[str, float] = defaultdict(float)
        for snap in snapshots:
            for t in snap["topTickers"]:
                agg[t["ticker"]] += t["collateral"]
        return [
            {"ticker": ticker, "collateral": coll}
            for ticker, coll in sorted(agg.items(), key=lambda kv: kv[1], reverse=True)[:5]
        ]

    async def _open_positions(self, portfolio_id: UUID) -> List[OpenPosition]:
        result = await self.db.execute(
            select(Trade)
            .where(
                Trade.portfolio_id == portfolio_id,
                Trade.status == TradeStatus.OPEN.value,
            )
            .order_by(Trade.created_at.desc())
        )
        trades = result.scalars().all()
        if not trades:
            return []

        result = await self.db.execute(
            select(TradeAdjustment).where(
                TradeAdjustment.trade_id.in_([t.id for t in trades])
            )
        )
        adjustments: Dict[UUID, List[TradeAdjustment]] = defaultdict(list)
        for adj in result.scalars().all():
            adjustments[adj.trade_id].append(adj)

        return [
            OpenPosition(
                trade=t,
                contracts=calculate_adjusted_contracts(t, adjustments[t.id]),
                avg_price=calculate_average_contract_price(t, adjustments[t.id]),
            )
            for t in trades
        ]

    async def _closed_trades(self, portfolio_id: UUID) -> List[Trade]:
        result = await self.db.execute(
            select(Trade)
            .where(
                Trade.portfolio_id == portfolio_id,
                Trade.status == TradeStatus.CLOSED.value,
            )
            .order_by(Trade.closed_at.desc())
        )
        return list(result.scalars().all())

    async def _open_stock_lots(self, portfolio_id: UUID) -> List[StockLot]:
        result = await self.db.execute(
            select(StockLot).where(
                StockLot.portfolio_id == portfolio_id,
                StockLot.status == StockLotStatus.OPEN.value,
            )
        )
        return list(result.scalars().all())

    async def _stock_sales(self, portfolio_id: UUID) -> List[StockLotSale]:
        result = await self.db.execute(
            select(StockLotSale)
            .join(StockLot, StockLotSale.stock_lot_id == StockLot.id)
            .where(StockLot.portfolio_id == portfolio_id)
        )
        return list(result.scalars().all())
