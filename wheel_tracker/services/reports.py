"""
Closed-position reports: closed trade legs and closed share lots within a
date range, enriched with premium figures, as JSON rows or CSV.
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Sequence
from uuid import UUID
import csv
import io
import math

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.models.portfolio import Portfolio
from wheel_tracker.models.stock import StockLot, StockLotSale, StockLotStatus
from wheel_tracker.models.trade import Trade, TradeStatus
from wheel_tracker.services.trade_metrics import SHARES_PER_CONTRACT

CSV_HEADERS = [
    "createdAt",
    "closedAt",
    "ticker",
    "strikePrice",
    "entryPrice",
    "type",
    "expirationDate",
    "contractsInitial",
    "sharesClosed",
    "premiumCaptured",
    "percentPL",
    "notes",
]

STOCK_LOT_TYPE = "STOCK_LOT"


def _holding_days(opened: datetime, closed: datetime | None) -> int:
    if closed is None:
        return 0
    return max(0, math.ceil((closed - opened).total_seconds() / 86_400))


def _trade_row(t: Trade) -> Dict[str, Any]:
    contracts_initial = t.contracts_closed if t.contracts_closed is not None else t.contracts
    premium_received = t.contract_price * SHARES_PER_CONTRACT * contracts_initial
    premium_paid_to_close = (t.closing_price or 0) * SHARES_PER_CONTRACT * contracts_initial
    computed = max(0.0, premium_received - premium_paid_to_close)
    captured = t.premium_captured if t.premium_captured is not None else computed

    return {
        "id": str(t.id),
        "portfolioId": str(t.portfolio_id),
        "ticker": t.ticker,
        "type": t.type,
        "strikePrice": t.strike_price,
        "entryPrice": t.entry_price,
        "expirationDate": t.expiration_date.isoformat(),
        "createdAt": t.created_at.isoformat(),
        "closedAt": t.closed_at.isoformat() if t.closed_at else None,
        "contractPrice": t.contract_price,
        "contractsInitial": contracts_initial,
        "contractsOpen": 0,
        "contractsClosed": contracts_initial,
        "sharesClosed": contracts_initial * SHARES_PER_CONTRACT,
        "closingPrice": t.closing_price,
        "premiumReceived": premium_received,
        "premiumPaidToClose": premium_paid_to_close,
        "premiumCapturedComputed": computed,
        "premiumCaptured": captured,
        "pctPLOnPremium": captured / premium_received if premium_received > 0 else 0,
        "percentPL": t.percent_pl,
        "holdingDays": _holding_days(t.created_at, t.closed_at),
        "notes": t.notes,
    }


def _stock_lot_row(lot: StockLot, shares_closed: int) -> Dict[str, Any]:
    return {
        "id": str(lot.id),
        "portfolioId": str(lot.portfolio_id),
        "ticker": lot.ticker,
        "type": STOCK_LOT_TYPE,
        "strikePrice": 0,
        "entryPrice": lot.avg_cost,
        "stockExitPrice": lot.close_price or 0,
        "expirationDate": lot.closed_at.isoformat(),
        "createdAt": lot.opened_at.isoformat(),
        "closedAt": lot.closed_at.isoformat(),
        "contractPrice": 0,
        "contractsInitial": 0,
        "contractsOpen": 0,
        "contractsClosed": 0,
        "sharesClosed": shares_closed,
        "closingPrice": None,
        "premiumReceived": 0,
        "premiumPaidToClose": 0,
        "premiumCapturedComputed": 0,
        "premiumCaptured": 0,
        "pctPLOnPremium": 0,
        "percentPL": None,
        "realizedPnl": lot.realized_pnl,
        "holdingDays": _holding_days(lot.opened_at, lot.closed_at),
        "notes": lot.notes,
    }


async def owned_portfolio_ids(db: AsyncSession, user_id: UUID) -> List[UUID]:
    result = await db.execute(select(Portfolio.id).where(Portfolio.user_id == user_id))
    return list(result.scalars().all())


async def get_closed_rows(
    db: AsyncSession,
    portfolio_ids: Sequence[UUID],
    start: datetime,
    end: datetime,
) -> List[Dict[str, Any]]:
    """Closed trades in [start, end) and lots closed in [start, end], oldest close first."""
    if not portfolio_ids:
        return []

    result = await db.execute(
        select(Trade).where(
            Trade.portfolio_id.in_(portfolio_ids),
            Trade.status == TradeStatus.CLOSED.value,
            Trade.closed_at >= start,
            Trade.closed_at < end,
        )
    )
    rows = [_trade_row(t) for t in result.scalars().all()]

    result = await db.execute(
        select(StockLot).where(
            StockLot.portfolio_id.in_(portfolio_ids),
            StockLot.status == StockLotStatus.CLOSED.value,
            StockLot.closed_at >= start,
            StockLot.closed_at <= end,
        )
    )
    lots = result.scalars().all()
    if lots:
        result = await db.execute(
            select(StockLotSale).where(StockLotSale.stock_lot_id.in_([lot.id for lot in lots]))
        )
        sold: Dict[UUID, int] = defaultdict(int)
        for sale in result.scalars().all():
            sold[sale.stock_lot_id] += sale.shares_sold
        rows.extend(_stock_lot_row(lot, sold[lot.id]) for lot in lots)

    rows.sort(key=lambda r: r["closedAt"] or r["createdAt"])
    return rows


def rows_to_csv(rows: List[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for r in rows:
        writer.writerow([
            r["createdAt"],
            r["closedAt"] or "",
            r["ticker"],
            r["strikePrice"],
            "" if r["entryPrice"] is None else r["entryPrice"],
            r["type"],
            r["expirationDate"],
            r["contractsInitial"],
            r["sharesClosed"],
            r["premiumCaptured"],
            r["percentPL"] if r["percentPL"] is not None else r["pctPLOnPremium"],
            r["notes"] or "",
        ])
    return buffer.getvalue()
