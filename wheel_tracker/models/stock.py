"""
Share lot models: StockLot, StockLotSale
Maps to: stock_lots, stock_lot_sales tables
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from enum import Enum

from pydantic import field_validator

from wheel_tracker.models.common import CamelModel, utcnow


class StockLotStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# ============================================================================
# STOCK LOT MODEL
# ============================================================================

class StockLot(SQLModel, table=True):
    """Shares held in a portfolio, typically from an assigned put"""
    __tablename__ = "stock_lots"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    portfolio_id: UUID = Field(foreign_key="portfolios.id", index=True, ondelete="CASCADE")
    ticker: str = Field(index=True, max_length=20)
    shares: int
    avg_cost: float
    status: str = Field(default=StockLotStatus.OPEN.value, max_length=10)

    opened_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    close_price: Optional[float] = None
    realized_pnl: Optional[float] = None

    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# STOCK LOT SALE MODEL
# ============================================================================

class StockLotSale(SQLModel, table=True):
    """One (partial) sale out of a stock lot"""
    __tablename__ = "stock_lot_sales"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    stock_lot_id: UUID = Field(foreign_key="stock_lots.id", index=True, ondelete="CASCADE")
    shares_sold: int
    sale_price: float
    fees: Optional[float] = None
    realized_pnl: float
    notes: Optional[str] = None
    source: str = Field(default="manual", max_length=20)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StockLotCreate(CamelModel):
    portfolio_id: UUID
    ticker: str = Field(min_length=1, max_length=20)
    shares: int = Field(gt=0)
    avg_cost: float = Field(gt=0)
    notes: Optional[str] = None

    @field_validator("ticker")
    @classmethod
    def upper_ticker(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Ticker is required")
        return v


class SellShares(CamelModel):
    shares_sold: int = Field(gt=0)
    sale_price: float = Field(gt=0)
    fees: float = Field(default=0, ge=0)
    notes: Optional[str] = None


class StockLotResponse(CamelModel):
    id: UUID
    portfolio_id: UUID
    ticker: str
    shares: int
    avg_cost: float
    status: str
    opened_at: datetime
    closed_at: Optional[datetime] = None
    close_price: Optional[float] = None
    realized_pnl: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime


class StockLotSaleResponse(CamelModel):
    id: UUID
    stock_lot_id: UUID
    shares_sold: int
    sale_price: float
    fees: Optional[float] = None
    realized_pnl: float
    notes: Optional[str] = None
    source: str
    created_at: datetime
