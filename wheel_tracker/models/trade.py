"""
Trading models: Trade, TradeAdjustment
Maps to: trades, trade_adjustments tables
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from enum import Enum

from pydantic import field_validator

from wheel_tracker.models.common import CamelModel, to_naive_utc, utcnow


# ============================================================================
# ENUMS
# ============================================================================

class TradeType(str, Enum):
    CASH_SECURED_PUT = "CashSecuredPut"
    COVERED_CALL = "CoveredCall"
    PUT = "Put"
    CALL = "Call"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


TRADE_TYPE_ALIASES = {
    "cashsecuredput": TradeType.CASH_SECURED_PUT,
    "cash secured put": TradeType.CASH_SECURED_PUT,
    "csp": TradeType.CASH_SECURED_PUT,
    "coveredcall": TradeType.COVERED_CALL,
    "covered call": TradeType.COVERED_CALL,
    "cc": TradeType.COVERED_CALL,
    "put": TradeType.PUT,
    "call": TradeType.CALL,
}


# ============================================================================
# TRADE MODEL
# ============================================================================

class Trade(SQLModel, table=True):
    """
    One option position. contracts/contract_price hold the opening
    position; later adds and reductions live in trade_adjustments.
    """
    __tablename__ = "trades"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    portfolio_id: UUID = Field(foreign_key="portfolios.id", index=True, ondelete="CASCADE")
    stock_lot_id: Optional[UUID] = Field(default=None, foreign_key="stock_lots.id")

    ticker: str = Field(index=True, max_length=20)
    strike_price: float
    entry_price: Optional[float] = None  # underlying price at entry
    expiration_date: datetime
    type: str = Field(max_length=30)

    contracts: int
    contract_price: float  # premium per share

    status: str = Field(default=TradeStatus.OPEN.value, index=True, max_length=10)
    contracts_closed: Optional[int] = None
    closing_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    premium_captured: Optional[float] = None  # realized $
    percent_pl: Optional[float] = None

    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# TRADE ADJUSTMENT MODEL
# ============================================================================

class TradeAdjustment(SQLModel, table=True):
    """Signed change to a trade's position. Never updated after insert."""
    __tablename__ = "trade_adjustments"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    trade_id: UUID = Field(foreign_key="trades.id", index=True, ondelete="CASCADE")
    contracts: int
    price: float
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class TradeCreate(CamelModel):
    """Trade creation request"""
    portfolio_id: UUID
    ticker: str = Field(min_length=1, max_length=20)
    strike_price: float = Field(gt=0)
    expiration_date: datetime
    type: TradeType
    contracts: int = Field(gt=0)
    contract_price: float = Field(gt=0)
    entry_price: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    stock_lot_id: Optional[UUID] = None

    @field_validator("ticker")
    @classmethod
    def upper_ticker(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Ticker is required")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return TRADE_TYPE_ALIASES.get(v.strip().lower(), v)
        return v

    @field_validator("expiration_date")
    @classmethod
    def naive_expiration(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class TradeUpdate(CamelModel):
    """Trade edit request"""
    expiration_date: datetime
    entry_price: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("expiration_date")
    @classmethod
    def naive_expiration(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class AddToTrade(CamelModel):
    added_contracts: int = Field(gt=0)
    added_contract_price: float = Field(gt=0)


class CloseTrade(CamelModel):
    contracts_to_close: int = Field(gt=0)
    closing_price: float = Field(ge=0)
    full_close: bool = False
    fees_per_contract: float = Field(default=0, ge=0)
    flat_fees: float = Field(default=0, ge=0)


class AdjustmentCreate(CamelModel):
    contracts: int
    price: float = Field(gt=0)
    notes: Optional[str] = None

    @field_validator("contracts")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Contracts must be a non-zero number")
        return v


class AdjustmentResponse(CamelModel):
    id: UUID
    trade_id: UUID
    contracts: int
    price: float
    notes: Optional[str] = None
    created_at: datetime


class TradeResponse(CamelModel):
    id: UUID
    portfolio_id: UUID
    stock_lot_id: Optional[UUID] = None
    ticker: str
    strike_price: float
    entry_price: Optional[float] = None
    expiration_date: datetime
    type: str
    contracts: int
    contract_price: float
    status: str
    contracts_closed: Optional[int] = None
    closing_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    premium_captured: Optional[float] = None
    percent_pl: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TradeDetailResponse(TradeResponse):
    adjustments: list[AdjustmentResponse] = Field(default_factory=list)
    adjusted_contracts: int
    average_contract_price: float


class CloseTradeResponse(CamelModel):
    realized_now: float
    fees_total: float
    remaining: Optional[int] = None
