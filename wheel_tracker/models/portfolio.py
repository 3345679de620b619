"""
Portfolio models: Portfolio
Maps to: portfolios table
"""

from sqlmodel import SQLModel, Field
from pydantic import field_validator
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from wheel_tracker.models.common import CamelModel, utcnow


# ============================================================================
# PORTFOLIO MODEL
# ============================================================================

class Portfolio(SQLModel, table=True):
    """
    User-owned capital pool that trades are recorded against.

    current_capital = starting_capital + additional_capital + realized P/L,
    maintained by services.trade_executor.
    """
    __tablename__ = "portfolios"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    name: str = Field(max_length=200)

    starting_capital: float = Field(default=0)
    additional_capital: float = Field(default=0)
    current_capital: float = Field(default=0)

    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class PortfolioCreate(CamelModel):
    """Portfolio creation request"""
    name: str = Field(min_length=1, max_length=200)
    starting_capital: float = Field(ge=0)
    additional_capital: float = Field(default=0, ge=0)
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class PortfolioUpdate(CamelModel):
    """Portfolio update request; omitted fields are left alone"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    starting_capital: Optional[float] = Field(default=None, ge=0)
    additional_capital: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class PortfolioResponse(CamelModel):
    id: UUID
    user_id: UUID
    name: str
    starting_capital: float
    additional_capital: float
    current_capital: float
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BulkSnapshotRequest(CamelModel):
    ids: list[str] = Field(default_factory=list)
