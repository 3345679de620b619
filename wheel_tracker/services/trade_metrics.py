"""
Trade Metrics
Pure cost-basis and capital arithmetic shared by the trade executor,
portfolio calculator and reports. No database access.

Option contracts cover 100 shares; prices are per share.
"""

from typing import Any, Iterable, Optional, Tuple

SHARES_PER_CONTRACT = 100


def _num(value: Any) -> float:
    return float(value) if value is not None else 0.0


# ============================================================================
# COST BASIS
# ============================================================================

def calculate_adjusted_contracts(trade: Any, adjustments: Optional[Iterable[Any]] = None) -> int:
    """Base contracts plus every adjustment's (signed) contracts."""
    base = trade.contracts or 0
    return base + sum(a.contracts or 0 for a in (adjustments or ()))


def calculate_average_contract_price(trade: Any, adjustments: Optional[Iterable[Any]] = None) -> float:
    """
    Contract-weighted average premium across the opening position and all
    adjustments. Returns 0.0 when the contracts net out to zero.
    """
    adjustments = list(adjustments or ())
    base_contracts = trade.contracts or 0
    base_total = _num(trade.contract_price) * base_contracts

    adjustments_total = sum(_num(a.price) * (a.contracts or 0) for a in adjustments)
    adjustments_contracts = sum(a.contracts or 0 for a in adjustments)

    total_contracts = base_contracts + adjustments_contracts
    if total_contracts == 0:
        return 0.0

    return (base_total + adjustments_total) / total_contracts


# ============================================================================
# OPTION TYPE CLASSIFICATION
# ============================================================================

def _type_key(trade_type: Optional[str]) -> str:
    return (trade_type or "").strip().lower()


def is_cash_secured_put(trade_type: Optional[str]) -> bool:
    return _type_key(trade_type) in ("cash secured put", "cashsecuredput", "csp")


def is_covered_call(trade_type: Optional[str]) -> bool:
    return _type_key(trade_type) in ("covered call", "coveredcall", "cc")


def is_long_put(trade_type: Optional[str]) -> bool:
    return _type_key(trade_type) == "put"


def is_long_call(trade_type: Optional[str]) -> bool:
    return _type_key(trade_type) == "call"


def is_put(trade_type: Optional[str]) -> bool:
    return "put" in _type_key(trade_type) or _type_key(trade_type) == "csp"


# ============================================================================
# CAPITAL
# ============================================================================

def locked_collateral(strike_price: Optional[float], contracts: Optional[float]) -> float:
    return abs(_num(strike_price)) * SHARES_PER_CONTRACT * abs(_num(contracts))


def premium_notional(contract_price: Optional[float], contracts: Optional[float]) -> float:
    return abs(_num(contract_price)) * SHARES_PER_CONTRACT * abs(_num(contracts))


def capital_used_for_trade(
    trade_type: Optional[str],
    strike_price: Optional[float],
    contracts: Optional[float],
    contract_price: Optional[float],
) -> float:
    """Cash tied up by an open position."""
    contracts = max(0.0, _num(contracts))
    strike = max(0.0, _num(strike_price))
    price = max(0.0, _num(contract_price))

    if is_cash_secured_put(trade_type):
        return strike * SHARES_PER_CONTRACT * contracts
    # Shares already back a covered call
    if is_covered_call(trade_type):
        return 0.0
    if is_long_put(trade_type) or is_long_call(trade_type):
        return price * SHARES_PER_CONTRACT * contracts
    return 0.0


# ============================================================================
# REALIZED P/L
# ============================================================================

def realized_pnl(
    contracts: Optional[float],
    contract_price: Optional[float],
    closing_price: Optional[float],
    premium_captured: Optional[float],
) -> float:
    """Stored premium_captured wins; otherwise (open - close) x 100 x contracts."""
    if premium_captured is not None:
        return float(premium_captured)
    return (_num(contract_price) - _num(closing_price)) * SHARES_PER_CONTRACT * _num(contracts)


def close_leg_pnl(
    avg_price: float,
    closing_price: float,
    contracts: int,
    fees_per_contract: float = 0.0,
    flat_fees: float = 0.0,
) -> Tuple[float, float, float]:
    """
    P/L of buying back `contracts` at `closing_price` against the average
    credit. Returns (realized, fees_total, percent_pl).
    """
    gross = (avg_price - closing_price) * contracts * SHARES_PER_CONTRACT
    fees_total = fees_per_contract * contracts + flat_fees
    percent_pl = ((avg_price - closing_price) / avg_price) * 100 if avg_price > 0 else 0.0
    return gross - fees_total, fees_total, percent_pl
