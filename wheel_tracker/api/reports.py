"""
Reports API routes
Closed trades and share lots over a date range, as JSON or CSV.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.database import get_session
from wheel_tracker.core.dependencies import get_current_user
from wheel_tracker.models.common import to_naive_utc, utcnow
from wheel_tracker.models.user import User
from wheel_tracker.services.reports import get_closed_rows, owned_portfolio_ids, rows_to_csv

router = APIRouter()

DEFAULT_RANGE_DAYS = 30


def parse_date_or_default(value: Optional[str], default: datetime) -> datetime:
    """ISO date or datetime as naive UTC; unparseable input gives the default."""
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return default
    return to_naive_utc(parsed)


@router.get("/closed")
async def closed_report(
    portfolio_id: Optional[str] = Query(None, alias="portfolioId"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    fmt: str = Query("json", alias="format"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Closed positions between start and end (default: the last 30 days).

    portfolioId=all (or omitted) covers every portfolio of the caller. A
    portfolio the caller does not own contributes no rows.
    """
    now = utcnow()
    range_start = parse_date_or_default(start, now - timedelta(days=DEFAULT_RANGE_DAYS))
    range_end = parse_date_or_default(end, now)

    owned = await owned_portfolio_ids(session, current_user.id)
    if portfolio_id and portfolio_id != "all":
        owned = [pid for pid in owned if str(pid) == portfolio_id]

    rows = await get_closed_rows(session, owned, range_start, range_end)

    if fmt.lower() == "csv":
        filename = f"closed-trades_{range_start.date().isoformat()}_{range_end.date().isoformat()}.csv"
        return Response(
            content=rows_to_csv(rows),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return {
        "range": {"start": range_start.isoformat(), "end": range_end.isoformat()},
        "count": len(rows),
        "rows": rows,
    }
