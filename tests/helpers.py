from datetime import datetime, timedelta, timezone


def future_date(days: int = 14) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def past_date(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
