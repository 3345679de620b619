"""
Shared pieces for request/response models
"""

from datetime import datetime, timezone

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Keys the client expects that plain camelCase conversion would get wrong
_ALIAS_OVERRIDES = {
    "percent_pl": "percentPL",
}


def to_json_key(name: str) -> str:
    return _ALIAS_OVERRIDES.get(name) or to_camel(name)


class CamelModel(SQLModel):
    """Request/response body with camelCase JSON keys.

    snake_case names are accepted on input as well.
    """
    model_config = ConfigDict(
        alias_generator=to_json_key,
        populate_by_name=True,
        from_attributes=True,
    )
