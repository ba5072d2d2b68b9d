from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime. Naive values (sqlite hands these back) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def timestamp_column(index: bool = False) -> Column:
    # a fresh Column per model field, sqlalchemy does not share them between tables
    return Column(DateTime(timezone=True), nullable=False, index=index)
