from datetime import datetime, timezone
from typing import Callable, Optional, Union

from fastapi import Request

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[Union[datetime, str]]) -> Optional[datetime]:
    """
    Normalize a stored or submitted timestamp to an aware UTC datetime.
    Naive values are taken to already be UTC (SQLite drops the offset).
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[Union[datetime, str]]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def get_clock(request: Request) -> Clock:
    return request.app.state.clock
