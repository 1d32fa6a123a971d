"""Time helpers. Time-sensitive components take a ``clock`` callable so tests can pin time."""

from datetime import datetime, timezone, date
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert an aware datetime to the given IANA timezone (naive values are taken as UTC)"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name))


def local_date(moment: datetime, tz_name: str) -> date:
    return to_local(moment, tz_name).date()


def month_key(moment: datetime, tz_name: str) -> str:
    """Calendar month period key, e.g. '2025-03'"""
    local = to_local(moment, tz_name)
    return f"{local.year:04d}-{local.month:02d}"
