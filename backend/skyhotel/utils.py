from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from skyhotel.config import settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips drop tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def business_date(moment: datetime | None = None) -> date:
    """Calendar date of `moment` (default: now) in the business timezone."""
    moment = ensure_utc(moment) or now_utc()
    return moment.astimezone(business_tz()).date()
