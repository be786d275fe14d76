"""Business-calendar helpers.

Expiry arithmetic is done on calendar dates in the business timezone, not on
UTC timestamps, so a document expiring "tomorrow" flips at local midnight.
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from .config import settings


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def today() -> date:
    return datetime.now(business_tz()).date()


def utc_now() -> datetime:
    return datetime.now(UTC)


def day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC interval covering a business-calendar day."""
    tz = business_tz()
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(UTC)
    return start, end
