"""Time helpers: UTC now and the fixed-offset business calendar."""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from tour_finance.config import BUSINESS_UTC_OFFSET_HOURS

BUSINESS_TZ = timezone(timedelta(hours=BUSINESS_UTC_OFFSET_HOURS), name="WITA")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def business_date(value: Union[datetime, date]) -> date:
    """
    Calendar day of ``value`` on the business clock (UTC+8).

    Naive datetimes are taken as UTC; plain dates are already calendar days.
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(BUSINESS_TZ).date()


def is_tour_day_or_past(tour_date: Union[datetime, date], now: Optional[datetime] = None) -> bool:
    return business_date(tour_date) <= business_date(now or utcnow())
