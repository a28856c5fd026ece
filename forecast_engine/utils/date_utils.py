from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta


def add_months(moment: datetime, n: int) -> datetime:
    """
    Add n calendar months (n may be negative). Day-of-month is clamped to the
    target month's length, e.g. Jan 31 + 1 -> Feb 28/29.
    """
    return moment + relativedelta(months=n)


def month_str(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months from start to end (negative if end precedes start)."""
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months


def to_naive_utc(moment: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stripped; naive ones are taken as UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
