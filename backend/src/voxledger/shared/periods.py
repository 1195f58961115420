"""Billing month and timestamp helpers.

A billing month is a UTC calendar month written as ``YYYY-MM``. Month windows
are inclusive on both ends so they can be passed straight to range queries.
"""

import re
from datetime import UTC, date, datetime, timedelta

from voxledger.shared.exceptions import InvalidBillingMonthError

_MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_billing_month(value: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` string into (year, month)."""
    match = _MONTH_PATTERN.match(value or "")
    if match is None:
        raise InvalidBillingMonthError(value)
    return int(match.group(1)), int(match.group(2))


def billing_month_of(moment: datetime) -> str:
    moment = as_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def current_billing_month(now: datetime | None = None) -> str:
    return billing_month_of(now or utcnow())


def month_start(month: str) -> datetime:
    year, month_number = parse_billing_month(month)
    return datetime(year, month_number, 1, tzinfo=UTC)


def next_month_start(month: str) -> datetime:
    year, month_number = parse_billing_month(month)
    if month_number == 12:
        return datetime(year + 1, 1, 1, tzinfo=UTC)
    return datetime(year, month_number + 1, 1, tzinfo=UTC)


def month_bounds(month: str) -> tuple[datetime, datetime]:
    """Inclusive (start, end) window covering a billing month."""
    return month_start(month), next_month_start(month) - timedelta(microseconds=1)


def previous_billing_month(month: str) -> str:
    return billing_month_of(month_start(month) - timedelta(days=1))


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a timestamp by whole calendar months, clamping the day."""
    moment = as_utc(moment)
    index = moment.year * 12 + (moment.month - 1) + months
    year, month_number = divmod(index, 12)
    month_number += 1
    last_day = (
        date(year + (month_number // 12), month_number % 12 + 1, 1) - timedelta(days=1)
    ).day
    return moment.replace(year=year, month=month_number, day=min(moment.day, last_day))
