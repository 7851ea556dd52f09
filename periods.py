"""Bucket arithmetic for the day, week and month summaries.

All datetimes handled here are naive and expressed in the store's local
timezone. Week buckets use two different notions of "week": the stored key is
the ISO-8601 week number and ISO year, while the operations that belong to a
week are selected with a Sunday-start window. Both are kept as they are.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


MONTH_END_TIME = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class Bucket:
    """Half-open ``[start, end)`` unless ``inclusive_end`` is set."""

    start: datetime
    end: datetime
    inclusive_end: bool = False

    def contains(self, moment: datetime) -> bool:
        if moment < self.start:
            return False
        if self.inclusive_end:
            return moment <= self.end
        return moment < self.end


def local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def to_local_naive(moment: datetime, timezone: str) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)


def day_bucket(moment: datetime) -> Bucket:
    start = datetime.combine(moment.date(), time.min)
    return Bucket(start, start + timedelta(days=1))


def sunday_week_bucket(moment: datetime) -> Bucket:
    # Sunday-based weekday: Sunday=0 ... Saturday=6
    days_since_sunday = (moment.weekday() + 1) % 7
    start = datetime.combine(moment.date() - timedelta(days=days_since_sunday), time.min)
    return Bucket(start, start + timedelta(days=7))


def iso_week_key(moment: datetime) -> tuple[int, int]:
    """Return ``(iso_week, iso_year)``."""
    iso_year, iso_week, _ = moment.isocalendar()
    return iso_week, iso_year


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_bucket(moment: datetime) -> Bucket:
    start = datetime(moment.year, moment.month, 1)
    end = datetime.combine(month_end(moment.year, moment.month), MONTH_END_TIME)
    return Bucket(start, end, inclusive_end=True)


def week_days(week: Bucket) -> list[Bucket]:
    return [
        Bucket(week.start + timedelta(days=i), week.start + timedelta(days=i + 1))
        for i in range(7)
    ]


def month_weeks(month: Bucket) -> list[Bucket]:
    """Consecutive 7-day chunks starting on the 1st of the month.

    The last chunk may run past the end of the month.
    """
    chunks: list[Bucket] = []
    chunk_start = month.start
    while chunk_start <= month.end:
        chunk_end = datetime.combine(
            (chunk_start + timedelta(days=6)).date(), MONTH_END_TIME
        )
        chunks.append(Bucket(chunk_start, chunk_end, inclusive_end=True))
        chunk_start = chunk_start + timedelta(days=7)
    return chunks


def reference_moment(on: Optional[date], timezone: str) -> datetime:
    if on is None:
        return local_now(timezone)
    return datetime.combine(on, time.min)
