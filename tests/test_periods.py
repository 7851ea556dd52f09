from datetime import date, datetime, timezone

from periods import (
    day_bucket,
    iso_week_key,
    month_bucket,
    month_weeks,
    reference_moment,
    sunday_week_bucket,
    to_local_naive,
    week_days,
)


def test_day_bucket_is_half_open_midnight_to_midnight() -> None:
    bucket = day_bucket(datetime(2025, 6, 17, 15, 30))
    assert bucket.start == datetime(2025, 6, 17)
    assert bucket.end == datetime(2025, 6, 18)
    assert bucket.contains(datetime(2025, 6, 17, 23, 59, 59, 999999))
    assert not bucket.contains(datetime(2025, 6, 18))


def test_week_window_starts_on_sunday() -> None:
    tuesday = sunday_week_bucket(datetime(2025, 6, 17, 9, 0))
    assert tuesday.start == datetime(2025, 6, 15)
    assert tuesday.end == datetime(2025, 6, 22)

    sunday = sunday_week_bucket(datetime(2025, 6, 22, 18, 0))
    assert sunday.start == datetime(2025, 6, 22)

    saturday = sunday_week_bucket(datetime(2025, 6, 21, 23, 0))
    assert saturday.start == datetime(2025, 6, 15)


def test_iso_week_key_uses_iso_year_at_boundaries() -> None:
    assert iso_week_key(datetime(2025, 6, 17)) == (25, 2025)
    assert iso_week_key(datetime(2025, 6, 22)) == (25, 2025)
    assert iso_week_key(datetime(2025, 6, 23)) == (26, 2025)
    assert iso_week_key(datetime(2024, 12, 30)) == (1, 2025)
    assert iso_week_key(datetime(2021, 1, 1)) == (53, 2020)


def test_month_bucket_ends_at_last_millisecond() -> None:
    bucket = month_bucket(datetime(2024, 2, 10, 8, 0))
    assert bucket.start == datetime(2024, 2, 1)
    assert bucket.end == datetime(2024, 2, 29, 23, 59, 59, 999000)
    assert bucket.contains(datetime(2024, 2, 29, 23, 59, 59, 999000))
    assert not bucket.contains(datetime(2024, 3, 1))

    december = month_bucket(datetime(2025, 12, 31, 12, 0))
    assert december.end == datetime(2025, 12, 31, 23, 59, 59, 999000)


def test_week_days_and_month_chunks() -> None:
    days = week_days(sunday_week_bucket(datetime(2025, 6, 18)))
    assert [d.start.day for d in days] == [15, 16, 17, 18, 19, 20, 21]

    chunks = month_weeks(month_bucket(datetime(2025, 6, 5)))
    assert [c.start.day for c in chunks] == [1, 8, 15, 22, 29]
    assert chunks[0].end == datetime(2025, 6, 7, 23, 59, 59, 999000)
    assert chunks[-1].end == datetime(2025, 7, 5, 23, 59, 59, 999000)


def test_aware_datetimes_are_converted_to_local_time() -> None:
    moment = datetime(2025, 6, 17, 22, 30, tzinfo=timezone.utc)
    assert to_local_naive(moment, "Europe/Paris") == datetime(2025, 6, 18, 0, 30)
    naive = datetime(2025, 6, 17, 22, 30)
    assert to_local_naive(naive, "Europe/Paris") is naive


def test_reference_moment_for_explicit_date() -> None:
    assert reference_moment(date(2025, 6, 17), "Europe/Paris") == datetime(2025, 6, 17)
