from __future__ import annotations

from datetime import date

import pytest

from stardust_dsp.durations import parse_duration
from stardust_dsp.errors import InvalidPeriodError
from stardust_dsp.periods import previous_month, resolve_period


@pytest.mark.parametrize(
    "value, expected",
    [
        ("PT3M25S", 205),
        ("PT1H2M3S", 3723),
        ("pt45s", 45),
        ("PT3M25.6S", 206),
        ("1:02:03", 3723),
        ("03:25", 205),
        ("215", 215),
        ("", 0),
        (None, 0),
    ],
)
def test_parse_duration_formats(value, expected) -> None:
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["three minutes", "PT", "1:2:3:4"])
def test_unknown_duration_is_zero_with_warning(value) -> None:
    warnings: list[str] = []

    assert parse_duration(value, warnings) == 0
    assert warnings == [f"Unknown duration format: {value}"]


@pytest.mark.parametrize(
    "period, start, end",
    [
        ("2026-02", "2026-02-01", "2026-02-28"),
        ("2024-02", "2024-02-01", "2024-02-29"),
        ("2026-Q3", "2026-07-01", "2026-09-30"),
        ("2026-q4", "2026-10-01", "2026-12-31"),
        ("2025", "2025-01-01", "2025-12-31"),
        ("2026-01-05_2026-01-20", "2026-01-05", "2026-01-20"),
    ],
)
def test_resolve_period(period, start, end) -> None:
    resolved = resolve_period(period)

    assert (resolved.start_date, resolved.end_date) == (start, end)


def test_resolved_period_contains_is_inclusive() -> None:
    march = resolve_period("2026-03")

    assert march.contains("2026-03-01")
    assert march.contains("2026-03-31")
    assert not march.contains("2026-04-01")


@pytest.mark.parametrize("period", ["", "March 2026", "2026-13", "2026-Q5", "2026-02-30_2026-03-01", "2026-03-10_2026-03-01"])
def test_invalid_periods_raise(period) -> None:
    with pytest.raises(InvalidPeriodError):
        resolve_period(period)


def test_previous_month_wraps_year() -> None:
    assert previous_month(date(2026, 1, 15)).label == "2025-12"
    assert previous_month(date(2026, 7, 1)).label == "2026-06"
