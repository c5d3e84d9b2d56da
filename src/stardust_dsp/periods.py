"""Reporting period resolution for royalty and usage reports."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date

from stardust_dsp.errors import InvalidPeriodError

_RANGE = re.compile(r"^(\d{4}-\d{2}-\d{2})_(\d{4}-\d{2}-\d{2})$")
_MONTH = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$", re.IGNORECASE)
_YEAR = re.compile(r"^(\d{4})$")


@dataclass(frozen=True, slots=True)
class ReportingPeriod:
    """Inclusive date range named by a period specifier."""

    label: str
    start: date
    end: date

    @property
    def start_date(self) -> str:
        return self.start.isoformat()

    @property
    def end_date(self) -> str:
        return self.end.isoformat()

    def contains(self, day: str) -> bool:
        return self.start_date <= day <= self.end_date


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def resolve_period(period: str) -> ReportingPeriod:
    """Resolve ``start_end``, ``YYYY-MM``, ``YYYY-Qn`` or ``YYYY`` to a date range."""

    text = (period or "").strip()
    try:
        if match := _RANGE.match(text):
            start, end = (date.fromisoformat(part) for part in match.groups())
            if end < start:
                raise InvalidPeriodError(f"Invalid period range: {period} ends before it starts")
            return ReportingPeriod(text, start, end)
        if match := _MONTH.match(text):
            year, month = int(match.group(1)), int(match.group(2))
            return ReportingPeriod(text, date(year, month, 1), _month_end(year, month))
        if match := _QUARTER.match(text):
            year, quarter = int(match.group(1)), int(match.group(2))
            first_month = (quarter - 1) * 3 + 1
            return ReportingPeriod(text.upper(), date(year, first_month, 1), _month_end(year, first_month + 2))
        if match := _YEAR.match(text):
            year = int(match.group(1))
            return ReportingPeriod(text, date(year, 1, 1), date(year, 12, 31))
    except ValueError as exc:
        if isinstance(exc, InvalidPeriodError):
            raise
        raise InvalidPeriodError(f"Invalid period format: {period}") from exc
    raise InvalidPeriodError(f"Invalid period format: {period}")


def previous_month(today: date) -> ReportingPeriod:
    """Calendar month before ``today``."""

    year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
    return resolve_period(f"{year:04d}-{month:02d}")
