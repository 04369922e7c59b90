"""Attestation period parsing (``YYYY-MM`` months and ``YYYY-Qn`` quarters)."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass

_MONTH_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})$")
_QUARTER_RE = re.compile(r"^(?P<year>\d{4})-Q(?P<quarter>[1-4])$")


class InvalidPeriodError(ValueError):
    """Raised for a period string that is neither ``YYYY-MM`` nor ``YYYY-Qn``."""


@dataclass(frozen=True)
class PeriodRange:
    """Inclusive UTC date range covered by an attestation period."""

    period: str
    start_iso: str
    end_iso: str
    months: tuple[str, ...]


def _month_bounds(year: int, month: int) -> tuple[str, str]:
    last_day = calendar.monthrange(year, month)[1]
    return (
        f"{year:04d}-{month:02d}-01T00:00:00Z",
        f"{year:04d}-{month:02d}-{last_day:02d}T23:59:59Z",
    )


def parse_period(period: str) -> PeriodRange:
    """Resolve a period string into an inclusive ISO-8601 range.

    Quarter ``q`` covers months ``3q-2`` through ``3q``.

    Raises
    ------
    InvalidPeriodError
        If ``period`` is malformed or names a month outside 01-12.
    """
    value = (period or "").strip()

    quarter_match = _QUARTER_RE.match(value)
    if quarter_match:
        year = int(quarter_match["year"])
        quarter = int(quarter_match["quarter"])
        first_month = 3 * quarter - 2
        last_month = 3 * quarter
        start_iso, _ = _month_bounds(year, first_month)
        _, end_iso = _month_bounds(year, last_month)
        months = tuple(f"{year:04d}-{m:02d}" for m in range(first_month, last_month + 1))
        return PeriodRange(period=value, start_iso=start_iso, end_iso=end_iso, months=months)

    month_match = _MONTH_RE.match(value)
    if month_match:
        year = int(month_match["year"])
        month = int(month_match["month"])
        if not 1 <= month <= 12:
            raise InvalidPeriodError(f"Invalid month in period: {period!r}")
        start_iso, end_iso = _month_bounds(year, month)
        return PeriodRange(
            period=value,
            start_iso=start_iso,
            end_iso=end_iso,
            months=(f"{year:04d}-{month:02d}",),
        )

    raise InvalidPeriodError(f"Unsupported period format: {period!r} (expected YYYY-MM or YYYY-Qn)")
