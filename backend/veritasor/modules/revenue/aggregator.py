"""
Revenue normalization and per-month aggregation.

Raw records from any payment source are mapped to one canonical shape, summed
per ``YYYY-MM`` month (refunds carry a negative sign and reduce the month), and
serialized into the ordered leaf strings that the Merkle tree commits to.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from veritasor.core.crypto.canonicalization import CURRENT_LEAF_ENCODING, encode_leaf, to_decimal
from veritasor.core.logging import get_logger

logger = get_logger(__name__)

RevenueType = Literal["payment", "refund"]

# Floats stay binary doubles through summation; everything else is Decimal
Amount = Decimal | float

DEFAULT_CURRENCY = "USD"
DEFAULT_SOURCE = "unknown"


class InvalidRevenueRecordError(ValueError):
    """Raised when a raw revenue record cannot be normalized."""


@dataclass(frozen=True)
class RawRevenueRecord:
    """A revenue entry as delivered by a revenue source adapter.

    ``date`` is an ISO-8601 string or a Unix timestamp in seconds.
    """

    amount: Decimal | int | float | str
    date: str | int | float | None = None
    currency: str | None = None
    id: str = ""
    source: str | None = None


@dataclass(frozen=True)
class CanonicalRevenueRecord:
    """A normalized revenue entry; ``date`` is UTC ISO-8601."""

    id: str
    date: str
    month: str
    amount: Amount
    currency: str
    type: RevenueType
    source: str


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _to_iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _parse_date(value: str | int | float | None) -> datetime | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, int | float):
            return datetime.fromtimestamp(value, tz=UTC)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    except (ValueError, OverflowError, OSError):
        return None
    return None


def _coerce(record: RawRevenueRecord | Mapping[str, Any]) -> RawRevenueRecord:
    if isinstance(record, RawRevenueRecord):
        return record
    if "amount" not in record:
        raise InvalidRevenueRecordError(f"Revenue record has no amount: {dict(record)!r}")
    return RawRevenueRecord(
        amount=record["amount"],
        date=record.get("date"),
        currency=record.get("currency"),
        id=str(record.get("id") or ""),
        source=record.get("source"),
    )


def normalize_record(
    record: RawRevenueRecord | Mapping[str, Any],
    *,
    strict: bool = False,
    now: Callable[[], datetime] = _utc_now,
) -> CanonicalRevenueRecord:
    """Normalize one raw revenue record.

    Unparseable or missing dates fall back to ``now()`` unless ``strict`` is
    set, in which case :class:`InvalidRevenueRecordError` is raised.
    """
    raw = _coerce(record)

    try:
        exact = to_decimal(raw.amount)
    except ValueError as exc:
        raise InvalidRevenueRecordError(str(exc)) from exc
    amount: Amount = raw.amount if isinstance(raw.amount, float) else exact

    parsed = _parse_date(raw.date)
    if parsed is None:
        if strict:
            raise InvalidRevenueRecordError(
                f"Revenue record {raw.id or '<no id>'} has an unparseable date: {raw.date!r}"
            )
        parsed = now()
        logger.warning(
            "revenue_date_fallback",
            record_id=raw.id or None,
            raw_date=None if raw.date is None else str(raw.date),
            fallback=_to_iso(parsed),
        )

    iso_date = _to_iso(parsed)
    return CanonicalRevenueRecord(
        id=raw.id,
        date=iso_date,
        month=iso_date[:7],
        amount=amount,
        currency=raw.currency.upper() if raw.currency else DEFAULT_CURRENCY,
        type="refund" if amount < 0 else "payment",
        source=raw.source or DEFAULT_SOURCE,
    )


def normalize_revenue(
    records: Iterable[RawRevenueRecord | Mapping[str, Any]],
    *,
    strict: bool = False,
    now: Callable[[], datetime] = _utc_now,
) -> list[CanonicalRevenueRecord]:
    """Normalize a batch of raw records, preserving input order."""
    return [normalize_record(record, strict=strict, now=now) for record in records]


def _add(total: Amount, amount: Amount) -> Amount:
    if isinstance(total, float) or isinstance(amount, float):
        return float(total) + float(amount)
    return total + amount


def aggregate_by_month(records: Iterable[CanonicalRevenueRecord]) -> dict[str, Amount]:
    """Sum signed amounts per ``YYYY-MM`` month key, in record order.

    A month that receives any float amount is summed in floating point, so
    the rounding of the rendered leaf matches the same sum over doubles.
    """
    totals: dict[str, Amount] = {}
    for record in records:
        totals[record.month] = _add(totals.get(record.month, Decimal(0)), record.amount)
    return totals


def to_leaves(
    aggregated: Mapping[str, Decimal | int | float | str],
    *,
    encoding: str = CURRENT_LEAF_ENCODING,
) -> list[str]:
    """Serialize aggregated figures to leaves, ascending by period key."""
    return [
        encode_leaf(period_key, aggregated[period_key], encoding=encoding)
        for period_key in sorted(aggregated)
    ]


class PeriodAggregator:
    """Normalize, aggregate and canonicalize revenue for one commitment."""

    def __init__(
        self,
        *,
        strict_dates: bool = False,
        encoding: str = CURRENT_LEAF_ENCODING,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.strict_dates = strict_dates
        self.encoding = encoding
        self._now = now

    def normalize(
        self, records: Iterable[RawRevenueRecord | Mapping[str, Any]]
    ) -> list[CanonicalRevenueRecord]:
        return normalize_revenue(records, strict=self.strict_dates, now=self._now)

    def aggregate(self, records: Iterable[CanonicalRevenueRecord]) -> dict[str, Amount]:
        return aggregate_by_month(records)

    def to_leaves(self, aggregated: Mapping[str, Decimal | int | float | str]) -> list[str]:
        return to_leaves(aggregated, encoding=self.encoding)
