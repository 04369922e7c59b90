"""
Anomaly detection for monthly revenue series.

Uses a month-over-month percentage change heuristic. The result is advisory:
the submission pipeline logs non-``ok`` flags but never blocks on them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

AnomalyFlag = Literal["ok", "unusual_drop", "unusual_spike", "insufficient_data"]

# Fractional month-over-month change thresholds
DROP_THRESHOLD = Decimal("0.4")
SPIKE_THRESHOLD = Decimal("3.0")
MIN_DATA_POINTS = 2


@dataclass(frozen=True)
class MonthlyRevenue:
    """One point of a revenue series; ``period`` is ``YYYY-MM`` or ``YYYY-Qn``."""

    period: str
    amount: Decimal


@dataclass(frozen=True)
class AnomalyResult:
    score: float
    flag: AnomalyFlag
    detail: str


def _percent(change: Decimal) -> str:
    return f"{float(change * 100):.1f}%"


def detect_revenue_anomaly(series: Sequence[MonthlyRevenue]) -> AnomalyResult:
    """Score a revenue series and report the worst period-to-period deviation.

    The series is sorted by ``period`` first, which is chronological for both
    ``YYYY-MM`` and ``YYYY-Qn`` keys. Score is the absolute fractional change
    clamped to ``[0, 1]``.
    """
    if len(series) < MIN_DATA_POINTS:
        return AnomalyResult(
            score=0.0,
            flag="insufficient_data",
            detail=f"Need at least {MIN_DATA_POINTS} data points; received {len(series)}.",
        )

    ordered = sorted(series, key=lambda point: point.period)

    worst_score = Decimal(0)
    worst_flag: AnomalyFlag = "ok"
    worst_detail = "No anomaly detected."

    for prev, curr in zip(ordered, ordered[1:]):
        if prev.amount == 0:
            continue

        change = (curr.amount - prev.amount) / prev.amount
        score = min(abs(change), Decimal(1))

        if change <= -DROP_THRESHOLD and score > worst_score:
            worst_score = score
            worst_flag = "unusual_drop"
            worst_detail = (
                f"Revenue dropped {_percent(abs(change))} from "
                f"{prev.period} ({prev.amount}) to {curr.period} ({curr.amount})."
            )
        elif change >= SPIKE_THRESHOLD and score > worst_score:
            worst_score = score
            worst_flag = "unusual_spike"
            worst_detail = (
                f"Revenue spiked {_percent(abs(change))} from "
                f"{prev.period} ({prev.amount}) to {curr.period} ({curr.amount})."
            )

    return AnomalyResult(score=float(worst_score), flag=worst_flag, detail=worst_detail)
