"""Versioned leaf encoding for revenue commitments.

The leaf string is part of what a root commits to: changing the separator or
the decimal precision changes every future root and breaks comparison with
earlier attestations. New formats get a new version tag; existing tags are
never altered.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

LEAF_ENCODING_V1 = "period-amount-2dp-v1"
CURRENT_LEAF_ENCODING = LEAF_ENCODING_V1
SUPPORTED_LEAF_ENCODINGS = frozenset({LEAF_ENCODING_V1})

_LEAF_SEPARATOR = ":"
_TWO_PLACES = Decimal("0.01")


def to_decimal(amount: Decimal | int | float | str) -> Decimal:
    """Convert a revenue amount to a finite ``Decimal``.

    Floats convert exactly, binary expansion included, so ``2.675`` becomes
    ``2.67499999...`` and rounds the way a binary double renders with two
    fixed places. Strings and ``Decimal`` keep their decimal value.
    """
    if isinstance(amount, bool):
        raise ValueError("Revenue amount must be numeric, got bool")
    try:
        if isinstance(amount, Decimal):
            value = amount
        elif isinstance(amount, float):
            value = Decimal(amount)
        else:
            value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Revenue amount is not numeric: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Revenue amount must be finite, got {amount!r}")
    return value


def format_amount(amount: Decimal | int | float | str) -> str:
    """Render an amount with exactly two decimal places.

    Ties round away from zero on the magnitude. Negative zero renders as
    ``0.00``.
    """
    value = to_decimal(amount)
    if value.is_zero():
        value = abs(value)
    return f"{value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP):f}"


def encode_leaf(
    period_key: str,
    amount: Decimal | int | float | str,
    *,
    encoding: str = CURRENT_LEAF_ENCODING,
) -> str:
    """Encode one committed figure as ``"<period>:<amount 2dp>"``."""
    if encoding not in SUPPORTED_LEAF_ENCODINGS:
        raise ValueError(f"Unsupported leaf encoding: {encoding}")
    if not period_key or _LEAF_SEPARATOR in period_key:
        raise ValueError(f"Invalid period key for leaf encoding: {period_key!r}")
    return f"{period_key}{_LEAF_SEPARATOR}{format_amount(amount)}"
