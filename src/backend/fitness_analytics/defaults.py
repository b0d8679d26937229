"""
Default value policy for raw record fields.

Rows come from a hosted database that tolerates nulls almost everywhere. Each
helper below decides, once, what a missing or malformed value means so the
aggregation code never has to guess.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

ZERO = Decimal("0")
DEFAULT_SEAT_CAPACITY = 10


def amount_or_zero(value: Any) -> Decimal:
    """Prices and totals: null, blank, non-numeric or non-finite become 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    return amount if amount.is_finite() else ZERO


def count_or_zero(value: Any) -> int:
    """Seat and member counts: null or invalid become 0, negatives clamp to 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "t"}
    return bool(value)


def has_reference(value: Optional[str]) -> bool:
    """Payment/customer references only count when they hold a non-blank id."""
    return value is not None and bool(str(value).strip())


def label_or(value: Optional[str], fallback: str) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def seat_capacity(max_users: Any, plan_type: str, plan_defaults: Mapping[str, int]) -> int:
    """
    Purchased seats for a corporate plan.

    Falls back to the plan's published seat count and finally to
    ``DEFAULT_SEAT_CAPACITY`` when neither the row nor the plan says otherwise.
    """
    seats = count_or_zero(max_users)
    if seats:
        return seats
    return plan_defaults.get(plan_type, DEFAULT_SEAT_CAPACITY)


def timestamp_or_none(value: Any) -> Optional[datetime]:
    """Drivers without native timestamps hand back ISO strings; blank means unknown."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    return datetime.fromisoformat(text.replace("Z", "+00:00"))
