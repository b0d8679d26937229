from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .defaults import ZERO, amount_or_zero
from .models import RankedItem, ResponseTimeStats

T = TypeVar("T")

SECONDS_PER_HOUR = 3600


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a spreadsheet does: halves always go away from zero."""
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def _percentage(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def completion_rate(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    rate = int(round_half_up(_percentage(completed, total)))
    return min(100, max(0, rate))


def conversion_rate(unique_purchasers: int, total_users: int) -> float:
    return _percentage(unique_purchasers, total_users)


def share(part: int, whole: int) -> float:
    """Whole-number percentage without clamping; signups can outnumber visits."""
    return round_half_up(_percentage(part, whole))


def response_rate(responded: int, total: int) -> float:
    return _percentage(responded, total)


def utilization(members: int, capacity: int) -> int:
    if capacity <= 0:
        return 0
    return int(round_half_up(_percentage(members, capacity)))


def customer_lifetime_value(total_revenue: Decimal, customers: int) -> Decimal:
    if customers <= 0:
        return ZERO
    return amount_or_zero(total_revenue) / customers


def average_order_value(total_revenue: Decimal, orders: int) -> Decimal:
    if orders <= 0:
        return ZERO
    return amount_or_zero(total_revenue) / orders


def elapsed_hours(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def response_time_stats(pairs: Iterable[Tuple[Optional[datetime], Optional[datetime]]]) -> ResponseTimeStats:
    """
    Summarise ``(created_at, responded_at)`` pairs in hours.

    Pairs missing either side are skipped. The median is the lower-middle
    element of the ascending list, so ``[2, 10]`` yields ``2``.
    """

    hours = sorted(
        elapsed_hours(created_at, responded_at)
        for created_at, responded_at in pairs
        if created_at is not None and responded_at is not None
    )
    if not hours:
        return ResponseTimeStats()
    return ResponseTimeStats(
        count=len(hours),
        average=sum(hours) / len(hours),
        median=hours[(len(hours) - 1) // 2],
        minimum=hours[0],
        maximum=hours[-1],
    )


def rank(
    entries: Iterable[T],
    key: Callable[[T], str],
    value: Optional[Callable[[T], Decimal]] = None,
    order_by: str = "count",
    limit: Optional[int] = None,
) -> List[RankedItem]:
    """
    Group ``entries`` by ``key`` and order groups by count or summed value.

    Groups live in an insertion-ordered mapping and the sort is stable, so on
    equal metrics the group first seen in the (chronological) input wins.
    """

    if order_by not in {"count", "value"}:
        raise ValueError(f"order_by must be 'count' or 'value', got {order_by!r}")

    groups: "OrderedDict[str, List[Decimal]]" = OrderedDict()
    for entry in entries:
        label = key(entry)
        amount = amount_or_zero(value(entry)) if value is not None else ZERO
        if label not in groups:
            groups[label] = [ZERO, ZERO]
        groups[label][0] += 1
        groups[label][1] += amount

    items = [
        RankedItem(label=label, value=total, count=int(count))
        for label, (count, total) in groups.items()
    ]
    if order_by == "count":
        items.sort(key=lambda item: item.count, reverse=True)
    else:
        items.sort(key=lambda item: item.value, reverse=True)
    return items if limit is None else items[:limit]


def top_n(items: Sequence[T], metric: Callable[[T], float], limit: int) -> List[T]:
    """Stable descending selection for rows that are already aggregated."""
    return sorted(items, key=metric, reverse=True)[:limit]


def count_by(entries: Iterable[T], key: Callable[[T], str]) -> Dict[str, int]:
    counts: "OrderedDict[str, int]" = OrderedDict()
    for entry in entries:
        label = key(entry)
        counts[label] = counts.get(label, 0) + 1
    return dict(counts)
