from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import List, Mapping, Union

from .defaults import ZERO, amount_or_zero
from .models import DistributionSlice

ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal("100")

Amount = Union[Decimal, int, float]


def to_percentages(category_totals: Mapping[str, Amount]) -> List[DistributionSlice]:
    """
    Share of each category in the total, as a percentage with one decimal.

    Input order is kept. A zero total gives 0 for every category. Otherwise the
    shares are rounded half-up and any residual tenths left by rounding are
    handed out largest-remainder first, so the slices add up to exactly 100.0.
    """

    amounts = [(category, amount_or_zero(amount)) for category, amount in category_totals.items()]
    total = sum((amount for _, amount in amounts), ZERO)
    if total <= 0:
        return [DistributionSlice(category=category, amount=amount, percentage=0.0) for category, amount in amounts]

    exact = [amount / total * HUNDRED for _, amount in amounts]
    rounded = [share.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP) for share in exact]
    residual = int(((HUNDRED - sum(rounded, ZERO)) / ONE_DECIMAL).to_integral_value())

    if residual:
        step = ONE_DECIMAL if residual > 0 else -ONE_DECIMAL
        errors = [share - approx for share, approx in zip(exact, rounded)]
        # Most under-rounded first when adding, most over-rounded first when
        # taking away; sorted() keeps input order among equal errors.
        order = sorted(range(len(exact)), key=lambda index: errors[index], reverse=residual > 0)
        for index in order[: abs(residual)]:
            rounded[index] += step

    return [
        DistributionSlice(category=category, amount=amount, percentage=float(share))
        for (category, amount), share in zip(amounts, rounded)
    ]
