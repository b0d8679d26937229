"""
Revenue aggregation over calendar periods.

Subscription-like rows earn their plan price once for every period they are
active in and classified as paid. Purchases earn their price in the period that
contains ``purchased_at``. Everything is summed with ``Decimal`` so the
per-period totals and the grand total agree to the cent.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .bucketing import is_active_during, period_for
from .classifier import ACTIVE_STATUS, Classifiable, RevenueClass, classify
from .dataset import AnalyticsDataset
from .defaults import ZERO, amount_or_zero
from .models import Period, PeriodTotals
from .pricing import PricingTable

logger = logging.getLogger(__name__)

GOLD = "gold_subscriptions"
PLATINUM = "platinum_subscriptions"
STANDALONE = "standalone_purchases"
PERSONAL_TRAINING = "personal_training"
CORPORATE = "corporate"

REVENUE_CATEGORIES = (GOLD, PLATINUM, STANDALONE, PERSONAL_TRAINING, CORPORATE)
SUBSCRIPTION_CATEGORIES = {"gold": GOLD, "platinum": PLATINUM}
PERSONAL_TRAINING_CONTENT = "personal_training"

Classifier = Callable[[Classifiable], RevenueClass]


@dataclass(frozen=True)
class RevenueAggregate:
    per_period: Sequence[PeriodTotals]
    category_totals: Dict[str, Decimal]
    grand_total: Decimal


def purchase_category(content_type: Optional[str]) -> str:
    if content_type == PERSONAL_TRAINING_CONTENT:
        return PERSONAL_TRAINING
    return STANDALONE


def select_categories(categories: Optional[Iterable[str]]) -> List[str]:
    """Keep the canonical category order whatever order the caller used."""
    if not categories:
        return list(REVENUE_CATEGORIES)
    wanted = set(categories)
    unknown = wanted.difference(REVENUE_CATEGORIES)
    if unknown:
        logger.warning("Ignoring unknown revenue categories: %s", ", ".join(sorted(unknown)))
    return [category for category in REVENUE_CATEGORIES if category in wanted]


class RevenueAggregator:
    def __init__(self, pricing: PricingTable, classifier: Classifier = classify):
        self.pricing = pricing
        self.classifier = classifier

    def aggregate(
        self,
        dataset: AnalyticsDataset,
        periods: Sequence[Period],
        categories: Optional[Iterable[str]] = None,
    ) -> RevenueAggregate:
        selected = select_categories(categories)
        # Periods built from naive bounds are read in the dataset timezone.
        periods = [
            replace(period, start=dataset.localize(period.start), end=dataset.localize(period.end))
            for period in periods
        ]
        buckets: "OrderedDict[str, Dict[str, Decimal]]" = OrderedDict(
            (period.key, OrderedDict((category, ZERO) for category in selected)) for period in periods
        )
        subscribers: Dict[str, int] = {period.key: 0 for period in periods}
        unknown_plans: Counter = Counter()

        for period in periods:
            bucket = buckets[period.key]
            for record in dataset.subscriptions:
                if not is_active_during(record, period.start, period.end):
                    continue
                if record.status == ACTIVE_STATUS:
                    subscribers[period.key] += 1
                category = SUBSCRIPTION_CATEGORIES.get(record.plan_type)
                price = self.pricing.individual_price(record.plan_type)
                if category is None or price is None:
                    unknown_plans[record.plan_type] += 1
                    continue
                if category in bucket and self.classifier(record) is RevenueClass.PAID:
                    bucket[category] += price

            for record in dataset.corporate_subscriptions:
                if not is_active_during(record, period.start, period.end):
                    continue
                price = self.pricing.corporate_price(record.plan_type)
                if price is None:
                    unknown_plans[record.plan_type] += 1
                    continue
                if CORPORATE in bucket and self.classifier(record) is RevenueClass.PAID:
                    bucket[CORPORATE] += price

        for purchase in dataset.purchases:
            period = period_for(purchase.purchased_at, periods)
            if period is None:
                continue
            category = purchase_category(purchase.content_type)
            bucket = buckets[period.key]
            if category in bucket and self.classifier(purchase) is RevenueClass.PAID:
                bucket[category] += amount_or_zero(purchase.price)

        for plan_type, occurrences in sorted(unknown_plans.items(), key=lambda item: str(item[0])):
            logger.warning(
                "Plan type %r is missing from the price list; %d period rows counted as zero revenue",
                plan_type,
                occurrences,
            )

        per_period = [
            PeriodTotals(
                period=period.key,
                label=period.label,
                category_totals=dict(buckets[period.key]),
                total=sum(buckets[period.key].values(), ZERO),
                active_subscribers=subscribers[period.key],
            )
            for period in periods
        ]
        category_totals = OrderedDict((category, ZERO) for category in selected)
        for totals in per_period:
            for category, amount in totals.category_totals.items():
                category_totals[category] += amount
        grand_total = sum((totals.total for totals in per_period), ZERO)
        return RevenueAggregate(
            per_period=per_period,
            category_totals=dict(category_totals),
            grand_total=grand_total,
        )


def aggregate_revenue(
    dataset: AnalyticsDataset,
    periods: Sequence[Period],
    pricing: PricingTable,
    classifier: Classifier = classify,
    categories: Optional[Iterable[str]] = None,
) -> RevenueAggregate:
    return RevenueAggregator(pricing, classifier).aggregate(dataset, periods, categories)
