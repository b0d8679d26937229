"""
Tests for revenue aggregation.

Covers:
- Per-period plan revenue for paid subscriptions only
- Corporate plans under the stricter paid rule
- Purchase categories
- The category-sum and grand-total invariants
- Category filtering and unknown plan handling
"""

import logging
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from backend.fitness_analytics.aggregation import (
    CORPORATE,
    GOLD,
    PERSONAL_TRAINING,
    PLATINUM,
    REVENUE_CATEGORIES,
    STANDALONE,
    aggregate_revenue,
    select_categories,
)
from backend.fitness_analytics.bucketing import month_periods
from backend.fitness_analytics.dataset import AnalyticsDataset
from backend.fitness_analytics.models import SourceSnapshot
from backend.fitness_analytics.pricing import PricingTable

from conftest import APRIL_START, MARCH_START, make_corporate, make_purchase, make_subscription


def _aggregate(snapshot, start=MARCH_START, end=APRIL_START, **kwargs):
    return aggregate_revenue(AnalyticsDataset(snapshot), month_periods(start, end), PricingTable(), **kwargs)


class TestSubscriptionRevenue:
    """Plan prices earned per active month."""

    def test_three_gold_subscribers(self):
        """Three paid gold plans in March earn 3 x 9.99."""
        snapshot = SourceSnapshot(subscriptions=tuple(make_subscription(f"s{i}") for i in range(3)))
        result = _aggregate(snapshot)

        assert result.category_totals[GOLD] == Decimal("29.97")
        assert result.grand_total == Decimal("29.97")
        assert result.per_period[0].active_subscribers == 3

    def test_complimentary_plans_count_but_earn_nothing(self):
        snapshot = SourceSnapshot(
            subscriptions=(make_subscription("s1", plan_type="platinum", payment_ref=None),)
        )
        result = _aggregate(snapshot)

        assert result.category_totals[PLATINUM] == Decimal("0")
        assert result.per_period[0].active_subscribers == 1

    def test_open_ended_plan_earns_every_month(self):
        """A plan with no period end is billed in each month it spans."""
        snapshot = SourceSnapshot(
            subscriptions=(make_subscription("s1", created_at=datetime(2024, 1, 10)),)
        )
        result = _aggregate(snapshot, start=datetime(2024, 1, 1), end=APRIL_START)

        assert [totals.total for totals in result.per_period] == [Decimal("9.99")] * 3
        assert result.grand_total == Decimal("29.97")

    def test_lapsed_plan_stops_earning(self):
        snapshot = SourceSnapshot(
            subscriptions=(
                make_subscription(
                    "s1", created_at=datetime(2024, 1, 10), current_period_end=datetime(2024, 2, 10)
                ),
            )
        )
        result = _aggregate(snapshot, start=datetime(2024, 1, 1), end=APRIL_START)

        assert [totals.total for totals in result.per_period] == [Decimal("9.99"), Decimal("9.99"), Decimal("0")]


class TestCorporateRevenue:
    def test_power_plan_without_customer_ref_earns_nothing(self):
        snapshot = SourceSnapshot(corporate_subscriptions=(make_corporate("c1", customer_ref=None),))
        result = _aggregate(snapshot)

        assert result.category_totals[CORPORATE] == Decimal("0")
        assert result.grand_total == Decimal("0")

    def test_paid_tiers_use_price_list(self):
        snapshot = SourceSnapshot(
            corporate_subscriptions=(
                make_corporate("c1", plan_type="power"),
                make_corporate("c2", plan_type="enterprise"),
            )
        )
        result = _aggregate(snapshot)

        assert result.category_totals[CORPORATE] == Decimal("1198")


class TestPurchaseRevenue:
    def test_personal_training_has_its_own_category(self):
        snapshot = SourceSnapshot(
            purchases=(
                make_purchase("p1", price="4.99"),
                make_purchase("p2", price="50.00", content_type="personal_training"),
                make_purchase("p3", price=None),
            )
        )
        result = _aggregate(snapshot)

        assert result.category_totals[STANDALONE] == Decimal("4.99")
        assert result.category_totals[PERSONAL_TRAINING] == Decimal("50.00")

    def test_purchases_land_in_their_month(self):
        snapshot = SourceSnapshot(
            purchases=(
                make_purchase("p1", purchased_at=datetime(2024, 2, 29, 23, 59)),
                make_purchase("p2", purchased_at=datetime(2024, 3, 1)),
            )
        )
        result = _aggregate(snapshot, start=datetime(2024, 2, 1))

        assert [totals.category_totals[STANDALONE] for totals in result.per_period] == [
            Decimal("4.99"),
            Decimal("4.99"),
        ]

    def test_naive_periods_follow_dataset_timezone(self):
        """Naive bounds are read in the dataset zone, so a late UTC sale is April in Tokyo."""
        sale = make_purchase("p1", purchased_at=datetime(2024, 3, 31, 20, tzinfo=ZoneInfo("UTC")))
        dataset = AnalyticsDataset(SourceSnapshot(purchases=(sale,)), timezone="Asia/Tokyo")
        result = aggregate_revenue(dataset, month_periods(MARCH_START, datetime(2024, 5, 1)), PricingTable())

        assert [totals.period for totals in result.per_period] == ["2024-03", "2024-04"]
        assert [totals.total for totals in result.per_period] == [Decimal("0"), Decimal("4.99")]


class TestInvariants:
    """Totals always reconcile."""

    def test_category_sums_match_totals(self, snapshot):
        result = _aggregate(snapshot, start=datetime(2024, 1, 1))

        for totals in result.per_period:
            assert sum(totals.category_totals.values(), Decimal("0")) == totals.total
        assert sum(result.category_totals.values(), Decimal("0")) == result.grand_total
        assert sum((totals.total for totals in result.per_period), Decimal("0")) == result.grand_total

    def test_categories_keep_canonical_order(self, snapshot):
        result = _aggregate(snapshot)
        assert list(result.category_totals) == list(REVENUE_CATEGORIES)

    def test_failed_source_still_yields_other_categories(self):
        """An empty purchases family leaves subscription revenue intact."""
        snapshot = SourceSnapshot(
            subscriptions=(make_subscription("s1"),),
            unavailable_sources=("purchases",),
        )
        result = _aggregate(snapshot)

        assert result.category_totals[GOLD] == Decimal("9.99")
        assert result.category_totals[STANDALONE] == Decimal("0")


class TestCategoryFilter:
    def test_filter_keeps_canonical_order(self):
        assert select_categories([CORPORATE, GOLD]) == [GOLD, CORPORATE]

    def test_unknown_categories_are_ignored(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert select_categories([GOLD, "merch"]) == [GOLD]
        assert "merch" in caplog.text

    def test_filtered_aggregate_only_reports_selection(self, snapshot):
        result = _aggregate(snapshot, categories=[PLATINUM])

        assert list(result.category_totals) == [PLATINUM]
        assert result.grand_total == Decimal("19.99")


class TestUnknownPlans:
    def test_unknown_plan_is_zero_and_logged_once(self, caplog):
        snapshot = SourceSnapshot(
            subscriptions=(
                make_subscription("s1", plan_type="diamond", created_at=datetime(2024, 1, 1)),
                make_subscription("s2", plan_type="diamond", created_at=datetime(2024, 1, 1)),
            )
        )
        with caplog.at_level(logging.WARNING):
            result = _aggregate(snapshot, start=datetime(2024, 1, 1))

        assert result.grand_total == Decimal("0")
        messages = [record.getMessage() for record in caplog.records if "diamond" in record.getMessage()]
        assert len(messages) == 1
        assert "6 period rows" in messages[0]
