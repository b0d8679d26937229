from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .aggregation import CORPORATE, GOLD, PLATINUM, RevenueAggregator
from .bucketing import (
    clip_periods,
    coerce_timezone,
    day_periods,
    is_active_during,
    month_periods,
    normalize_datetime,
    period_keys,
)
from .classifier import ACTIVE_STATUS, is_paid
from .dataset import AnalyticsDataset
from .defaults import ZERO, amount_or_zero, count_or_zero, label_or, seat_capacity
from .distribution import to_percentages
from .errors import InvalidWindowError
from .metrics import (
    average_order_value,
    completion_rate,
    conversion_rate,
    count_by,
    customer_lifetime_value,
    elapsed_hours,
    rank,
    response_rate,
    response_time_stats,
    round_half_up,
    share,
    top_n,
    utilization,
)
from .models import (
    AnalyticsFilters,
    AnalyticsMeta,
    AnalyticsResult,
    ContentKind,
    CorporateSection,
    DateWindow,
    EngagementSection,
    GrowthSection,
    InteractionRecord,
    Period,
    PersonalTrainingSection,
    PurchaseRecord,
    PurchaseSection,
    RankedItem,
    ReportSummary,
    RevenueSection,
    ShopSection,
    SourceSnapshot,
    SubscriptionSection,
    SupportSection,
    TrendPoint,
    WebsiteSection,
)
from .pricing import INDIVIDUAL_PLANS, PricingTable
from .repository import AnalyticsRepository
from .sources import load_snapshot

VISIT_EVENT = "visit"
SIGNUP_EVENT = "signup"
TRAINING_PENDING = "pending"
TRAINING_COMPLETED = "completed"
PAID_PAYMENT = "paid"
SHOP_CONTENT = "shop_product"
DIRECT_SALE = "direct_sale"
FULFILLMENT_PENDING = "pending"
LOW_STOCK_THRESHOLD = 5

# Upper bounds in hours; the last bucket is open-ended.
COMPLETION_BUCKETS = (
    ("< 24h", 24),
    ("1-3 days", 72),
    ("4-7 days", 168),
    ("1-2 weeks", 336),
    ("> 2 weeks", None),
)


@dataclass
class _Context:
    dataset: AnalyticsDataset
    start: datetime
    end: datetime
    months: Sequence[Period]
    days: Sequence[Period]
    top_n: int


class AnalyticsService:
    """
    Builds every analytics section from one source snapshot.

    The service holds no state between calls: each ``build`` recomputes from
    the snapshot it was given, so there is nothing to invalidate.
    """

    def __init__(self, snapshot: SourceSnapshot, pricing: PricingTable) -> None:
        self.snapshot = snapshot
        self.pricing = pricing
        self.aggregator = RevenueAggregator(pricing)

    def build(self, filters: AnalyticsFilters) -> AnalyticsResult:
        ctx = self._context(filters)

        revenue = self._build_revenue(ctx, filters)
        subscriptions = self._build_subscriptions(ctx)
        purchases = self._build_purchases(ctx)
        engagement = self._build_engagement(ctx)
        corporate = self._build_corporate(ctx)
        website = self._build_website(ctx)
        support = self._build_support(ctx)
        growth = self._build_growth(ctx)
        personal_training = self._build_personal_training(ctx)
        shop = self._build_shop(ctx)
        summary = self._build_summary(
            ctx, revenue, subscriptions, purchases, engagement, corporate, website, support, growth
        )

        return AnalyticsResult(
            revenue=revenue,
            subscriptions=subscriptions,
            purchases=purchases,
            engagement=engagement,
            corporate=corporate,
            website=website,
            support=support,
            growth=growth,
            personal_training=personal_training,
            shop=shop,
            summary=summary,
            meta=AnalyticsMeta(
                start=ctx.start,
                end=ctx.end,
                timezone=ctx.dataset.timezone,
                periods=period_keys(ctx.months),
                unavailable_sources=ctx.dataset.unavailable_sources,
            ),
        )

    def _context(self, filters: AnalyticsFilters) -> _Context:
        dataset = AnalyticsDataset(self.snapshot, timezone=filters.timezone)
        start = dataset.localize(filters.start)
        end = dataset.localize(filters.end)
        if end <= start:
            raise InvalidWindowError("end must be greater than start")
        return _Context(
            dataset=dataset,
            start=start,
            end=end,
            months=clip_periods(month_periods(start, end), start, end),
            days=day_periods(start, end),
            top_n=max(1, filters.top_n),
        )

    def _build_revenue(self, ctx: _Context, filters: AnalyticsFilters) -> RevenueSection:
        aggregate = self.aggregator.aggregate(ctx.dataset, ctx.months, filters.categories)
        return RevenueSection(
            time_series=aggregate.per_period,
            category_totals=aggregate.category_totals,
            grand_total=aggregate.grand_total,
            distribution=to_percentages(aggregate.category_totals),
        )

    def _build_subscriptions(self, ctx: _Context) -> SubscriptionSection:
        active_by_plan: "OrderedDict[str, int]" = OrderedDict((plan, 0) for plan in INDIVIDUAL_PLANS)
        paid, complimentary = 0, 0
        for record in ctx.dataset.subscriptions:
            if record.status != ACTIVE_STATUS or not is_active_during(record, ctx.start, ctx.end):
                continue
            active_by_plan[record.plan_type] = active_by_plan.get(record.plan_type, 0) + 1
            if is_paid(record):
                paid += 1
            else:
                complimentary += 1
        return SubscriptionSection(
            active_by_plan=dict(active_by_plan),
            paid=paid,
            complimentary=complimentary,
            distribution=to_percentages(active_by_plan),
        )

    def _build_purchases(self, ctx: _Context) -> PurchaseSection:
        purchases = list(ctx.dataset.purchases_between(ctx.start, ctx.end))
        total_revenue = sum((amount_or_zero(p.price) for p in purchases), ZERO)
        customers = list(OrderedDict.fromkeys(p.user_id for p in purchases))
        registered = ctx.dataset.profiles_before(ctx.end)

        revenue_by_day: List[TrendPoint] = []
        for day in ctx.days:
            amount = sum((amount_or_zero(p.price) for p in purchases if day.start <= p.purchased_at < day.end), ZERO)
            revenue_by_day.append(TrendPoint(period=day.key, label=day.label, values={"revenue": amount}))

        names = {profile.user_id: profile.full_name for profile in ctx.dataset.profiles}
        top_customers = [
            RankedItem(
                label=label_or(names.get(item.label), f"Customer {item.label[:8]}"),
                value=item.value,
                count=item.count,
            )
            for item in rank(
                purchases, key=lambda p: p.user_id, value=lambda p: p.price, order_by="value", limit=ctx.top_n
            )
        ]

        return PurchaseSection(
            total_revenue=total_revenue,
            total_purchases=len(purchases),
            average_order_value=average_order_value(total_revenue, len(purchases)),
            unique_customers=len(customers),
            conversion_rate=conversion_rate(len(customers), registered),
            customer_lifetime_value=customer_lifetime_value(total_revenue, len(customers)),
            revenue_by_day=revenue_by_day,
            best_sellers=rank(
                purchases,
                key=lambda p: label_or(p.content_name, "Unknown"),
                value=lambda p: p.price,
                order_by="count",
                limit=ctx.top_n,
            ),
            top_customers=top_customers,
            content_types=to_percentages(count_by(purchases, key=lambda p: label_or(p.content_type, "unknown"))),
        )

    def _build_engagement(self, ctx: _Context) -> EngagementSection:
        workouts = list(ctx.dataset.interactions_between(ContentKind.WORKOUT, ctx.start, ctx.end))
        programs = list(ctx.dataset.interactions_between(ContentKind.PROGRAM, ctx.start, ctx.end))

        trend: List[TrendPoint] = []
        for period in ctx.months:
            period_workouts = [i for i in workouts if period.start <= i.created_at < period.end]
            period_programs = [i for i in programs if period.start <= i.created_at < period.end]
            workout_done = sum(1 for i in period_workouts if i.is_completed)
            program_done = sum(1 for i in period_programs if i.is_completed)
            trend.append(
                TrendPoint(
                    period=period.key,
                    label=period.label,
                    values={
                        "workout_rate": completion_rate(workout_done, len(period_workouts)),
                        "program_rate": completion_rate(program_done, len(period_programs)),
                        "workout_completed": workout_done,
                        "program_completed": program_done,
                        "workout_total": len(period_workouts),
                        "program_total": len(period_programs),
                    },
                )
            )

        return EngagementSection(
            workout_completion_rate=completion_rate(sum(1 for i in workouts if i.is_completed), len(workouts)),
            program_completion_rate=completion_rate(sum(1 for i in programs if i.is_completed), len(programs)),
            workout_interactions=len(workouts),
            program_interactions=len(programs),
            completion_trend=trend,
            popular_workouts=self._popular_content(workouts, ctx.top_n),
            popular_programs=self._popular_content(programs, ctx.top_n),
        )

    @staticmethod
    def _popular_content(interactions: Sequence[InteractionRecord], limit: int) -> Sequence[RankedItem]:
        stats: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        for interaction in interactions:
            name = label_or(interaction.content_name, "Unknown")
            entry = stats.setdefault(name, {"completions": 0, "views": 0, "favorites": 0})
            entry["completions"] += int(interaction.is_completed)
            entry["views"] += int(interaction.has_viewed)
            entry["favorites"] += int(interaction.is_favorite)

        rows = [
            RankedItem(
                label=name,
                value=Decimal(values["completions"]),
                count=values["completions"],
                metrics={key: float(value) for key, value in values.items()},
            )
            for name, values in stats.items()
        ]
        return top_n(rows, metric=lambda row: row.count, limit=limit)

    def _build_corporate(self, ctx: _Context) -> CorporateSection:
        plans: "OrderedDict[str, Dict[str, object]]" = OrderedDict()
        active, members, capacity = 0, 0, 0
        paid_revenue = ZERO

        for record in ctx.dataset.corporate_subscriptions:
            if not is_active_during(record, ctx.start, ctx.end):
                continue
            stats = plans.setdefault(
                record.plan_type, {"count": 0, "revenue": ZERO, "members": 0, "capacity": 0}
            )
            stats["count"] += 1
            if record.status == ACTIVE_STATUS:
                active += 1
            if is_paid(record):
                price = self.pricing.unit_price(record.plan_type)
                stats["revenue"] += price
                paid_revenue += price
            seats_used = count_or_zero(record.current_users_count)
            seats = seat_capacity(record.max_users, record.plan_type, self.pricing.corporate_seats)
            stats["members"] += seats_used
            stats["capacity"] += seats
            members += seats_used
            capacity += seats

        rows = [
            RankedItem(
                label=plan,
                value=stats["revenue"],
                count=stats["count"],
                metrics={
                    "members": float(stats["members"]),
                    "capacity": float(stats["capacity"]),
                    "utilization": float(utilization(stats["members"], stats["capacity"])),
                },
            )
            for plan, stats in plans.items()
        ]
        return CorporateSection(
            total_subscriptions=sum(row.count for row in rows),
            active_subscriptions=active,
            paid_revenue=paid_revenue,
            total_members=members,
            average_utilization=utilization(members, capacity),
            plans=top_n(rows, metric=lambda row: row.count, limit=len(rows)),
        )

    def _build_website(self, ctx: _Context) -> WebsiteSection:
        events = list(ctx.dataset.traffic_between(ctx.start, ctx.end))
        visits = [event for event in events if event.event_type == VISIT_EVENT]
        sessions = set(event.session_id for event in events)

        pages = rank(visits, key=lambda e: label_or(e.landing_page, "/"), limit=ctx.top_n)
        devices = rank(events, key=lambda e: label_or(e.device_type, "unknown"))

        sources: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        for event in events:
            entry = sources.setdefault(label_or(event.referral_source, "direct"), {"visits": 0, "signups": 0})
            if event.event_type == VISIT_EVENT:
                entry["visits"] += 1
            elif event.event_type == SIGNUP_EVENT:
                entry["signups"] += 1
        source_rows = [
            RankedItem(
                label=source,
                value=Decimal(values["visits"]),
                count=values["visits"],
                metrics={
                    "signups": float(values["signups"]),
                    "conversion_rate": share(values["signups"], values["visits"]),
                },
            )
            for source, values in sources.items()
        ]

        daily: List[TrendPoint] = []
        for day in ctx.days:
            day_events = [event for event in events if day.start <= event.created_at < day.end]
            daily.append(
                TrendPoint(
                    period=day.key,
                    label=day.label,
                    values={
                        "visits": sum(1 for event in day_events if event.event_type == VISIT_EVENT),
                        "unique_sessions": len(set(event.session_id for event in day_events)),
                    },
                )
            )

        return WebsiteSection(
            total_visits=len(visits),
            unique_sessions=len(sessions),
            pages_per_session=round_half_up(len(events) / (len(sessions) or 1), 1),
            top_pages=self._with_share(pages, len(visits)),
            devices=self._with_share(devices, len(events)),
            referral_sources=top_n(source_rows, metric=lambda row: row.count, limit=len(source_rows)),
            daily_visitors=daily,
        )

    @staticmethod
    def _with_share(rows: Sequence[RankedItem], total: int) -> List[RankedItem]:
        # total covers every row, including any cut by the ranking limit
        return [
            RankedItem(
                label=row.label,
                value=row.value,
                count=row.count,
                metrics={"percentage": share(row.count, total)},
            )
            for row in rows
        ]

    def _build_support(self, ctx: _Context) -> SupportSection:
        messages = list(ctx.dataset.messages_between(ctx.start, ctx.end))
        responded = sum(1 for message in messages if message.responded_at is not None)
        return SupportSection(
            total_messages=len(messages),
            responded_messages=responded,
            response_rate=response_rate(responded, len(messages)),
            response_times=response_time_stats((m.created_at, m.responded_at) for m in messages),
            categories=rank(messages, key=lambda m: label_or(m.category, "general")),
            statuses=rank(messages, key=lambda m: label_or(m.status, "new")),
        )

    def _build_growth(self, ctx: _Context) -> GrowthSection:
        new_profiles = list(ctx.dataset.profiles_between(ctx.start, ctx.end))
        cumulative = ctx.dataset.profiles_before(ctx.start)
        monthly: List[TrendPoint] = []
        for period in ctx.months:
            joined = sum(1 for profile in new_profiles if period.start <= profile.created_at < period.end)
            cumulative += joined
            monthly.append(
                TrendPoint(
                    period=period.key,
                    label=period.label,
                    values={"new_users": joined, "cumulative_users": cumulative},
                )
            )
        return GrowthSection(
            total_users=ctx.dataset.profiles_before(ctx.end),
            new_users=len(new_profiles),
            monthly=monthly,
        )

    def _build_personal_training(self, ctx: _Context) -> PersonalTrainingSection:
        requests = list(ctx.dataset.training_requests_between(ctx.start, ctx.end))
        paid = sum(1 for request in requests if request.payment_status == PAID_PAYMENT)

        buckets: "OrderedDict[str, int]" = OrderedDict((label, 0) for label, _ in COMPLETION_BUCKETS)
        for request in requests:
            if request.completed_at is None:
                continue
            hours = elapsed_hours(request.created_at, request.completed_at)
            for label, limit in COMPLETION_BUCKETS:
                if limit is None or hours < limit:
                    buckets[label] += 1
                    break

        monthly = [
            TrendPoint(
                period=period.key,
                label=period.label,
                values={"requests": sum(1 for r in requests if period.start <= r.created_at < period.end)},
            )
            for period in ctx.months
        ]
        return PersonalTrainingSection(
            total_requests=len(requests),
            pending_requests=sum(1 for request in requests if request.status == TRAINING_PENDING),
            completed_requests=sum(1 for request in requests if request.status == TRAINING_COMPLETED),
            paid_requests=paid,
            conversion_rate=conversion_rate(paid, len(requests)),
            completion_hours=response_time_stats((r.created_at, r.completed_at) for r in requests),
            completion_buckets=[
                RankedItem(label=label, value=Decimal(count), count=count) for label, count in buckets.items()
            ],
            statuses=rank(requests, key=lambda r: label_or(r.status, TRAINING_PENDING)),
            monthly=monthly,
        )

    def _build_shop(self, ctx: _Context) -> ShopSection:
        orders = [
            purchase
            for purchase in ctx.dataset.purchases_between(ctx.start, ctx.end)
            if purchase.content_type == SHOP_CONTENT
        ]
        total_revenue = sum((amount_or_zero(order.price) for order in orders), ZERO)
        categories = {product.id: product.category for product in ctx.dataset.shop_products}

        def fulfillment(order: PurchaseRecord) -> str:
            return label_or(order.fulfillment_status, FULFILLMENT_PENDING)

        products: List[RankedItem] = []
        for product in ctx.dataset.shop_products:
            if product.product_type != DIRECT_SALE:
                continue
            sold = [order for order in orders if order.content_id == product.id]
            stock = count_or_zero(product.stock_quantity)
            products.append(
                RankedItem(
                    label=label_or(product.title, product.id),
                    value=sum((amount_or_zero(order.price) for order in sold), ZERO),
                    count=len(sold),
                    metrics={"stock": float(stock), "low_stock": float(stock < LOW_STOCK_THRESHOLD)},
                )
            )

        return ShopSection(
            total_revenue=total_revenue,
            total_orders=len(orders),
            average_order_value=average_order_value(total_revenue, len(orders)),
            pending_orders=sum(1 for order in orders if fulfillment(order) == FULFILLMENT_PENDING),
            revenue_by_category=rank(
                orders,
                key=lambda o: label_or(categories.get(o.content_id), "Unknown"),
                value=lambda o: o.price,
                order_by="value",
            ),
            top_products=rank(
                orders,
                key=lambda o: label_or(o.content_name, "Unknown"),
                value=lambda o: o.price,
                order_by="value",
                limit=ctx.top_n,
            ),
            fulfillment_statuses=rank(orders, key=fulfillment),
            products=top_n(products, metric=lambda row: row.value, limit=len(products)),
        )

    @staticmethod
    def _build_summary(
        ctx: _Context,
        revenue: RevenueSection,
        subscriptions: SubscriptionSection,
        purchases: PurchaseSection,
        engagement: EngagementSection,
        corporate: CorporateSection,
        website: WebsiteSection,
        support: SupportSection,
        growth: GrowthSection,
    ) -> ReportSummary:
        totals = revenue.category_totals
        workout_done = sum(
            1
            for i in ctx.dataset.interactions_between(ContentKind.WORKOUT, ctx.start, ctx.end)
            if i.is_completed
        )
        program_done = sum(
            1
            for i in ctx.dataset.interactions_between(ContentKind.PROGRAM, ctx.start, ctx.end)
            if i.is_completed
        )
        interactions = engagement.workout_interactions + engagement.program_interactions
        best_seller: Optional[str] = purchases.best_sellers[0].label if purchases.best_sellers else None

        return ReportSummary(
            total_users=growth.total_users,
            new_users=growth.new_users,
            gold_subscribers=subscriptions.active_by_plan.get("gold", 0),
            platinum_subscribers=subscriptions.active_by_plan.get("platinum", 0),
            total_revenue=revenue.grand_total,
            subscription_revenue=totals.get(GOLD, ZERO) + totals.get(PLATINUM, ZERO) + totals.get(CORPORATE, ZERO),
            standalone_revenue=purchases.total_revenue,
            standalone_purchases=purchases.total_purchases,
            workout_completions=workout_done,
            program_completions=program_done,
            total_interactions=interactions,
            completion_rate=completion_rate(workout_done + program_done, interactions),
            conversion_rate=purchases.conversion_rate,
            customer_lifetime_value=purchases.customer_lifetime_value,
            website_visitors=website.total_visits,
            active_corporate=corporate.active_subscriptions,
            corporate_members=corporate.total_members,
            response_rate=support.response_rate,
            median_response_hours=support.response_times.median,
            best_seller=best_seller,
        )


def compute_analytics(
    snapshot: SourceSnapshot,
    filters: AnalyticsFilters,
    pricing: Optional[PricingTable] = None,
) -> AnalyticsResult:
    """
    Pure entry point: the same snapshot, filters and prices always produce the
    same result.
    """

    return AnalyticsService(snapshot, pricing or PricingTable()).build(filters)


async def run_analytics(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    pricing: Optional[PricingTable] = None,
) -> AnalyticsResult:
    tz = coerce_timezone(filters.timezone)
    window = DateWindow(start=normalize_datetime(filters.start, tz), end=normalize_datetime(filters.end, tz))
    snapshot = await load_snapshot(repository, window)
    return compute_analytics(snapshot, filters, pricing)
