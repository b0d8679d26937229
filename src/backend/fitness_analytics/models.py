from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class ContentKind(str, Enum):
    WORKOUT = "workout"
    PROGRAM = "program"


@dataclass(frozen=True)
class SubscriptionRecord:
    """
    Snapshot of an individual membership row.

    ``payment_ref`` is the payment-processor subscription id. Rows granted by an
    admin never carry one, which is how complimentary access is told apart from
    real revenue.
    """

    id: str
    user_id: str
    plan_type: str
    status: str
    created_at: datetime
    current_period_end: Optional[datetime] = None
    payment_ref: Optional[str] = None


@dataclass(frozen=True)
class CorporateSubscriptionRecord:
    """
    Snapshot of an organisation plan.

    Corporate billing is invoiced outside the app, so both the processor
    subscription (``payment_ref``) and customer (``customer_ref``) must be wired
    before the plan counts as paid.
    """

    id: str
    organization_name: str
    plan_type: str
    status: str
    created_at: datetime
    max_users: Optional[int] = None
    current_users_count: Optional[int] = None
    current_period_end: Optional[datetime] = None
    payment_ref: Optional[str] = None
    customer_ref: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRecord:
    id: str
    user_id: str
    content_type: str
    content_name: str
    purchased_at: datetime
    price: Optional[Decimal] = None
    content_id: Optional[str] = None
    fulfillment_status: Optional[str] = None


@dataclass(frozen=True)
class InteractionRecord:
    user_id: str
    content_name: str
    created_at: datetime
    is_completed: bool = False
    is_favorite: bool = False
    has_viewed: bool = False
    rating: Optional[int] = None


@dataclass(frozen=True)
class TrafficEvent:
    session_id: str
    event_type: str
    created_at: datetime
    landing_page: Optional[str] = None
    device_type: Optional[str] = None
    referral_source: Optional[str] = None


@dataclass(frozen=True)
class ContactMessageRecord:
    id: str
    category: str
    status: str
    created_at: datetime
    responded_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserProfileRecord:
    user_id: str
    created_at: datetime
    full_name: Optional[str] = None


@dataclass(frozen=True)
class TrainingRequestRecord:
    """A personal training request; ``payment_status`` is the processor state, e.g. ``paid``."""

    id: str
    status: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    payment_status: Optional[str] = None


@dataclass(frozen=True)
class ShopProductRecord:
    id: str
    title: str
    category: Optional[str] = None
    stock_quantity: Optional[int] = None
    product_type: Optional[str] = None


@dataclass(frozen=True)
class DateWindow:
    """``start`` is inclusive and ``end`` is exclusive."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class AnalyticsFilters:
    """
    Filters shared by every analytics section.

    ``categories`` restricts the revenue series to a subset of the revenue
    categories; ``None`` keeps all of them. ``top_n`` bounds every ranking table.
    """

    start: datetime
    end: datetime
    timezone: str = "UTC"
    categories: Optional[Tuple[str, ...]] = None
    top_n: int = 10


@dataclass(frozen=True)
class SourceSnapshot:
    """
    Raw records pulled for one request.

    A family that failed to load is an empty tuple and its name is listed in
    ``unavailable_sources``.
    """

    subscriptions: Sequence[SubscriptionRecord] = ()
    corporate_subscriptions: Sequence[CorporateSubscriptionRecord] = ()
    purchases: Sequence[PurchaseRecord] = ()
    workout_interactions: Sequence[InteractionRecord] = ()
    program_interactions: Sequence[InteractionRecord] = ()
    traffic_events: Sequence[TrafficEvent] = ()
    contact_messages: Sequence[ContactMessageRecord] = ()
    profiles: Sequence[UserProfileRecord] = ()
    training_requests: Sequence[TrainingRequestRecord] = ()
    shop_products: Sequence[ShopProductRecord] = ()
    unavailable_sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Period:
    key: str
    label: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PeriodTotals:
    period: str
    label: str
    category_totals: Dict[str, Decimal]
    total: Decimal
    active_subscribers: int = 0


@dataclass(frozen=True)
class DistributionSlice:
    category: str
    amount: Decimal
    percentage: float


@dataclass(frozen=True)
class RankedItem:
    label: str
    value: Decimal
    count: int = 0
    metrics: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseTimeStats:
    count: int = 0
    average: float = 0.0
    median: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0


@dataclass(frozen=True)
class TrendPoint:
    period: str
    label: str
    values: Dict[str, Any]


@dataclass(frozen=True)
class RevenueSection:
    time_series: Sequence[PeriodTotals]
    category_totals: Dict[str, Decimal]
    grand_total: Decimal
    distribution: Sequence[DistributionSlice]


@dataclass(frozen=True)
class SubscriptionSection:
    active_by_plan: Dict[str, int]
    paid: int
    complimentary: int
    distribution: Sequence[DistributionSlice]


@dataclass(frozen=True)
class PurchaseSection:
    total_revenue: Decimal
    total_purchases: int
    average_order_value: Decimal
    unique_customers: int
    conversion_rate: float
    customer_lifetime_value: Decimal
    revenue_by_day: Sequence[TrendPoint]
    best_sellers: Sequence[RankedItem]
    top_customers: Sequence[RankedItem]
    content_types: Sequence[DistributionSlice]


@dataclass(frozen=True)
class EngagementSection:
    workout_completion_rate: int
    program_completion_rate: int
    workout_interactions: int
    program_interactions: int
    completion_trend: Sequence[TrendPoint]
    popular_workouts: Sequence[RankedItem]
    popular_programs: Sequence[RankedItem]


@dataclass(frozen=True)
class CorporateSection:
    """
    Corporate plans active at any point of the window.

    ``paid_revenue`` is the run-rate: each paid plan's price counted once for
    the whole window. The revenue section's ``corporate`` category instead
    bills every paid plan once per active month, so the two only agree on
    single-month windows.
    """

    total_subscriptions: int
    active_subscriptions: int
    paid_revenue: Decimal
    total_members: int
    average_utilization: int
    plans: Sequence[RankedItem]


@dataclass(frozen=True)
class WebsiteSection:
    total_visits: int
    unique_sessions: int
    pages_per_session: float
    top_pages: Sequence[RankedItem]
    devices: Sequence[RankedItem]
    referral_sources: Sequence[RankedItem]
    daily_visitors: Sequence[TrendPoint]


@dataclass(frozen=True)
class SupportSection:
    total_messages: int
    responded_messages: int
    response_rate: float
    response_times: ResponseTimeStats
    categories: Sequence[RankedItem]
    statuses: Sequence[RankedItem]


@dataclass(frozen=True)
class PersonalTrainingSection:
    total_requests: int
    pending_requests: int
    completed_requests: int
    paid_requests: int
    conversion_rate: float
    completion_hours: ResponseTimeStats
    completion_buckets: Sequence[RankedItem]
    statuses: Sequence[RankedItem]
    monthly: Sequence[TrendPoint]


@dataclass(frozen=True)
class ShopSection:
    """
    Physical shop orders, a drill-down of the standalone purchase revenue.

    ``products`` lists direct-sale catalogue items with in-window sales and
    their current stock.
    """

    total_revenue: Decimal
    total_orders: int
    average_order_value: Decimal
    pending_orders: int
    revenue_by_category: Sequence[RankedItem]
    top_products: Sequence[RankedItem]
    fulfillment_statuses: Sequence[RankedItem]
    products: Sequence[RankedItem]


@dataclass(frozen=True)
class GrowthSection:
    total_users: int
    new_users: int
    monthly: Sequence[TrendPoint]


@dataclass(frozen=True)
class ReportSummary:
    """Flat metrics object behind the summary cards and the business report."""

    total_users: int
    new_users: int
    gold_subscribers: int
    platinum_subscribers: int
    total_revenue: Decimal
    subscription_revenue: Decimal
    standalone_revenue: Decimal
    standalone_purchases: int
    workout_completions: int
    program_completions: int
    total_interactions: int
    completion_rate: int
    conversion_rate: float
    customer_lifetime_value: Decimal
    website_visitors: int
    active_corporate: int
    corporate_members: int
    response_rate: float
    median_response_hours: float
    best_seller: Optional[str] = None


@dataclass(frozen=True)
class AnalyticsMeta:
    start: datetime
    end: datetime
    timezone: str
    periods: Sequence[str]
    unavailable_sources: Sequence[str] = ()


@dataclass(frozen=True)
class AnalyticsResult:
    revenue: RevenueSection
    subscriptions: SubscriptionSection
    purchases: PurchaseSection
    engagement: EngagementSection
    corporate: CorporateSection
    website: WebsiteSection
    support: SupportSection
    growth: GrowthSection
    personal_training: PersonalTrainingSection
    shop: ShopSection
    summary: ReportSummary
    meta: AnalyticsMeta

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into a JSON-serialisable structure.

        Money is rendered as floats rounded to cents and timestamps as ISO
        strings, so identical results always serialise identically.
        """

        def _serialize(obj: Any) -> Any:
            if isinstance(obj, Decimal):
                return float(obj.quantize(Decimal("0.01")))
            if isinstance(obj, datetime):
                return obj.isoformat()
            if isinstance(obj, Enum):
                return obj.value
            if hasattr(obj, "__dataclass_fields__"):
                return {
                    _camel(name): _serialize(getattr(obj, name))
                    for name in obj.__dataclass_fields__
                }
            if isinstance(obj, dict):
                return {str(key): _serialize(value) for key, value in obj.items()}
            if isinstance(obj, (list, tuple)):
                return [_serialize(item) for item in obj]
            return obj

        return _serialize(self)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


SOURCE_NAMES: List[str] = [
    "subscriptions",
    "corporate_subscriptions",
    "purchases",
    "workout_interactions",
    "program_interactions",
    "traffic_events",
    "contact_messages",
    "profiles",
    "training_requests",
    "shop_products",
]
