"""
Backend fitness analytics helpers.

This package turns raw subscription, purchase, corporate plan, interaction,
traffic, support and profile rows into the reconciled, time-bucketed metrics
shown on the admin analytics views.
"""

from .classifier import RevenueClass, classify, is_paid  # noqa: F401
from .config import AnalyticsConfig, load_config  # noqa: F401
from .errors import (  # noqa: F401
    AnalyticsError,
    AnalyticsUnavailableError,
    InvalidWindowError,
    SourceUnavailableError,
)
from .models import (  # noqa: F401
    AnalyticsFilters,
    AnalyticsResult,
    ContactMessageRecord,
    ContentKind,
    CorporateSubscriptionRecord,
    DateWindow,
    InteractionRecord,
    PurchaseRecord,
    ShopProductRecord,
    SourceSnapshot,
    SubscriptionRecord,
    TrafficEvent,
    TrainingRequestRecord,
    UserProfileRecord,
)
from .pricing import PricingTable, load_pricing_table  # noqa: F401
from .repository import (  # noqa: F401
    AnalyticsRepository,
    InMemoryAnalyticsRepository,
    RepositoryConfig,
    SQLAnalyticsRepository,
    build_repository_from_env,
)
from .service import AnalyticsService, compute_analytics, run_analytics  # noqa: F401
from .session import AnalyticsSession, RefreshOutcome  # noqa: F401
from .sources import load_snapshot  # noqa: F401
