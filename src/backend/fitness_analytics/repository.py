from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Row

from .defaults import amount_or_zero, count_or_zero, flag, timestamp_or_none
from .models import (
    ContactMessageRecord,
    ContentKind,
    CorporateSubscriptionRecord,
    DateWindow,
    InteractionRecord,
    PurchaseRecord,
    ShopProductRecord,
    SubscriptionRecord,
    TrafficEvent,
    TrainingRequestRecord,
    UserProfileRecord,
)


class AnalyticsRepository:
    """
    Read-only access to the record families the analytics engine consumes.

    Subscription-like families use overlap semantics: a plan is returned when it
    was created before ``window.end`` and had not ended before
    ``window.start``. Every other family is filtered on its own timestamp in
    ``[window.start, window.end)``. Profiles are returned when created before
    ``window.end`` so callers can count the registered-user base. Shop products
    are a catalogue and are never windowed. ``None`` means no date restriction.
    """

    def list_subscriptions(self, window: Optional[DateWindow] = None) -> Sequence[SubscriptionRecord]:
        raise NotImplementedError

    def list_corporate_subscriptions(
        self, window: Optional[DateWindow] = None
    ) -> Sequence[CorporateSubscriptionRecord]:
        raise NotImplementedError

    def list_purchases(self, window: Optional[DateWindow] = None) -> Sequence[PurchaseRecord]:
        raise NotImplementedError

    def list_interactions(
        self, kind: ContentKind, window: Optional[DateWindow] = None
    ) -> Sequence[InteractionRecord]:
        raise NotImplementedError

    def list_traffic_events(self, window: Optional[DateWindow] = None) -> Sequence[TrafficEvent]:
        raise NotImplementedError

    def list_contact_messages(self, window: Optional[DateWindow] = None) -> Sequence[ContactMessageRecord]:
        raise NotImplementedError

    def list_profiles(self, window: Optional[DateWindow] = None) -> Sequence[UserProfileRecord]:
        raise NotImplementedError

    def list_training_requests(self, window: Optional[DateWindow] = None) -> Sequence[TrainingRequestRecord]:
        raise NotImplementedError

    def list_shop_products(self) -> Sequence[ShopProductRecord]:
        raise NotImplementedError


_INTERACTION_TABLES = {
    ContentKind.WORKOUT: ("workout_interactions", "workout_name"),
    ContentKind.PROGRAM: ("program_interactions", "program_name"),
}


class SQLAnalyticsRepository(AnalyticsRepository):
    """
    Load analytics records from the platform's relational schema.

    Expected tables:
      - user_subscriptions(id, user_id, plan_type, status, created_at,
        current_period_end, stripe_subscription_id)
      - corporate_subscriptions(id, organization_name, plan_type, status,
        max_users, current_users_count, created_at, current_period_end,
        stripe_subscription_id, stripe_customer_id)
      - user_purchases(id, user_id, content_type, content_id, content_name,
        price, purchased_at, fulfillment_status)
      - workout_interactions / program_interactions(user_id,
        workout_name|program_name, is_completed, is_favorite, has_viewed,
        rating, created_at)
      - social_media_analytics(session_id, event_type, landing_page,
        device_type, referral_source, created_at)
      - contact_messages(id, category, status, created_at, responded_at)
      - profiles(user_id, full_name, created_at)
      - personal_training_requests(id, status, created_at, completed_at,
        stripe_payment_status)
      - shop_products(id, title, category, stock_quantity, product_type)
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def _fetch(self, query: str, params: Dict[str, Any]) -> Sequence[Row]:
        with self.engine.connect() as connection:
            return connection.execute(text(query), params).fetchall()

    @staticmethod
    def _overlap_clause(window: Optional[DateWindow]) -> Tuple[str, Dict[str, Any]]:
        if window is None:
            return "", {}
        clause = (
            " WHERE created_at < :end"
            " AND (current_period_end IS NULL OR current_period_end >= :start)"
        )
        return clause, {"start": window.start, "end": window.end}

    @staticmethod
    def _range_clause(column: str, window: Optional[DateWindow]) -> Tuple[str, Dict[str, Any]]:
        if window is None:
            return "", {}
        return f" WHERE {column} >= :start AND {column} < :end", {"start": window.start, "end": window.end}

    def list_subscriptions(self, window: Optional[DateWindow] = None) -> Sequence[SubscriptionRecord]:
        clause, params = self._overlap_clause(window)
        rows = self._fetch(
            "SELECT id, user_id, plan_type, status, created_at, current_period_end, stripe_subscription_id"
            " FROM user_subscriptions" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_subscription(row) for row in rows)

    def list_corporate_subscriptions(
        self, window: Optional[DateWindow] = None
    ) -> Sequence[CorporateSubscriptionRecord]:
        clause, params = self._overlap_clause(window)
        rows = self._fetch(
            "SELECT id, organization_name, plan_type, status, max_users, current_users_count, created_at,"
            " current_period_end, stripe_subscription_id, stripe_customer_id"
            " FROM corporate_subscriptions" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_corporate(row) for row in rows)

    def list_purchases(self, window: Optional[DateWindow] = None) -> Sequence[PurchaseRecord]:
        clause, params = self._range_clause("purchased_at", window)
        rows = self._fetch(
            "SELECT id, user_id, content_type, content_id, content_name, price, purchased_at,"
            " fulfillment_status"
            " FROM user_purchases" + clause + " ORDER BY purchased_at ASC",
            params,
        )
        return tuple(self._row_to_purchase(row) for row in rows)

    def list_interactions(
        self, kind: ContentKind, window: Optional[DateWindow] = None
    ) -> Sequence[InteractionRecord]:
        table, name_column = _INTERACTION_TABLES[kind]
        clause, params = self._range_clause("created_at", window)
        rows = self._fetch(
            f"SELECT user_id, {name_column} AS content_name, is_completed, is_favorite, has_viewed,"
            f" rating, created_at FROM {table}" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_interaction(row) for row in rows)

    def list_traffic_events(self, window: Optional[DateWindow] = None) -> Sequence[TrafficEvent]:
        clause, params = self._range_clause("created_at", window)
        rows = self._fetch(
            "SELECT session_id, event_type, landing_page, device_type, referral_source, created_at"
            " FROM social_media_analytics" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_traffic_event(row) for row in rows)

    def list_contact_messages(self, window: Optional[DateWindow] = None) -> Sequence[ContactMessageRecord]:
        clause, params = self._range_clause("created_at", window)
        rows = self._fetch(
            "SELECT id, category, status, created_at, responded_at"
            " FROM contact_messages" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_message(row) for row in rows)

    def list_profiles(self, window: Optional[DateWindow] = None) -> Sequence[UserProfileRecord]:
        clause, params = "", {}
        if window is not None:
            clause, params = " WHERE created_at < :end", {"end": window.end}
        rows = self._fetch(
            "SELECT user_id, full_name, created_at FROM profiles" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_profile(row) for row in rows)

    def list_training_requests(self, window: Optional[DateWindow] = None) -> Sequence[TrainingRequestRecord]:
        clause, params = self._range_clause("created_at", window)
        rows = self._fetch(
            "SELECT id, status, created_at, completed_at, stripe_payment_status"
            " FROM personal_training_requests" + clause + " ORDER BY created_at ASC",
            params,
        )
        return tuple(self._row_to_training_request(row) for row in rows)

    def list_shop_products(self) -> Sequence[ShopProductRecord]:
        rows = self._fetch(
            "SELECT id, title, category, stock_quantity, product_type FROM shop_products ORDER BY id ASC", {}
        )
        return tuple(self._row_to_shop_product(row) for row in rows)

    @staticmethod
    def _row_to_subscription(row: Row) -> SubscriptionRecord:
        return SubscriptionRecord(
            id=str(row.id),
            user_id=str(row.user_id),
            plan_type=str(row.plan_type),
            status=str(row.status),
            created_at=timestamp_or_none(row.created_at),
            current_period_end=timestamp_or_none(row.current_period_end),
            payment_ref=row.stripe_subscription_id,
        )

    @staticmethod
    def _row_to_corporate(row: Row) -> CorporateSubscriptionRecord:
        return CorporateSubscriptionRecord(
            id=str(row.id),
            organization_name=str(row.organization_name or ""),
            plan_type=str(row.plan_type),
            status=str(row.status),
            created_at=timestamp_or_none(row.created_at),
            max_users=row.max_users,
            current_users_count=count_or_zero(row.current_users_count),
            current_period_end=timestamp_or_none(row.current_period_end),
            payment_ref=row.stripe_subscription_id,
            customer_ref=row.stripe_customer_id,
        )

    @staticmethod
    def _row_to_purchase(row: Row) -> PurchaseRecord:
        return PurchaseRecord(
            id=str(row.id),
            user_id=str(row.user_id),
            content_type=str(row.content_type),
            content_name=str(row.content_name or ""),
            purchased_at=timestamp_or_none(row.purchased_at),
            price=amount_or_zero(row.price),
            content_id=None if row.content_id is None else str(row.content_id),
            fulfillment_status=row.fulfillment_status,
        )

    @staticmethod
    def _row_to_interaction(row: Row) -> InteractionRecord:
        return InteractionRecord(
            user_id=str(row.user_id),
            content_name=str(row.content_name or ""),
            created_at=timestamp_or_none(row.created_at),
            is_completed=flag(row.is_completed),
            is_favorite=flag(row.is_favorite),
            has_viewed=flag(row.has_viewed),
            rating=row.rating,
        )

    @staticmethod
    def _row_to_traffic_event(row: Row) -> TrafficEvent:
        return TrafficEvent(
            session_id=str(row.session_id),
            event_type=str(row.event_type),
            created_at=timestamp_or_none(row.created_at),
            landing_page=row.landing_page,
            device_type=row.device_type,
            referral_source=row.referral_source,
        )

    @staticmethod
    def _row_to_message(row: Row) -> ContactMessageRecord:
        return ContactMessageRecord(
            id=str(row.id),
            category=str(row.category or "general"),
            status=str(row.status or "new"),
            created_at=timestamp_or_none(row.created_at),
            responded_at=timestamp_or_none(row.responded_at),
        )

    @staticmethod
    def _row_to_profile(row: Row) -> UserProfileRecord:
        return UserProfileRecord(
            user_id=str(row.user_id),
            created_at=timestamp_or_none(row.created_at),
            full_name=row.full_name,
        )

    @staticmethod
    def _row_to_training_request(row: Row) -> TrainingRequestRecord:
        return TrainingRequestRecord(
            id=str(row.id),
            status=str(row.status or "pending"),
            created_at=timestamp_or_none(row.created_at),
            completed_at=timestamp_or_none(row.completed_at),
            payment_status=row.stripe_payment_status,
        )

    @staticmethod
    def _row_to_shop_product(row: Row) -> ShopProductRecord:
        return ShopProductRecord(
            id=str(row.id),
            title=str(row.title or ""),
            category=row.category,
            stock_quantity=count_or_zero(row.stock_quantity),
            product_type=row.product_type,
        )


def _align(value: datetime, reference: datetime) -> datetime:
    # Inline payloads may mix naive and aware timestamps; naive ones take the
    # window's zone so comparisons never raise.
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.replace(tzinfo=None)
    return value


def _in_range(value: datetime, window: Optional[DateWindow]) -> bool:
    if window is None:
        return True
    return window.start <= _align(value, window.start) < window.end


def _overlaps(created_at: datetime, period_end: Optional[datetime], window: Optional[DateWindow]) -> bool:
    if window is None:
        return True
    if _align(created_at, window.end) >= window.end:
        return False
    return period_end is None or _align(period_end, window.start) >= window.start


class InMemoryAnalyticsRepository(AnalyticsRepository):
    """
    Serve records supplied inline, applying the same window rules as SQL.

    Used for ad-hoc requests that ship their own payloads and in tests.
    """

    def __init__(
        self,
        subscriptions: Iterable[SubscriptionRecord] = (),
        corporate_subscriptions: Iterable[CorporateSubscriptionRecord] = (),
        purchases: Iterable[PurchaseRecord] = (),
        workout_interactions: Iterable[InteractionRecord] = (),
        program_interactions: Iterable[InteractionRecord] = (),
        traffic_events: Iterable[TrafficEvent] = (),
        contact_messages: Iterable[ContactMessageRecord] = (),
        profiles: Iterable[UserProfileRecord] = (),
        training_requests: Iterable[TrainingRequestRecord] = (),
        shop_products: Iterable[ShopProductRecord] = (),
    ):
        self.subscriptions = tuple(subscriptions)
        self.corporate_subscriptions = tuple(corporate_subscriptions)
        self.purchases = tuple(purchases)
        self.interactions = {
            ContentKind.WORKOUT: tuple(workout_interactions),
            ContentKind.PROGRAM: tuple(program_interactions),
        }
        self.traffic_events = tuple(traffic_events)
        self.contact_messages = tuple(contact_messages)
        self.profiles = tuple(profiles)
        self.training_requests = tuple(training_requests)
        self.shop_products = tuple(shop_products)

    def list_subscriptions(self, window: Optional[DateWindow] = None) -> Sequence[SubscriptionRecord]:
        return tuple(s for s in self.subscriptions if _overlaps(s.created_at, s.current_period_end, window))

    def list_corporate_subscriptions(
        self, window: Optional[DateWindow] = None
    ) -> Sequence[CorporateSubscriptionRecord]:
        return tuple(
            s for s in self.corporate_subscriptions if _overlaps(s.created_at, s.current_period_end, window)
        )

    def list_purchases(self, window: Optional[DateWindow] = None) -> Sequence[PurchaseRecord]:
        return tuple(p for p in self.purchases if _in_range(p.purchased_at, window))

    def list_interactions(
        self, kind: ContentKind, window: Optional[DateWindow] = None
    ) -> Sequence[InteractionRecord]:
        return tuple(i for i in self.interactions[kind] if _in_range(i.created_at, window))

    def list_traffic_events(self, window: Optional[DateWindow] = None) -> Sequence[TrafficEvent]:
        return tuple(e for e in self.traffic_events if _in_range(e.created_at, window))

    def list_contact_messages(self, window: Optional[DateWindow] = None) -> Sequence[ContactMessageRecord]:
        return tuple(m for m in self.contact_messages if _in_range(m.created_at, window))

    def list_profiles(self, window: Optional[DateWindow] = None) -> Sequence[UserProfileRecord]:
        if window is None:
            return self.profiles
        return tuple(p for p in self.profiles if _align(p.created_at, window.end) < window.end)

    def list_training_requests(self, window: Optional[DateWindow] = None) -> Sequence[TrainingRequestRecord]:
        return tuple(r for r in self.training_requests if _in_range(r.created_at, window))

    def list_shop_products(self) -> Sequence[ShopProductRecord]:
        return self.shop_products


@dataclass(frozen=True)
class RepositoryConfig:
    database_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(database_url=os.getenv("ANALYTICS_DATABASE_URL"))


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[AnalyticsRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.database_url:
        engine = create_engine(cfg.database_url)
        return SQLAnalyticsRepository(engine)
    return None
