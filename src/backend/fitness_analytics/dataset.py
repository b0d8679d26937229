from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterator, Sequence, Tuple, TypeVar
from zoneinfo import ZoneInfo

from .bucketing import coerce_timezone, normalize_datetime
from .models import (
    ContactMessageRecord,
    ContentKind,
    CorporateSubscriptionRecord,
    InteractionRecord,
    PurchaseRecord,
    ShopProductRecord,
    SourceSnapshot,
    SubscriptionRecord,
    TrafficEvent,
    TrainingRequestRecord,
    UserProfileRecord,
)

T = TypeVar("T")


def _localize(records: Sequence[T], tz: ZoneInfo, *fields: str) -> Tuple[T, ...]:
    localized = []
    for record in records:
        changes = {
            name: normalize_datetime(getattr(record, name), tz)
            for name in fields
            if getattr(record, name) is not None
        }
        localized.append(replace(record, **changes))
    # sorted() is stable, so rows sharing a timestamp keep their source order.
    return tuple(sorted(localized, key=lambda record: getattr(record, fields[0])))


def _between(records: Sequence[T], field_name: str, start: datetime, end: datetime) -> Iterator[T]:
    for record in records:
        if start <= getattr(record, field_name) < end:
            yield record


@dataclass
class AnalyticsDataset:
    """
    Request-scoped view over a source snapshot.

    Every timestamp is converted to ``timezone`` and each family is sorted
    chronologically, oldest first, which is the order rankings rely on for
    tie-breaking.
    """

    snapshot: SourceSnapshot
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        self.tz = coerce_timezone(self.timezone)
        tz = self.tz
        snap = self.snapshot
        self.subscriptions: Tuple[SubscriptionRecord, ...] = _localize(
            snap.subscriptions, tz, "created_at", "current_period_end"
        )
        self.corporate_subscriptions: Tuple[CorporateSubscriptionRecord, ...] = _localize(
            snap.corporate_subscriptions, tz, "created_at", "current_period_end"
        )
        self.purchases: Tuple[PurchaseRecord, ...] = _localize(snap.purchases, tz, "purchased_at")
        self.workout_interactions: Tuple[InteractionRecord, ...] = _localize(
            snap.workout_interactions, tz, "created_at"
        )
        self.program_interactions: Tuple[InteractionRecord, ...] = _localize(
            snap.program_interactions, tz, "created_at"
        )
        self.traffic_events: Tuple[TrafficEvent, ...] = _localize(snap.traffic_events, tz, "created_at")
        self.contact_messages: Tuple[ContactMessageRecord, ...] = _localize(
            snap.contact_messages, tz, "created_at", "responded_at"
        )
        self.profiles: Tuple[UserProfileRecord, ...] = _localize(snap.profiles, tz, "created_at")
        self.training_requests: Tuple[TrainingRequestRecord, ...] = _localize(
            snap.training_requests, tz, "created_at", "completed_at"
        )
        self.shop_products: Tuple[ShopProductRecord, ...] = tuple(snap.shop_products)

    @property
    def unavailable_sources(self) -> Tuple[str, ...]:
        return tuple(self.snapshot.unavailable_sources)

    def localize(self, dt: datetime) -> datetime:
        return normalize_datetime(dt, self.tz)

    def interactions(self, kind: ContentKind) -> Tuple[InteractionRecord, ...]:
        if kind is ContentKind.WORKOUT:
            return self.workout_interactions
        return self.program_interactions

    def purchases_between(self, start: datetime, end: datetime) -> Iterator[PurchaseRecord]:
        return _between(self.purchases, "purchased_at", start, end)

    def interactions_between(self, kind: ContentKind, start: datetime, end: datetime) -> Iterator[InteractionRecord]:
        return _between(self.interactions(kind), "created_at", start, end)

    def traffic_between(self, start: datetime, end: datetime) -> Iterator[TrafficEvent]:
        return _between(self.traffic_events, "created_at", start, end)

    def messages_between(self, start: datetime, end: datetime) -> Iterator[ContactMessageRecord]:
        return _between(self.contact_messages, "created_at", start, end)

    def training_requests_between(self, start: datetime, end: datetime) -> Iterator[TrainingRequestRecord]:
        return _between(self.training_requests, "created_at", start, end)

    def profiles_between(self, start: datetime, end: datetime) -> Iterator[UserProfileRecord]:
        return _between(self.profiles, "created_at", start, end)

    def profiles_before(self, end: datetime) -> int:
        return sum(1 for profile in self.profiles if profile.created_at < end)
