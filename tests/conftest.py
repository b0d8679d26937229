"""
Shared fixtures for the fitness analytics tests.

All records live in March 2024 unless a test says otherwise, and every
timestamp is naive so it is read in the filter timezone (UTC by default).
"""

from datetime import datetime
from decimal import Decimal

import pytest

from backend.fitness_analytics.models import (
    AnalyticsFilters,
    ContactMessageRecord,
    CorporateSubscriptionRecord,
    InteractionRecord,
    PurchaseRecord,
    SourceSnapshot,
    SubscriptionRecord,
    TrafficEvent,
    UserProfileRecord,
)
from backend.fitness_analytics.pricing import PricingTable

MARCH_START = datetime(2024, 3, 1)
APRIL_START = datetime(2024, 4, 1)


def make_subscription(id, plan_type="gold", status="active", payment_ref="sub_123", **kwargs):
    kwargs.setdefault("user_id", f"user-{id}")
    kwargs.setdefault("created_at", datetime(2024, 2, 15))
    return SubscriptionRecord(
        id=id, plan_type=plan_type, status=status, payment_ref=payment_ref, **kwargs
    )


def make_corporate(id, plan_type="power", status="active", payment_ref="sub_corp", customer_ref="cus_corp", **kwargs):
    kwargs.setdefault("organization_name", f"Org {id}")
    kwargs.setdefault("created_at", datetime(2024, 2, 1))
    return CorporateSubscriptionRecord(
        id=id,
        plan_type=plan_type,
        status=status,
        payment_ref=payment_ref,
        customer_ref=customer_ref,
        **kwargs,
    )


def make_purchase(id, content_name="Core Blast", price="4.99", content_type="workout", **kwargs):
    kwargs.setdefault("user_id", "user-1")
    kwargs.setdefault("purchased_at", datetime(2024, 3, 10, 12))
    return PurchaseRecord(
        id=id,
        content_type=content_type,
        content_name=content_name,
        price=None if price is None else Decimal(price),
        **kwargs,
    )


def make_interaction(content_name="Morning Flow", completed=False, **kwargs):
    kwargs.setdefault("user_id", "user-1")
    kwargs.setdefault("created_at", datetime(2024, 3, 5, 8))
    return InteractionRecord(content_name=content_name, is_completed=completed, **kwargs)


@pytest.fixture
def filters():
    return AnalyticsFilters(start=MARCH_START, end=APRIL_START)


@pytest.fixture
def pricing():
    return PricingTable()


@pytest.fixture
def snapshot():
    """A small but complete month of platform activity."""
    return SourceSnapshot(
        subscriptions=(
            make_subscription("s1"),
            make_subscription("s2"),
            make_subscription("s3"),
            make_subscription("s4", plan_type="platinum"),
            # Granted by an admin: active, but no payment reference.
            make_subscription("s5", payment_ref=None),
            make_subscription("s6", status="canceled", current_period_end=datetime(2024, 2, 20)),
        ),
        corporate_subscriptions=(
            make_corporate("c1", plan_type="power", customer_ref=None, max_users=None, current_users_count=12),
            make_corporate("c2", plan_type="dynamic", max_users=10, current_users_count=8),
        ),
        purchases=(
            make_purchase("p1", "Core Blast", "4.99", user_id="user-1", purchased_at=datetime(2024, 3, 2, 9)),
            make_purchase("p2", "HIIT 30", "6.99", user_id="user-2", purchased_at=datetime(2024, 3, 3, 9)),
            make_purchase("p3", "HIIT 30", "6.99", user_id="user-3", purchased_at=datetime(2024, 3, 4, 9)),
            make_purchase("p4", "Core Blast", "4.99", user_id="user-2", purchased_at=datetime(2024, 3, 5, 9)),
            make_purchase(
                "p5",
                "1:1 Session",
                "50.00",
                content_type="personal_training",
                user_id="user-1",
                purchased_at=datetime(2024, 3, 6, 9),
            ),
            # Outside the window.
            make_purchase("p6", "Core Blast", "4.99", purchased_at=datetime(2024, 2, 28, 9)),
        ),
        workout_interactions=tuple(
            make_interaction("Morning Flow" if i < 6 else "Leg Day", completed=i < 6, has_viewed=True)
            for i in range(10)
        ),
        program_interactions=(
            make_interaction("12 Week Strength", completed=True, is_favorite=True),
            make_interaction("12 Week Strength", completed=False),
        ),
        traffic_events=(
            TrafficEvent("sess-1", "visit", datetime(2024, 3, 1, 10), landing_page="/", device_type="mobile"),
            TrafficEvent("sess-1", "visit", datetime(2024, 3, 1, 10, 5), landing_page="/pricing", device_type="mobile"),
            TrafficEvent("sess-1", "signup", datetime(2024, 3, 1, 10, 9), device_type="mobile"),
            TrafficEvent(
                "sess-2",
                "visit",
                datetime(2024, 3, 2, 18),
                landing_page="/",
                device_type="desktop",
                referral_source="instagram",
            ),
        ),
        contact_messages=(
            ContactMessageRecord(
                "m1", "billing", "responded", datetime(2024, 3, 1, 8), responded_at=datetime(2024, 3, 1, 10)
            ),
            ContactMessageRecord(
                "m2", "general", "responded", datetime(2024, 3, 2, 8), responded_at=datetime(2024, 3, 2, 18)
            ),
            ContactMessageRecord("m3", "general", "new", datetime(2024, 3, 3, 8)),
        ),
        profiles=(
            UserProfileRecord("user-1", datetime(2024, 1, 5), full_name="Ada Lovelace"),
            UserProfileRecord("user-2", datetime(2024, 3, 2), full_name=None),
            UserProfileRecord("user-3", datetime(2024, 3, 20), full_name="Grace Hopper"),
            UserProfileRecord("user-4", datetime(2024, 3, 21)),
        ),
    )
