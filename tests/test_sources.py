"""
Tests for repositories and concurrent snapshot loading.

Covers:
- Window semantics of the in-memory repository
- The SQL repository against an in-memory SQLite database
- Partial source failures and total failure
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from backend.fitness_analytics.errors import AnalyticsUnavailableError
from backend.fitness_analytics.models import (
    ContentKind,
    DateWindow,
    ShopProductRecord,
    TrainingRequestRecord,
    UserProfileRecord,
)
from backend.fitness_analytics.repository import (
    InMemoryAnalyticsRepository,
    RepositoryConfig,
    SQLAnalyticsRepository,
    build_repository_from_env,
)
from backend.fitness_analytics.sources import load_snapshot

from conftest import APRIL_START, MARCH_START, make_interaction, make_purchase, make_subscription

MARCH = DateWindow(MARCH_START, APRIL_START)


class BrokenPurchasesRepository(InMemoryAnalyticsRepository):
    def list_purchases(self, window=None):
        raise RuntimeError("connection reset")


class BrokenRepository(InMemoryAnalyticsRepository):
    def _fail(self, *args, **kwargs):
        raise RuntimeError("database is down")

    list_subscriptions = _fail
    list_corporate_subscriptions = _fail
    list_purchases = _fail
    list_interactions = _fail
    list_traffic_events = _fail
    list_contact_messages = _fail
    list_profiles = _fail
    list_training_requests = _fail
    list_shop_products = _fail


class TestInMemoryRepository:
    """Window rules applied to inline records."""

    def test_subscriptions_use_overlap(self):
        repository = InMemoryAnalyticsRepository(
            subscriptions=(
                make_subscription("before", created_at=datetime(2024, 1, 1), current_period_end=datetime(2024, 2, 1)),
                make_subscription("spanning", created_at=datetime(2024, 1, 1)),
                make_subscription("after", created_at=datetime(2024, 4, 1)),
            )
        )
        assert [s.id for s in repository.list_subscriptions(MARCH)] == ["spanning"]
        assert len(repository.list_subscriptions()) == 3

    def test_timestamped_families_use_half_open_range(self):
        repository = InMemoryAnalyticsRepository(
            purchases=(
                make_purchase("start", purchased_at=MARCH_START),
                make_purchase("end", purchased_at=APRIL_START),
            ),
            workout_interactions=(make_interaction(created_at=datetime(2024, 2, 1)),),
        )
        assert [p.id for p in repository.list_purchases(MARCH)] == ["start"]
        assert repository.list_interactions(ContentKind.WORKOUT, MARCH) == ()

    def test_profiles_before_window_end(self):
        repository = InMemoryAnalyticsRepository(
            profiles=(
                UserProfileRecord("old", datetime(2023, 1, 1)),
                UserProfileRecord("late", datetime(2024, 5, 1)),
            )
        )
        assert [p.user_id for p in repository.list_profiles(MARCH)] == ["old"]

    def test_training_requests_windowed_and_products_not(self):
        repository = InMemoryAnalyticsRepository(
            training_requests=(
                TrainingRequestRecord("in", "pending", MARCH_START),
                TrainingRequestRecord("out", "pending", APRIL_START),
            ),
            shop_products=(ShopProductRecord("prod-1", "Kettlebell"),),
        )
        assert [r.id for r in repository.list_training_requests(MARCH)] == ["in"]
        assert [p.id for p in repository.list_shop_products()] == ["prod-1"]

    def test_naive_records_against_aware_window(self):
        from zoneinfo import ZoneInfo

        utc = ZoneInfo("UTC")
        window = DateWindow(datetime(2024, 3, 1, tzinfo=utc), datetime(2024, 4, 1, tzinfo=utc))
        repository = InMemoryAnalyticsRepository(purchases=(make_purchase("p1"),))
        assert len(repository.list_purchases(window)) == 1


class TestSQLRepository:
    """Row mapping through SQLAlchemy text queries."""

    @pytest.fixture
    def engine(self):
        engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
        with engine.begin() as connection:
            connection.execute(
                text(
                    "CREATE TABLE user_subscriptions (id TEXT, user_id TEXT, plan_type TEXT, status TEXT,"
                    " created_at TIMESTAMP, current_period_end TIMESTAMP, stripe_subscription_id TEXT)"
                )
            )
            connection.execute(
                text(
                    "CREATE TABLE user_purchases (id TEXT, user_id TEXT, content_type TEXT, content_id TEXT,"
                    " content_name TEXT, price NUMERIC, purchased_at TIMESTAMP, fulfillment_status TEXT)"
                )
            )
            connection.execute(
                text(
                    "CREATE TABLE workout_interactions (user_id TEXT, workout_name TEXT, is_completed BOOLEAN,"
                    " is_favorite BOOLEAN, has_viewed BOOLEAN, rating INTEGER, created_at TIMESTAMP)"
                )
            )
            connection.execute(
                text("CREATE TABLE profiles (user_id TEXT, full_name TEXT, created_at TIMESTAMP)")
            )
            connection.execute(
                text(
                    "CREATE TABLE personal_training_requests (id TEXT, status TEXT, created_at TIMESTAMP,"
                    " completed_at TIMESTAMP, stripe_payment_status TEXT)"
                )
            )
            connection.execute(
                text(
                    "CREATE TABLE shop_products (id TEXT, title TEXT, category TEXT, stock_quantity INTEGER,"
                    " product_type TEXT)"
                )
            )
            connection.execute(
                text(
                    "INSERT INTO user_subscriptions VALUES"
                    " (:id, :user_id, :plan_type, :status, :created_at, :current_period_end, :ref)"
                ),
                [
                    {
                        "id": "s1",
                        "user_id": "u1",
                        "plan_type": "gold",
                        "status": "active",
                        "created_at": datetime(2024, 2, 1),
                        "current_period_end": None,
                        "ref": "sub_1",
                    },
                    {
                        "id": "s2",
                        "user_id": "u2",
                        "plan_type": "platinum",
                        "status": "canceled",
                        "created_at": datetime(2024, 1, 1),
                        "current_period_end": datetime(2024, 2, 1),
                        "ref": None,
                    },
                ],
            )
            connection.execute(
                text(
                    "INSERT INTO user_purchases VALUES"
                    " (:id, :user_id, :content_type, :content_id, :content_name, :price, :purchased_at, :fulfillment)"
                ),
                [
                    {
                        "id": "p1",
                        "user_id": "u1",
                        "content_type": "workout",
                        "content_id": 42,
                        "content_name": "Core Blast",
                        "price": "4.99",
                        "purchased_at": datetime(2024, 3, 3, 9),
                        "fulfillment": None,
                    },
                    {
                        "id": "p2",
                        "user_id": "u1",
                        "content_type": "workout",
                        "content_id": None,
                        "content_name": None,
                        "price": None,
                        "purchased_at": datetime(2024, 4, 3, 9),
                        "fulfillment": "shipped",
                    },
                ],
            )
            connection.execute(
                text(
                    "INSERT INTO workout_interactions VALUES"
                    " (:user_id, :name, :completed, :favorite, :viewed, :rating, :created_at)"
                ),
                {
                    "user_id": "u1",
                    "name": "Morning Flow",
                    "completed": 1,
                    "favorite": 0,
                    "viewed": 1,
                    "rating": None,
                    "created_at": datetime(2024, 3, 5, 7),
                },
            )
            connection.execute(
                text("INSERT INTO profiles VALUES (:user_id, :full_name, :created_at)"),
                {"user_id": "u1", "full_name": "Ada Lovelace", "created_at": datetime(2024, 1, 5)},
            )
            connection.execute(
                text(
                    "INSERT INTO personal_training_requests VALUES"
                    " (:id, :status, :created_at, :completed_at, :payment)"
                ),
                [
                    {
                        "id": "t1",
                        "status": "completed",
                        "created_at": datetime(2024, 3, 1, 8),
                        "completed_at": datetime(2024, 3, 2, 8),
                        "payment": "paid",
                    },
                    {
                        "id": "t2",
                        "status": None,
                        "created_at": datetime(2024, 2, 1, 8),
                        "completed_at": None,
                        "payment": None,
                    },
                ],
            )
            connection.execute(
                text("INSERT INTO shop_products VALUES (:id, :title, :category, :stock, :product_type)"),
                {"id": "prod-1", "title": "Kettlebell", "category": None, "stock": None, "product_type": "direct_sale"},
            )
        yield engine
        engine.dispose()

    def test_subscriptions_overlapping_window(self, engine):
        repository = SQLAnalyticsRepository(engine)
        records = repository.list_subscriptions(MARCH)

        assert [record.id for record in records] == ["s1"]
        assert records[0].payment_ref == "sub_1"
        assert records[0].created_at == datetime(2024, 2, 1)
        assert records[0].current_period_end is None

    def test_purchases_in_window(self, engine):
        records = SQLAnalyticsRepository(engine).list_purchases(MARCH)

        assert len(records) == 1
        assert records[0].price == Decimal("4.99")
        assert records[0].content_id == "42"
        assert records[0].purchased_at == datetime(2024, 3, 3, 9)

    def test_missing_values_are_defaulted(self, engine):
        records = SQLAnalyticsRepository(engine).list_purchases()
        later = [record for record in records if record.id == "p2"][0]

        assert later.price == Decimal("0")
        assert later.content_name == ""
        assert later.content_id is None

    def test_interaction_flags(self, engine):
        records = SQLAnalyticsRepository(engine).list_interactions(ContentKind.WORKOUT, MARCH)

        assert records[0].content_name == "Morning Flow"
        assert records[0].is_completed is True
        assert records[0].is_favorite is False

    def test_profiles(self, engine):
        records = SQLAnalyticsRepository(engine).list_profiles(MARCH)
        assert [(record.user_id, record.full_name) for record in records] == [("u1", "Ada Lovelace")]

    def test_fulfillment_status(self, engine):
        records = SQLAnalyticsRepository(engine).list_purchases()
        assert [(record.id, record.fulfillment_status) for record in records] == [("p1", None), ("p2", "shipped")]

    def test_training_requests_in_window(self, engine):
        records = SQLAnalyticsRepository(engine).list_training_requests(MARCH)

        assert [record.id for record in records] == ["t1"]
        assert records[0].completed_at == datetime(2024, 3, 2, 8)
        assert records[0].payment_status == "paid"

    def test_training_request_defaults(self, engine):
        older = SQLAnalyticsRepository(engine).list_training_requests()[0]

        assert older.id == "t2"
        assert older.status == "pending"
        assert older.completed_at is None

    def test_shop_products_are_not_windowed(self, engine):
        products = SQLAnalyticsRepository(engine).list_shop_products()

        assert [(p.id, p.title, p.category, p.stock_quantity) for p in products] == [("prod-1", "Kettlebell", None, 0)]


class TestRepositoryFromEnv:
    def test_no_url_means_no_repository(self):
        assert build_repository_from_env(RepositoryConfig(database_url=None)) is None

    def test_url_builds_sql_repository(self):
        repository = build_repository_from_env(RepositoryConfig(database_url="sqlite://"))
        assert isinstance(repository, SQLAnalyticsRepository)


class TestLoadSnapshot:
    """Fan-out loading with partial failure."""

    def test_all_families_loaded(self):
        repository = InMemoryAnalyticsRepository(
            subscriptions=(make_subscription("s1"),),
            purchases=(make_purchase("p1"),),
            program_interactions=(make_interaction("12 Week Strength"),),
        )
        snapshot = asyncio.run(load_snapshot(repository, MARCH))

        assert len(snapshot.subscriptions) == 1
        assert len(snapshot.purchases) == 1
        assert len(snapshot.program_interactions) == 1
        assert snapshot.workout_interactions == ()
        assert snapshot.unavailable_sources == ()

    def test_failing_source_is_isolated(self, caplog):
        repository = BrokenPurchasesRepository(subscriptions=(make_subscription("s1"),))
        with caplog.at_level(logging.WARNING):
            snapshot = asyncio.run(load_snapshot(repository, MARCH))

        assert snapshot.purchases == ()
        assert snapshot.unavailable_sources == ("purchases",)
        assert len(snapshot.subscriptions) == 1
        assert "connection reset" in caplog.text

    def test_total_failure_raises(self):
        with pytest.raises(AnalyticsUnavailableError) as excinfo:
            asyncio.run(load_snapshot(BrokenRepository(), MARCH))

        assert str(excinfo.value) == "Failed to load analytics"
        assert len(excinfo.value.failures) == 10
