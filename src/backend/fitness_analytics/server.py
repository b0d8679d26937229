"""FastAPI server that exposes the fitness analytics engine."""
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, validator

from .config import load_config
from .errors import AnalyticsUnavailableError, InvalidWindowError
from .models import (
    AnalyticsFilters,
    ContactMessageRecord,
    CorporateSubscriptionRecord,
    InteractionRecord,
    PurchaseRecord,
    ShopProductRecord,
    SubscriptionRecord,
    TrafficEvent,
    TrainingRequestRecord,
    UserProfileRecord,
)
from .repository import (
    AnalyticsRepository,
    InMemoryAnalyticsRepository,
    RepositoryConfig,
    build_repository_from_env,
)
from .session import AnalyticsSession

config = load_config()
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Fitness Analytics API", version="0.1.0")
repository: Optional[AnalyticsRepository] = build_repository_from_env(
    RepositoryConfig(database_url=config.database_url)
)
sessions: "OrderedDict[str, AnalyticsSession]" = OrderedDict()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SubscriptionPayload(BaseModel):
    id: str
    user_id: str
    plan_type: str
    status: str
    created_at: datetime
    current_period_end: Optional[datetime] = None
    stripe_subscription_id: Optional[str] = None


class CorporateSubscriptionPayload(BaseModel):
    id: str
    organization_name: str = ""
    plan_type: str
    status: str
    created_at: datetime
    max_users: Optional[int] = None
    current_users_count: Optional[int] = None
    current_period_end: Optional[datetime] = None
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class PurchasePayload(BaseModel):
    id: str
    user_id: str
    content_type: str
    content_name: str = ""
    purchased_at: datetime
    price: Optional[Decimal] = None
    content_id: Optional[str] = None
    fulfillment_status: Optional[str] = None


class InteractionPayload(BaseModel):
    user_id: str
    content_name: str = ""
    created_at: datetime
    is_completed: bool = False
    is_favorite: bool = False
    has_viewed: bool = False
    rating: Optional[int] = None


class TrafficEventPayload(BaseModel):
    session_id: str
    event_type: str
    created_at: datetime
    landing_page: Optional[str] = None
    device_type: Optional[str] = None
    referral_source: Optional[str] = None


class ContactMessagePayload(BaseModel):
    id: str
    category: str = "general"
    status: str = "new"
    created_at: datetime
    responded_at: Optional[datetime] = None


class ProfilePayload(BaseModel):
    user_id: str
    created_at: datetime
    full_name: Optional[str] = None


class TrainingRequestPayload(BaseModel):
    id: str
    status: str = "pending"
    created_at: datetime
    completed_at: Optional[datetime] = None
    stripe_payment_status: Optional[str] = None


class ShopProductPayload(BaseModel):
    id: str
    title: str = ""
    category: Optional[str] = None
    stock_quantity: Optional[int] = None
    product_type: Optional[str] = None


class AnalyticsRequest(BaseModel):
    view_id: str = "default"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timezone: Optional[str] = None
    categories: Optional[List[str]] = None
    top_n: Optional[int] = Field(default=None, ge=1)
    subscriptions: Optional[List[SubscriptionPayload]] = None
    corporate_subscriptions: Optional[List[CorporateSubscriptionPayload]] = None
    purchases: Optional[List[PurchasePayload]] = None
    workout_interactions: Optional[List[InteractionPayload]] = None
    program_interactions: Optional[List[InteractionPayload]] = None
    traffic_events: Optional[List[TrafficEventPayload]] = None
    contact_messages: Optional[List[ContactMessagePayload]] = None
    profiles: Optional[List[ProfilePayload]] = None
    training_requests: Optional[List[TrainingRequestPayload]] = None
    shop_products: Optional[List[ShopProductPayload]] = None

    @validator("end")
    def _validate_range(cls, end: Optional[datetime], values: Dict[str, Any]) -> Optional[datetime]:
        start = values.get("start")
        # Mixed naive/aware pairs are compared after localisation in the service.
        if start and end and (start.tzinfo is None) == (end.tzinfo is None) and end <= start:
            raise ValueError("end must be greater than start")
        return end

    def has_payloads(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in (
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
            )
        )


class AnalyticsResponse(BaseModel):
    data: Dict[str, Any]
    source: str
    generation: int


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/analytics", response_model=AnalyticsResponse)
async def analytics_endpoint(request: AnalyticsRequest) -> AnalyticsResponse:
    filters = _build_filters(request)
    source_repository, source = _select_repository(request)

    session = _session_for(request.view_id)

    try:
        outcome = await session.refresh(filters, source_repository)
    except AnalyticsUnavailableError as exc:
        logger.warning("Analytics unavailable for view %s: %s", request.view_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except InvalidWindowError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if outcome.superseded:
        raise HTTPException(status_code=409, detail="Superseded by a newer request for this view.")
    return AnalyticsResponse(data=outcome.result.as_dict(), source=source, generation=outcome.generation)


def _session_for(view_id: str) -> AnalyticsSession:
    session = sessions.get(view_id)
    if session is None:
        session = sessions[view_id] = AnalyticsSession(repository, config.pricing)
    sessions.move_to_end(view_id)
    _evict_idle_sessions(keep=view_id)
    return session


def _evict_idle_sessions(keep: str) -> None:
    # Views with a request in flight are kept so their generations stay valid.
    idle = [key for key, session in sessions.items() if key != keep and not session.busy]
    for view_id in idle:
        if len(sessions) <= config.max_sessions:
            break
        del sessions[view_id]
        logger.debug("Dropped idle analytics view %s", view_id)


def _build_filters(request: AnalyticsRequest) -> AnalyticsFilters:
    end = request.end or datetime.now(timezone.utc)
    start = request.start or end - timedelta(days=config.default_window_days)
    return AnalyticsFilters(
        start=start,
        end=end,
        timezone=request.timezone or config.timezone,
        categories=tuple(request.categories) if request.categories else None,
        top_n=request.top_n or config.top_n,
    )


def _select_repository(request: AnalyticsRequest) -> Tuple[AnalyticsRepository, str]:
    if request.has_payloads():
        return _inline_repository(request), "inline"
    if repository is not None:
        return repository, "database"
    raise HTTPException(
        status_code=500,
        detail=(
            "ANALYTICS_DATABASE_URL is not configured; "
            "supply record payloads in the request body for ad-hoc queries."
        ),
    )


def _inline_repository(request: AnalyticsRequest) -> InMemoryAnalyticsRepository:
    return InMemoryAnalyticsRepository(
        subscriptions=_convert(request.subscriptions, _convert_subscription_payload),
        corporate_subscriptions=_convert(request.corporate_subscriptions, _convert_corporate_payload),
        purchases=_convert(request.purchases, _convert_purchase_payload),
        workout_interactions=_convert(request.workout_interactions, _convert_interaction_payload),
        program_interactions=_convert(request.program_interactions, _convert_interaction_payload),
        traffic_events=_convert(request.traffic_events, _convert_traffic_payload),
        contact_messages=_convert(request.contact_messages, _convert_message_payload),
        profiles=_convert(request.profiles, _convert_profile_payload),
        training_requests=_convert(request.training_requests, _convert_training_request_payload),
        shop_products=_convert(request.shop_products, _convert_shop_product_payload),
    )


def _convert(payloads: Optional[Sequence[BaseModel]], converter: Callable[[Any], Any]) -> Tuple[Any, ...]:
    return tuple(converter(payload) for payload in payloads or ())


def _convert_subscription_payload(payload: SubscriptionPayload) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=payload.id,
        user_id=payload.user_id,
        plan_type=payload.plan_type,
        status=payload.status,
        created_at=payload.created_at,
        current_period_end=payload.current_period_end,
        payment_ref=payload.stripe_subscription_id,
    )


def _convert_corporate_payload(payload: CorporateSubscriptionPayload) -> CorporateSubscriptionRecord:
    return CorporateSubscriptionRecord(
        id=payload.id,
        organization_name=payload.organization_name,
        plan_type=payload.plan_type,
        status=payload.status,
        created_at=payload.created_at,
        max_users=payload.max_users,
        current_users_count=payload.current_users_count,
        current_period_end=payload.current_period_end,
        payment_ref=payload.stripe_subscription_id,
        customer_ref=payload.stripe_customer_id,
    )


def _convert_purchase_payload(payload: PurchasePayload) -> PurchaseRecord:
    return PurchaseRecord(
        id=payload.id,
        user_id=payload.user_id,
        content_type=payload.content_type,
        content_name=payload.content_name,
        purchased_at=payload.purchased_at,
        price=payload.price,
        content_id=payload.content_id,
        fulfillment_status=payload.fulfillment_status,
    )


def _convert_interaction_payload(payload: InteractionPayload) -> InteractionRecord:
    return InteractionRecord(
        user_id=payload.user_id,
        content_name=payload.content_name,
        created_at=payload.created_at,
        is_completed=payload.is_completed,
        is_favorite=payload.is_favorite,
        has_viewed=payload.has_viewed,
        rating=payload.rating,
    )


def _convert_traffic_payload(payload: TrafficEventPayload) -> TrafficEvent:
    return TrafficEvent(
        session_id=payload.session_id,
        event_type=payload.event_type,
        created_at=payload.created_at,
        landing_page=payload.landing_page,
        device_type=payload.device_type,
        referral_source=payload.referral_source,
    )


def _convert_message_payload(payload: ContactMessagePayload) -> ContactMessageRecord:
    return ContactMessageRecord(
        id=payload.id,
        category=payload.category,
        status=payload.status,
        created_at=payload.created_at,
        responded_at=payload.responded_at,
    )


def _convert_profile_payload(payload: ProfilePayload) -> UserProfileRecord:
    return UserProfileRecord(
        user_id=payload.user_id,
        created_at=payload.created_at,
        full_name=payload.full_name,
    )


def _convert_training_request_payload(payload: TrainingRequestPayload) -> TrainingRequestRecord:
    return TrainingRequestRecord(
        id=payload.id,
        status=payload.status,
        created_at=payload.created_at,
        completed_at=payload.completed_at,
        payment_status=payload.stripe_payment_status,
    )


def _convert_shop_product_payload(payload: ShopProductPayload) -> ShopProductRecord:
    return ShopProductRecord(
        id=payload.id,
        title=payload.title,
        category=payload.category,
        stock_quantity=payload.stock_quantity,
        product_type=payload.product_type,
    )
