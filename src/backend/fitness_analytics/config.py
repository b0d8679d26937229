"""
Process-level settings for the analytics engine.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .pricing import PricingTable, load_pricing_table


class AnalyticsConfig(BaseModel):
    database_url: Optional[str] = None
    """SQLAlchemy URL of the read replica; inline payloads are required without it"""

    timezone: str = "UTC"
    """Timezone used for month/day buckets when a request does not name one"""

    default_window_days: int = 30
    """Window used when a request omits its start"""

    top_n: int = 10
    """Length of every ranking table"""

    max_sessions: int = 256
    """Views kept in memory; the least recently used idle view is dropped beyond this"""

    log_level: str = "INFO"

    pricing: PricingTable = PricingTable()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_config(use_dotenv: Optional[bool] = None) -> AnalyticsConfig:
    if use_dotenv is None:
        use_dotenv = _env_bool("ANALYTICS_LOAD_DOTENV", True)
    if use_dotenv:
        load_dotenv()

    defaults = AnalyticsConfig()
    return AnalyticsConfig(
        database_url=os.getenv("ANALYTICS_DATABASE_URL", defaults.database_url),
        timezone=os.getenv("ANALYTICS_TIMEZONE", defaults.timezone),
        default_window_days=max(1, _env_int("ANALYTICS_DEFAULT_WINDOW_DAYS", defaults.default_window_days)),
        top_n=max(1, _env_int("ANALYTICS_TOP_N", defaults.top_n)),
        max_sessions=max(1, _env_int("ANALYTICS_MAX_SESSIONS", defaults.max_sessions)),
        log_level=os.getenv("ANALYTICS_LOG_LEVEL", defaults.log_level).upper(),
        pricing=load_pricing_table(),
    )
