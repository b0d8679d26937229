"""
Concurrent loading of every record family for one analytics request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import AnalyticsUnavailableError, SourceUnavailableError
from .models import ContentKind, DateWindow, SOURCE_NAMES, SourceSnapshot
from .repository import AnalyticsRepository

logger = logging.getLogger(__name__)


def _loaders(repository: AnalyticsRepository, window: Optional[DateWindow]) -> Dict[str, Callable[[], Sequence[Any]]]:
    return {
        "subscriptions": lambda: repository.list_subscriptions(window),
        "corporate_subscriptions": lambda: repository.list_corporate_subscriptions(window),
        "purchases": lambda: repository.list_purchases(window),
        "workout_interactions": lambda: repository.list_interactions(ContentKind.WORKOUT, window),
        "program_interactions": lambda: repository.list_interactions(ContentKind.PROGRAM, window),
        "traffic_events": lambda: repository.list_traffic_events(window),
        "contact_messages": lambda: repository.list_contact_messages(window),
        "profiles": lambda: repository.list_profiles(window),
        "training_requests": lambda: repository.list_training_requests(window),
        "shop_products": lambda: repository.list_shop_products(),
    }


async def load_snapshot(repository: AnalyticsRepository, window: Optional[DateWindow]) -> SourceSnapshot:
    """
    Fetch all families in parallel threads.

    A failing family is logged and replaced by an empty tuple. If every family
    fails, ``AnalyticsUnavailableError`` is raised instead of returning an
    empty snapshot.
    """

    loaders = _loaders(repository, window)
    names = list(SOURCE_NAMES)
    results = await asyncio.gather(
        *(asyncio.to_thread(loaders[name]) for name in names),
        return_exceptions=True,
    )

    records: Dict[str, Tuple[Any, ...]] = {}
    failures: List[SourceUnavailableError] = []
    for name, result in zip(names, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            logger.warning("Failed to load %s: %s", name, result)
            failures.append(SourceUnavailableError(name, result))
            records[name] = ()
            continue
        records[name] = tuple(result or ())

    if len(failures) == len(names):
        raise AnalyticsUnavailableError(failures)

    return SourceSnapshot(
        unavailable_sources=tuple(failure.source for failure in failures),
        **records,
    )
