"""
Request generations for one analytics view.

Every refresh bumps the view's generation. A newer refresh cancels the one in
flight, and a result whose generation is no longer the latest is never
published.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .models import AnalyticsFilters, AnalyticsResult
from .pricing import PricingTable
from .repository import AnalyticsRepository
from .service import run_analytics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshOutcome:
    generation: int
    result: Optional[AnalyticsResult] = None

    @property
    def superseded(self) -> bool:
        return self.result is None


class AnalyticsSession:
    def __init__(self, repository: Optional[AnalyticsRepository] = None, pricing: Optional[PricingTable] = None):
        self.repository = repository
        self.pricing = pricing or PricingTable()
        self.generation = 0
        self._task: Optional["asyncio.Task[AnalyticsResult]"] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(
        self,
        filters: AnalyticsFilters,
        repository: Optional[AnalyticsRepository] = None,
    ) -> RefreshOutcome:
        source = repository or self.repository
        if source is None:
            raise ValueError("AnalyticsSession.refresh needs a repository")

        self.generation += 1
        generation = self.generation
        if self.busy:
            self._task.cancel()

        task = asyncio.ensure_future(run_analytics(source, filters, self.pricing))
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation == self.generation:
                raise
            logger.info("Analytics generation %d superseded by %d", generation, self.generation)
            return RefreshOutcome(generation=generation)
        finally:
            # Finished tasks hold their result; keep only the one in flight.
            if self._task is task:
                self._task = None

        if generation != self.generation:
            logger.info("Discarding stale analytics generation %d", generation)
            return RefreshOutcome(generation=generation)
        return RefreshOutcome(generation=generation, result=result)
