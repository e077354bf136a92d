"""Bounded-concurrency batch processing.

Each item runs in its own session; one item's failure is captured in its
outcome and never cancels its siblings.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from explorer.config import get_settings
from explorer.logging_setup import bind_scope
from explorer.points.analytics import classroom_analytics
from explorer.points.hooks import EngineHooks
from explorer.points.schemas import ClassroomAnalytics, Observation
from explorer.points.suggestion_service import SuggestionBatch, suggest_from_observation

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int | None = None,
) -> list[BatchOutcome[T, R]]:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight. Outcomes keep input order."""
    if limit is None:
        limit = get_settings().batch_concurrency
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> BatchOutcome[T, R]:
        async with semaphore:
            try:
                return BatchOutcome(item=item, result=await worker(item))
            except Exception as exc:
                logger.warning("batch_item_failed", item=repr(item)[:200], error=str(exc), exc_info=True)
                return BatchOutcome(item=item, error=exc)

    return list(await asyncio.gather(*(_run(item) for item in items)))


async def suggest_for_observations(
    session_factory: async_sessionmaker[AsyncSession],
    hooks: EngineHooks | None,
    tenant_id: str,
    classroom_id: str,
    observations: Sequence[Observation],
    limit: int | None = None,
) -> list[BatchOutcome[Observation, SuggestionBatch]]:
    """Generate suggestions for many observations of one classroom."""

    async def _one(observation: Observation) -> SuggestionBatch:
        bind_scope(tenant_id, classroom_id, source=observation.source)
        async with session_factory() as db:
            return await suggest_from_observation(
                db, hooks, tenant_id, classroom_id, observation.text, observation.student_ids,
                source=observation.source,
            )

    return await run_bounded(observations, _one, limit)


async def classroom_analytics_for_many(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
    classroom_ids: Sequence[str],
    period_days: int = 30,
    limit: int | None = None,
) -> list[BatchOutcome[str, ClassroomAnalytics]]:
    async def _one(classroom_id: str) -> ClassroomAnalytics:
        bind_scope(tenant_id, classroom_id)
        async with session_factory() as db:
            return await classroom_analytics(db, tenant_id, classroom_id, period_days)

    return await run_bounded(classroom_ids, _one, limit)
