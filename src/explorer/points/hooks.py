"""Outbound collaborators: parent notifications, domain events and cache invalidation.

All three are best effort. Callers catch and log their failures; nothing here
is allowed to undo a committed award.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import redis.asyncio as redis
from arq.connections import ArqRedis

from explorer.config import get_settings

logger = logging.getLogger(__name__)

NOTIFICATION_JOB = "deliver_parent_notification"


class NotificationHook(Protocol):
    async def notify(self, learner_id: str, payload: dict[str, Any]) -> None: ...


class EventSink(Protocol):
    async def publish(self, event_type: str, scope: dict[str, Any], payload: dict[str, Any]) -> None: ...


class CacheInvalidator(Protocol):
    async def invalidate(self, scope_key: str) -> None: ...


@dataclass
class EngineHooks:
    """Collaborators used by the award and suggestion services. ``None`` members are skipped."""

    notifier: NotificationHook | None = None
    events: EventSink | None = None
    cache: CacheInvalidator | None = None


def classroom_cache_key(classroom_id: str) -> str:
    return f"classroom:{classroom_id}:stats"


def student_cache_key(student_id: str) -> str:
    return f"student:{student_id}:behaviour"


class ArqParentNotifier:
    """Queues parent notifications on arq; the worker pushes them to the parent channel."""

    def __init__(self, pool: ArqRedis) -> None:
        self._pool = pool

    async def notify(self, learner_id: str, payload: dict[str, Any]) -> None:
        job = await self._pool.enqueue_job(NOTIFICATION_JOB, learner_id, payload)
        if job is None:
            # arq returns None when a job with the same id is already queued
            logger.debug("Parent notification for %s already queued", learner_id)


class RedisStreamEventSink:
    """Appends domain events to ``{prefix}:{event_type}`` Redis Streams, capped with MAXLEN."""

    def __init__(self, client: redis.Redis, prefix: str | None = None, maxlen: int | None = None) -> None:
        settings = get_settings()
        self._client = client
        self._prefix = prefix or settings.event_stream_prefix
        self._maxlen = maxlen or settings.event_stream_maxlen

    async def publish(self, event_type: str, scope: dict[str, Any], payload: dict[str, Any]) -> None:
        fields = {
            "event": event_type,
            "ts": datetime.now(timezone.utc).isoformat(),
            "scope": json.dumps(scope),
            "data": json.dumps(payload, default=str),
        }
        await self._client.xadd(
            f"{self._prefix}:{event_type}",
            fields,  # type: ignore[arg-type]
            maxlen=self._maxlen,
            approximate=True,
        )


class RedisCacheInvalidator:
    """Deletes cached aggregates stored under ``{prefix}:{scope_key}``."""

    def __init__(self, client: redis.Redis, prefix: str | None = None) -> None:
        self._client = client
        self._prefix = prefix or get_settings().cache_key_prefix

    async def invalidate(self, scope_key: str) -> None:
        await self._client.delete(f"{self._prefix}:{scope_key}")


def build_redis_hooks(client: redis.Redis, arq_pool: ArqRedis | None = None) -> EngineHooks:
    """Wire the Redis-backed collaborators. Notifications are off without an arq pool."""
    return EngineHooks(
        notifier=ArqParentNotifier(arq_pool) if arq_pool is not None else None,
        events=RedisStreamEventSink(client),
        cache=RedisCacheInvalidator(client),
    )
