"""Parent notification arq worker.

Run with: arq explorer.workers.notifications.WorkerSettings
Award services enqueue ``deliver_parent_notification``; this worker pushes
each payload to the learner's parent channel for the delivery layer.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from arq.connections import RedisSettings

from explorer.config import get_settings
from explorer.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def parent_channel(learner_id: str, prefix: str | None = None) -> str:
    return f"{prefix or get_settings().notification_channel_prefix}:{learner_id}"


async def deliver_parent_notification(ctx: dict, learner_id: str, payload: dict[str, Any]) -> int:  # type: ignore[type-arg]
    """Publish a parent notification. Returns the number of subscribers that received it."""
    redis_client: aioredis.Redis = ctx["redis"]
    message = {
        "event": "parent_notification",
        "learner_id": learner_id,
        "title": payload.get("title", ""),
        "body": payload.get("body", ""),
        "data": payload.get("data", {}),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    receivers = await redis_client.publish(parent_channel(learner_id), json.dumps(message))
    logger.debug("Parent notification for %s delivered to %d subscribers", learner_id, receivers)
    return int(receivers)


async def notifications_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Notification worker started")


async def notifications_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    logger.info("Notification worker shut down")


class WorkerSettings:
    """arq worker settings for parent notification delivery."""

    functions = [deliver_parent_notification]
    on_startup = notifications_startup
    on_shutdown = notifications_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 20
    job_timeout = 30
    max_tries = 1
