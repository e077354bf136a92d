"""Point milestone celebrations.

A celebration fires for every ladder threshold T with previous < T <= new,
where both totals come from the authoritative running sum.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.db.models import Celebration, Learner
from explorer.errors import require_id
from explorer.points import repository

logger = logging.getLogger(__name__)

POINT_THRESHOLDS: list[int] = [10, 25, 50, 100, 150, 200, 250, 500, 1000]

MILESTONE_POINTS = "points_threshold"
CERTIFICATE_MIN = 50
FIREWORKS_MIN = 100


def crossed_thresholds(previous_total: int, new_total: int) -> list[int]:
    """Ladder thresholds crossed moving from ``previous_total`` to ``new_total``, ascending."""
    return [t for t in POINT_THRESHOLDS if previous_total < t <= new_total]


def build_celebration(learner: Learner, classroom_id: str, threshold: int, achieved_at: datetime) -> Celebration:
    """Celebration row with its generated title and message."""
    return Celebration(
        tenant_id=learner.tenant_id,
        school_id=learner.school_id,
        classroom_id=classroom_id,
        student_id=learner.id,
        milestone_type=MILESTONE_POINTS,
        milestone_value=threshold,
        milestone_name=f"{threshold} Points Champion",
        title=f"\U0001F389 {threshold} Points!",
        message=f"Amazing {learner.first_name}! You've earned {threshold} Explorer Points!",
        emoji="\U0001F3C6",
        animation_type="fireworks" if threshold >= FIREWORKS_MIN else "confetti",
        certificate_generated=threshold >= CERTIFICATE_MIN,
        parent_notified=False,
        class_announced=False,
        achieved_at=achieved_at,
        created_at=achieved_at,
    )


async def record_point_celebrations(
    db: AsyncSession,
    learner: Learner,
    classroom_id: str,
    previous_total: int,
    new_total: int,
    now: datetime | None = None,
) -> list[Celebration]:
    """Persist one celebration per crossed threshold. Does not commit.

    Thresholds already on record for the learner are skipped; the unique
    constraint on (student, type, value) backs this up under concurrency.
    """
    crossed = crossed_thresholds(previous_total, new_total)
    if not crossed:
        return []

    recorded = await repository.recorded_milestones(db, learner.id, MILESTONE_POINTS)
    fresh = [t for t in crossed if t not in recorded]
    if len(fresh) < len(crossed):
        logger.warning(
            "Learner %s re-crossed recorded thresholds %s; running total may have been rewritten",
            learner.id, sorted(set(crossed) - set(fresh)),
        )
    if not fresh:
        return []

    if now is None:
        now = datetime.now(timezone.utc)
    celebrations = [build_celebration(learner, classroom_id, t, now) for t in fresh]
    await repository.add_celebrations(db, celebrations)
    logger.info("Learner %s reached %s points", learner.id, fresh)
    return celebrations


async def list_learner_celebrations(db: AsyncSession, tenant_id: str, student_id: str) -> list[Celebration]:
    return await repository.list_learner_celebrations(
        db, require_id(tenant_id, "tenant_id"), require_id(student_id, "student_id")
    )


async def list_classroom_celebrations(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    since: datetime | None = None,
) -> list[Celebration]:
    return await repository.list_classroom_celebrations(
        db, require_id(tenant_id, "tenant_id"), require_id(classroom_id, "classroom_id"), since
    )
