"""Daily positive-award streaks.

Days are calendar days in the school's timezone. Only positive awards move a
streak; constructive awards leave it untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import get_settings
from explorer.db.models import BehaviourStreak
from explorer.errors import require_id
from explorer.points import repository

logger = logging.getLogger(__name__)

STREAK_TYPE = "daily_positive"

# Streak lengths worth remembering; cleared when a streak breaks
STREAK_MILESTONES = [3, 5, 10, 20, 30]


@dataclass
class StreakState:
    current_streak: int
    current_streak_start: date
    longest_streak: int
    longest_streak_start: date
    longest_streak_end: date
    last_point_day: date
    milestones_achieved: list[int] = field(default_factory=list)


def local_day(moment: datetime, tz_name: str) -> date:
    """Calendar day of ``moment`` in the named timezone."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).date()


def next_streak_state(state: StreakState | None, today: date) -> tuple[StreakState, list[int]]:
    """Apply one positive award on ``today``. Returns the new state and newly reached milestones.

    An award dated before the last recorded day (late sync) changes nothing.
    """
    if state is None:
        fresh = StreakState(
            current_streak=1,
            current_streak_start=today,
            longest_streak=1,
            longest_streak_start=today,
            longest_streak_end=today,
            last_point_day=today,
        )
        return fresh, []

    if today <= state.last_point_day:
        return replace(state, milestones_achieved=list(state.milestones_achieved)), []

    if today - state.last_point_day == timedelta(days=1):
        updated = replace(
            state,
            current_streak=state.current_streak + 1,
            last_point_day=today,
            milestones_achieved=list(state.milestones_achieved),
        )
        if updated.current_streak > updated.longest_streak:
            updated.longest_streak = updated.current_streak
            updated.longest_streak_start = updated.current_streak_start
            updated.longest_streak_end = today
    else:
        # Gap of two or more days; the longest streak is a high-water mark and stays
        updated = replace(
            state,
            current_streak=1,
            current_streak_start=today,
            last_point_day=today,
            milestones_achieved=[],
        )

    reached = [
        m for m in STREAK_MILESTONES
        if m <= updated.current_streak and m not in updated.milestones_achieved
    ]
    updated.milestones_achieved = sorted(updated.milestones_achieved + reached)
    return updated, reached


def _state_from_row(row: BehaviourStreak) -> StreakState:
    return StreakState(
        current_streak=row.current_streak,
        current_streak_start=row.current_streak_start,
        longest_streak=row.longest_streak,
        longest_streak_start=row.longest_streak_start,
        longest_streak_end=row.longest_streak_end,
        last_point_day=row.last_point_day,
        milestones_achieved=list(row.milestones_achieved or []),
    )


async def resolve_timezone(db: AsyncSession, classroom_id: str) -> str:
    """The classroom's school timezone, falling back to the configured default."""
    classroom = await repository.get_classroom(db, classroom_id)
    if classroom is not None and classroom.timezone:
        return classroom.timezone
    return get_settings().default_timezone


async def advance_streak(
    db: AsyncSession,
    tenant_id: str,
    student_id: str,
    classroom_id: str,
    is_positive: bool,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> BehaviourStreak | None:
    """Advance a learner's streak for one award. Does not commit.

    Returns the streak row, or the unchanged row (possibly ``None``) for a
    constructive award.
    """
    existing = await repository.get_streak(db, student_id)
    if not is_positive:
        return existing

    if now is None:
        now = datetime.now(timezone.utc)
    if tz_name is None:
        tz_name = await resolve_timezone(db, classroom_id)
    today = local_day(now, tz_name)

    state, reached = next_streak_state(_state_from_row(existing) if existing else None, today)

    row = existing or BehaviourStreak(
        student_id=student_id,
        tenant_id=tenant_id,
        classroom_id=classroom_id,
        streak_type=STREAK_TYPE,
    )
    row.classroom_id = classroom_id
    row.current_streak = state.current_streak
    row.current_streak_start = state.current_streak_start
    row.longest_streak = state.longest_streak
    row.longest_streak_start = state.longest_streak_start
    row.longest_streak_end = state.longest_streak_end
    row.last_point_day = state.last_point_day
    if existing is None or now > existing.last_point_date:
        row.last_point_date = now
    row.milestones_achieved = state.milestones_achieved
    row.updated_at = now
    await repository.save_streak(db, row)

    if reached:
        logger.info("Learner %s reached a %d-day streak", student_id, max(reached))
    return row


async def get_learner_streak(db: AsyncSession, student_id: str) -> BehaviourStreak | None:
    return await repository.get_streak(db, require_id(student_id, "student_id"))


async def list_classroom_streaks(db: AsyncSession, tenant_id: str, classroom_id: str) -> list[BehaviourStreak]:
    """Streaks for a classroom, longest current streak first."""
    return await repository.list_classroom_streaks(
        db, require_id(tenant_id, "tenant_id"), require_id(classroom_id, "classroom_id")
    )
