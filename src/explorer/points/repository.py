"""SQLAlchemy store functions for skills, roster, awards, suggestions, celebrations and streaks.

Functions flush but never commit. The calling service owns the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from explorer.db.models import (
    BehaviourSkill,
    BehaviourStreak,
    Celebration,
    Classroom,
    GroupAward,
    Learner,
    LearnerPointTotal,
    PointAward,
    PointSuggestion,
    TableGroup,
)


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------


async def get_classroom(db: AsyncSession, classroom_id: str) -> Classroom | None:
    return await db.get(Classroom, classroom_id)


async def get_learners(db: AsyncSession, tenant_id: str, learner_ids: Iterable[str]) -> dict[str, Learner]:
    """Resolve learner ids within a tenant. Unknown ids are absent from the result."""
    ids = list(dict.fromkeys(learner_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(Learner).where(Learner.tenant_id == tenant_id, Learner.id.in_(ids))
    )
    return {learner.id: learner for learner in result.scalars()}


async def list_enrolled_learners(db: AsyncSession, tenant_id: str, classroom_id: str) -> list[Learner]:
    result = await db.execute(
        select(Learner)
        .where(
            Learner.tenant_id == tenant_id,
            Learner.classroom_id == classroom_id,
            Learner.is_enrolled.is_(True),
        )
        .order_by(Learner.first_name, Learner.last_name)
    )
    return list(result.scalars())


async def get_table_group(db: AsyncSession, table_group_id: str) -> TableGroup | None:
    return await db.get(TableGroup, table_group_id)


async def list_table_groups(db: AsyncSession, tenant_id: str, classroom_id: str) -> list[TableGroup]:
    result = await db.execute(
        select(TableGroup)
        .where(TableGroup.tenant_id == tenant_id, TableGroup.classroom_id == classroom_id)
        .order_by(TableGroup.name)
    )
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Skill store
# ---------------------------------------------------------------------------


async def get_skill(db: AsyncSession, skill_id: str) -> BehaviourSkill | None:
    return await db.get(BehaviourSkill, skill_id)


async def list_skills(
    db: AsyncSession,
    tenant_id: str,
    school_id: str,
    classroom_id: str | None = None,
    active_only: bool = False,
) -> list[BehaviourSkill]:
    """School-wide skills plus, when ``classroom_id`` is given, that classroom's own."""
    scope = BehaviourSkill.classroom_id.is_(None)
    if classroom_id is not None:
        scope = scope | (BehaviourSkill.classroom_id == classroom_id)
    stmt = select(BehaviourSkill).where(
        BehaviourSkill.tenant_id == tenant_id,
        BehaviourSkill.school_id == school_id,
        scope,
    )
    if active_only:
        stmt = stmt.where(BehaviourSkill.is_active.is_(True))
    result = await db.execute(stmt.order_by(BehaviourSkill.sort_order, BehaviourSkill.name))
    return list(result.scalars())


async def count_custom_skills(db: AsyncSession, tenant_id: str, classroom_id: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(BehaviourSkill)
        .where(
            BehaviourSkill.tenant_id == tenant_id,
            BehaviourSkill.classroom_id == classroom_id,
            BehaviourSkill.is_custom.is_(True),
        )
    )
    return int(result.scalar_one())


async def add_skills(db: AsyncSession, skills: Sequence[BehaviourSkill]) -> None:
    db.add_all(skills)
    await db.flush()


async def increment_skill_usage(db: AsyncSession, skill_id: str, now: datetime) -> None:
    await db.execute(
        update(BehaviourSkill)
        .where(BehaviourSkill.id == skill_id)
        .values(usage_count=BehaviourSkill.usage_count + 1, last_used_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def set_skill_activation(db: AsyncSession, skill: BehaviourSkill, is_active: bool, now: datetime) -> None:
    skill.is_active = is_active
    skill.updated_at = now
    await db.flush()


# ---------------------------------------------------------------------------
# Award store
# ---------------------------------------------------------------------------


async def add_awards(db: AsyncSession, awards: Sequence[PointAward]) -> None:
    db.add_all(awards)
    await db.flush()


async def add_group_award(db: AsyncSession, group_award: GroupAward) -> None:
    db.add(group_award)
    await db.flush()


async def get_award(db: AsyncSession, award_id: str) -> PointAward | None:
    return await db.get(PointAward, award_id)


async def list_learner_awards(
    db: AsyncSession,
    tenant_id: str,
    student_id: str,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[PointAward]:
    stmt = select(PointAward).where(PointAward.tenant_id == tenant_id, PointAward.student_id == student_id)
    if since is not None:
        stmt = stmt.where(PointAward.awarded_at >= since)
    if until is not None:
        stmt = stmt.where(PointAward.awarded_at <= until)
    result = await db.execute(stmt.order_by(PointAward.awarded_at.desc()))
    return list(result.scalars())


async def list_classroom_awards(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> list[PointAward]:
    """Newest first."""
    stmt = select(PointAward).where(PointAward.tenant_id == tenant_id, PointAward.classroom_id == classroom_id)
    if since is not None:
        stmt = stmt.where(PointAward.awarded_at >= since)
    if until is not None:
        stmt = stmt.where(PointAward.awarded_at <= until)
    stmt = stmt.order_by(PointAward.awarded_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars())


async def skill_frequency(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    since: datetime | None = None,
) -> list[tuple[str, str, int]]:
    """(skill_id, skill_name, award count) for a classroom, most frequent first."""
    count = func.count(PointAward.id)
    stmt = (
        select(PointAward.skill_id, PointAward.skill_name, count)
        .where(PointAward.tenant_id == tenant_id, PointAward.classroom_id == classroom_id)
        .group_by(PointAward.skill_id, PointAward.skill_name)
        .order_by(count.desc(), PointAward.skill_name)
    )
    if since is not None:
        stmt = stmt.where(PointAward.awarded_at >= since)
    result = await db.execute(stmt)
    return [(row[0], row[1], int(row[2])) for row in result.all()]


# ---------------------------------------------------------------------------
# Running total
# ---------------------------------------------------------------------------


async def get_running_total(db: AsyncSession, student_id: str) -> int:
    result = await db.execute(
        select(LearnerPointTotal.lifetime_points).where(LearnerPointTotal.student_id == student_id)
    )
    return int(result.scalar_one_or_none() or 0)


async def increment_running_total(
    db: AsyncSession,
    tenant_id: str,
    student_id: str,
    amount: int,
) -> tuple[int, int]:
    """Atomically add ``amount`` and return ``(previous, new)`` read back from the store.

    The UPDATE takes the row lock, so concurrent awards to one learner are
    serialized until the surrounding transaction ends. A learner's first
    award inserts the row; two racing first awards fail one of them on the
    primary key instead of double counting.
    """
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(LearnerPointTotal)
        .where(LearnerPointTotal.student_id == student_id)
        .values(lifetime_points=LearnerPointTotal.lifetime_points + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.add(LearnerPointTotal(student_id=student_id, tenant_id=tenant_id, lifetime_points=amount, updated_at=now))
        await db.flush()
    new_total = await get_running_total(db, student_id)
    return new_total - amount, new_total


# ---------------------------------------------------------------------------
# Suggestion store
# ---------------------------------------------------------------------------


async def add_suggestions(db: AsyncSession, suggestions: Sequence[PointSuggestion]) -> None:
    db.add_all(suggestions)
    await db.flush()


async def get_suggestion(db: AsyncSession, suggestion_id: str) -> PointSuggestion | None:
    return await db.get(PointSuggestion, suggestion_id)


async def list_pending_suggestions(db: AsyncSession, tenant_id: str, classroom_id: str) -> list[PointSuggestion]:
    result = await db.execute(
        select(PointSuggestion)
        .where(
            PointSuggestion.tenant_id == tenant_id,
            PointSuggestion.classroom_id == classroom_id,
            PointSuggestion.status == "pending",
        )
        .order_by(PointSuggestion.confidence.desc(), PointSuggestion.suggested_at)
    )
    return list(result.scalars())


async def transition_suggestion(
    db: AsyncSession,
    suggestion: PointSuggestion,
    to_status: str,
    from_status: str = "pending",
    **fields,
) -> bool:
    """Move ``suggestion`` to ``to_status`` only if the stored status is still ``from_status``.

    The status guard is part of the UPDATE itself, so of two racing decisions
    exactly one matches a row. Returns False when no row matched; the loaded
    object is left untouched in that case.
    """
    values = {"status": to_status, **fields}
    result = await db.execute(
        update(PointSuggestion)
        .where(PointSuggestion.id == suggestion.id, PointSuggestion.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False
    for key, value in values.items():
        set_committed_value(suggestion, key, value)
    return True


async def expire_pending_before(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    cutoff: datetime,
) -> int:
    """Move pending suggestions whose expiry is at or before ``cutoff`` to expired. Returns the count."""
    result = await db.execute(
        update(PointSuggestion)
        .where(
            PointSuggestion.tenant_id == tenant_id,
            PointSuggestion.classroom_id == classroom_id,
            PointSuggestion.status == "pending",
            PointSuggestion.expires_at <= cutoff,
        )
        .values(status="expired", resolved_at=cutoff)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Celebration store
# ---------------------------------------------------------------------------


async def add_celebrations(db: AsyncSession, celebrations: Sequence[Celebration]) -> None:
    db.add_all(celebrations)
    await db.flush()


async def recorded_milestones(db: AsyncSession, student_id: str, milestone_type: str) -> set[int]:
    result = await db.execute(
        select(Celebration.milestone_value).where(
            Celebration.student_id == student_id,
            Celebration.milestone_type == milestone_type,
        )
    )
    return set(result.scalars())


async def list_learner_celebrations(db: AsyncSession, tenant_id: str, student_id: str) -> list[Celebration]:
    result = await db.execute(
        select(Celebration)
        .where(Celebration.tenant_id == tenant_id, Celebration.student_id == student_id)
        .order_by(Celebration.achieved_at.desc(), Celebration.milestone_value.desc())
    )
    return list(result.scalars())


async def list_classroom_celebrations(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    since: datetime | None = None,
) -> list[Celebration]:
    stmt = select(Celebration).where(Celebration.tenant_id == tenant_id, Celebration.classroom_id == classroom_id)
    if since is not None:
        stmt = stmt.where(Celebration.achieved_at >= since)
    result = await db.execute(stmt.order_by(Celebration.achieved_at.desc(), Celebration.milestone_value.desc()))
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Streak store
# ---------------------------------------------------------------------------


async def get_streak(db: AsyncSession, student_id: str) -> BehaviourStreak | None:
    return await db.get(BehaviourStreak, student_id)


async def save_streak(db: AsyncSession, streak: BehaviourStreak) -> None:
    db.add(streak)
    await db.flush()


async def list_classroom_streaks(db: AsyncSession, tenant_id: str, classroom_id: str) -> list[BehaviourStreak]:
    result = await db.execute(
        select(BehaviourStreak)
        .where(BehaviourStreak.tenant_id == tenant_id, BehaviourStreak.classroom_id == classroom_id)
        .order_by(BehaviourStreak.current_streak.desc(), BehaviourStreak.longest_streak.desc())
    )
    return list(result.scalars())
