"""Award pipeline: validate, persist point awards and fan out to streaks, celebrations and hooks.

Every check runs before the first write. Per-learner work happens in one
transaction; events, cache invalidation and parent notifications run only
after it commits and can never undo it.
"""

from __future__ import annotations

import asyncio
import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.db.models import (
    BehaviourSkill,
    BehaviourStreak,
    Celebration,
    GroupAward,
    Learner,
    PointAward,
)
from explorer.db.types import new_id
from explorer.errors import (
    NotFoundError,
    PartialResolutionWarning,
    StateConflictError,
    ValidationError,
    require_id,
)
from explorer.points import repository
from explorer.points.celebration_service import record_point_celebrations
from explorer.points.hooks import EngineHooks, classroom_cache_key, student_cache_key
from explorer.points.streak_service import advance_streak, resolve_timezone

logger = structlog.get_logger()

AWARDED_EVENT = "points.awarded"
CELEBRATION_EVENT = "points.celebrations_triggered"

REACTIONS = {"like", "love", "celebrate", "proud"}


@dataclass
class GroupTarget:
    """What a multi-learner award was aimed at."""

    group_type: str  # table_group | whole_class | custom
    group_id: str | None
    name: str


@dataclass
class PreparedAward:
    """A fully validated award request. Holds no pending writes."""

    tenant_id: str
    classroom_id: str
    awarded_by: str
    awarded_by_role: str
    skill: BehaviourSkill
    points: int
    learners: list[Learner]
    skipped_student_ids: list[str]
    requested_count: int
    context: dict[str, Any]
    location: str | None
    group: GroupTarget | None
    ai_suggestion_id: str | None
    ai_confidence: float | None
    tz_name: str
    now: datetime

    @property
    def makes_group_award(self) -> bool:
        return self.requested_count > 1


@dataclass
class AwardResult:
    awards: list[PointAward] = field(default_factory=list)
    group_award: GroupAward | None = None
    celebrations: list[Celebration] = field(default_factory=list)
    streaks: dict[str, BehaviourStreak] = field(default_factory=dict)
    skipped_student_ids: list[str] = field(default_factory=list)
    notification_failures: list[str] = field(default_factory=list)

    @property
    def awarded_student_ids(self) -> list[str]:
        return [a.student_id for a in self.awards]

    @property
    def total_points(self) -> int:
        return sum(a.points for a in self.awards)


def _clean_ids(student_ids: Sequence[str] | None) -> list[str]:
    cleaned = [s.strip() for s in student_ids or [] if s and s.strip()]
    return list(dict.fromkeys(cleaned))


def resolve_points(skill: BehaviourSkill, points: int | None) -> int:
    """The override or the skill default, checked against the skill's bounds."""
    value = skill.default_points if points is None else points
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"points must be an integer, got {value!r}")
    if not skill.min_points <= value <= skill.max_points:
        raise ValidationError(
            f"points {value} outside {skill.name!r} bounds [{skill.min_points}, {skill.max_points}]"
        )
    return value


class AwardPipeline:
    """Creates point awards for one or many learners."""

    def __init__(self, db: AsyncSession, hooks: EngineHooks | None = None) -> None:
        self.db = db
        self.hooks = hooks or EngineHooks()

    async def award(
        self,
        tenant_id: str,
        classroom_id: str,
        awarded_by: str,
        student_ids: Sequence[str],
        skill_id: str,
        points: int | None = None,
        context: dict[str, Any] | None = None,
        awarded_by_role: str = "teacher",
        location: str | None = None,
        group: GroupTarget | None = None,
        now: datetime | None = None,
    ) -> AwardResult:
        """Award ``skill_id`` to each resolvable learner and commit.

        Raises ValidationError, NotFoundError or StateConflictError before any
        write. Unknown learner ids are skipped with a PartialResolutionWarning.
        """
        prepared = await self.prepare(
            tenant_id, classroom_id, awarded_by, student_ids, skill_id,
            points=points, context=context, awarded_by_role=awarded_by_role,
            location=location, group=group, now=now,
        )
        try:
            result = await self.apply(prepared)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.dispatch(prepared, result)
        return result

    async def prepare(
        self,
        tenant_id: str,
        classroom_id: str,
        awarded_by: str,
        student_ids: Sequence[str],
        skill_id: str,
        points: int | None = None,
        context: dict[str, Any] | None = None,
        awarded_by_role: str = "teacher",
        location: str | None = None,
        group: GroupTarget | None = None,
        ai_suggestion_id: str | None = None,
        ai_confidence: float | None = None,
        now: datetime | None = None,
    ) -> PreparedAward:
        """Run every check in order. Reads only."""
        tenant_id = require_id(tenant_id, "tenant_id")
        classroom_id = require_id(classroom_id, "classroom_id")
        awarded_by = require_id(awarded_by, "awarded_by")

        requested = _clean_ids(student_ids)
        if not requested:
            raise ValidationError("student_ids must contain at least one learner")

        skill_id = require_id(skill_id, "skill_id")
        skill = await repository.get_skill(self.db, skill_id)
        if skill is None or skill.tenant_id != tenant_id:
            raise NotFoundError("skill", skill_id)
        if skill.classroom_id is not None and skill.classroom_id != classroom_id:
            raise NotFoundError("skill", skill_id)
        if not skill.is_active:
            raise StateConflictError(f"skill {skill.name!r} is inactive")

        value = resolve_points(skill, points)

        found = await repository.get_learners(self.db, tenant_id, requested)
        learners = [found[sid] for sid in requested if sid in found]
        skipped = [sid for sid in requested if sid not in found]
        if not learners:
            raise NotFoundError("learner", ", ".join(requested))
        for sid in skipped:
            warnings.warn(f"learner {sid} not found; skipped", PartialResolutionWarning, stacklevel=3)
            logger.warning("award_student_skipped", student_id=sid, skill_id=skill_id, classroom_id=classroom_id)

        return PreparedAward(
            tenant_id=tenant_id,
            classroom_id=classroom_id,
            awarded_by=awarded_by,
            awarded_by_role=awarded_by_role,
            skill=skill,
            points=value,
            learners=learners,
            skipped_student_ids=skipped,
            requested_count=len(requested),
            context=dict(context or {}),
            location=location,
            group=group,
            ai_suggestion_id=ai_suggestion_id,
            ai_confidence=ai_confidence,
            tz_name=await resolve_timezone(self.db, classroom_id),
            now=now or datetime.now(timezone.utc),
        )

    async def apply(self, prepared: PreparedAward) -> AwardResult:
        """Write awards and their per-learner effects. Does not commit."""
        skill = prepared.skill
        now = prepared.now
        result = AwardResult(skipped_student_ids=list(prepared.skipped_student_ids))
        group_award_id = new_id() if prepared.makes_group_award else None

        for learner in prepared.learners:
            award = PointAward(
                tenant_id=prepared.tenant_id,
                school_id=skill.school_id,
                classroom_id=prepared.classroom_id,
                student_id=learner.id,
                student_name=learner.display_name,
                skill_id=skill.id,
                skill_name=skill.name,
                skill_emoji=skill.emoji,
                points=prepared.points,
                is_positive=skill.is_positive,
                context=dict(prepared.context),
                location=prepared.location,
                ai_generated=prepared.ai_suggestion_id is not None,
                ai_suggestion_id=prepared.ai_suggestion_id,
                ai_confidence=prepared.ai_confidence,
                awarded_by=prepared.awarded_by,
                awarded_by_role=prepared.awarded_by_role,
                group_award_id=group_award_id,
                reactions=[],
                awarded_at=now,
                created_at=now,
            )
            # The award row must exist before its streak and celebration updates
            await repository.add_awards(self.db, [award])
            await repository.increment_skill_usage(self.db, skill.id, now)
            result.awards.append(award)

            if not skill.is_positive:
                continue

            previous, new = await repository.increment_running_total(
                self.db, prepared.tenant_id, learner.id, prepared.points
            )
            result.celebrations += await record_point_celebrations(
                self.db, learner, prepared.classroom_id, previous, new, now=now
            )
            streak = await advance_streak(
                self.db, prepared.tenant_id, learner.id, prepared.classroom_id,
                True, now=now, tz_name=prepared.tz_name,
            )
            if streak is not None:
                result.streaks[learner.id] = streak

        if group_award_id is not None:
            target = prepared.group or GroupTarget("custom", None, f"{len(result.awards)} students")
            result.group_award = GroupAward(
                id=group_award_id,
                tenant_id=prepared.tenant_id,
                school_id=skill.school_id,
                classroom_id=prepared.classroom_id,
                group_type=target.group_type,
                group_id=target.group_id,
                group_name=target.name,
                student_ids=result.awarded_student_ids,
                skill_id=skill.id,
                skill_name=skill.name,
                skill_emoji=skill.emoji,
                points_per_student=prepared.points,
                total_points=prepared.points * len(result.awards),
                is_positive=skill.is_positive,
                reason=prepared.context.get("description"),
                ai_suggestion_id=prepared.ai_suggestion_id,
                awarded_by=prepared.awarded_by,
                awarded_at=now,
            )
            await repository.add_group_award(self.db, result.group_award)

        logger.info(
            "points_awarded",
            skill_id=skill.id,
            points=prepared.points,
            awarded=len(result.awards),
            skipped=len(result.skipped_student_ids),
            celebrations=len(result.celebrations),
        )
        return result

    async def dispatch(self, prepared: PreparedAward, result: AwardResult) -> None:
        """Post-commit side effects: domain events, cache invalidation, parent notifications."""
        await self._publish_events(prepared, result)
        await self._invalidate_caches(prepared, result)
        if prepared.skill.is_positive:
            await self._notify_parents(prepared, result)

    async def _publish_events(self, prepared: PreparedAward, result: AwardResult) -> None:
        sink = self.hooks.events
        if sink is None:
            return
        scope = {"tenant_id": prepared.tenant_id, "classroom_id": prepared.classroom_id}
        payload = {
            "award_ids": [a.id for a in result.awards],
            "student_ids": result.awarded_student_ids,
            "skipped_student_ids": result.skipped_student_ids,
            "skill_id": prepared.skill.id,
            "skill_name": prepared.skill.name,
            "points": prepared.points,
            "is_positive": prepared.skill.is_positive,
            "total_points": result.total_points,
            "group_award_id": result.group_award.id if result.group_award else None,
            "ai_suggestion_id": prepared.ai_suggestion_id,
            "awarded_by": prepared.awarded_by,
        }
        try:
            await sink.publish(AWARDED_EVENT, scope, payload)
            if result.celebrations:
                await sink.publish(CELEBRATION_EVENT, scope, {
                    "celebrations": [
                        {"id": c.id, "student_id": c.student_id, "milestone_value": c.milestone_value}
                        for c in result.celebrations
                    ],
                })
        except Exception:
            logger.warning("domain_event_failed", event=AWARDED_EVENT, skill_id=prepared.skill.id, exc_info=True)

    async def _invalidate_caches(self, prepared: PreparedAward, result: AwardResult) -> None:
        cache = self.hooks.cache
        if cache is None:
            return
        keys = [classroom_cache_key(prepared.classroom_id)]
        keys += [student_cache_key(sid) for sid in result.awarded_student_ids]
        for key in keys:
            try:
                await cache.invalidate(key)
            except Exception:
                logger.warning("cache_invalidation_failed", key=key, exc_info=True)

    async def _notify_one(self, prepared: PreparedAward, learner: Learner, award: PointAward) -> bool:
        skill = prepared.skill
        noun = "a point" if award.points == 1 else f"{award.points} points"
        description = prepared.context.get("description") or skill.description
        payload = {
            "title": f"{skill.emoji} {learner.first_name} earned {noun}!",
            "body": f"{skill.name}: {description}",
            "data": {"award_id": award.id, "student_id": learner.id, "skill_id": skill.id},
        }
        try:
            await self.hooks.notifier.notify(learner.id, payload)  # type: ignore[union-attr]
        except Exception:
            logger.warning("parent_notification_failed", student_id=learner.id, award_id=award.id, exc_info=True)
            return False
        return True

    async def _notify_parents(self, prepared: PreparedAward, result: AwardResult) -> None:
        if self.hooks.notifier is None or not result.awards:
            return
        learners = {learner.id: learner for learner in prepared.learners}
        outcomes = await asyncio.gather(
            *(self._notify_one(prepared, learners[a.student_id], a) for a in result.awards),
            return_exceptions=True,
        )

        notified_at = datetime.now(timezone.utc)
        delivered = False
        for award, outcome in zip(result.awards, outcomes):
            if outcome is True:
                award.parent_notified = True
                award.parent_notified_at = notified_at
                delivered = True
            else:
                result.notification_failures.append(award.student_id)
        if not delivered:
            return
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.warning("parent_notified_flag_failed", award_ids=[a.id for a in result.awards], exc_info=True)


# ---------------------------------------------------------------------------
# Award shortcuts
# ---------------------------------------------------------------------------


async def quick_award(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    classroom_id: str,
    awarded_by: str,
    student_id: str,
    skill_id: str,
    now: datetime | None = None,
) -> AwardResult:
    """One learner, the skill's default points."""
    return await AwardPipeline(db, hooks).award(
        tenant_id, classroom_id, awarded_by, [student_id], skill_id, now=now
    )


async def award_table_group(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    table_group_id: str,
    awarded_by: str,
    skill_id: str,
    points: int | None = None,
    context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Award every member of a table group and record one group summary."""
    table_group_id = require_id(table_group_id, "table_group_id")
    table_group = await repository.get_table_group(db, table_group_id)
    if table_group is None or table_group.tenant_id != tenant_id:
        raise NotFoundError("table_group", table_group_id)
    return await AwardPipeline(db, hooks).award(
        tenant_id, table_group.classroom_id, awarded_by, list(table_group.member_ids), skill_id,
        points=points, context=context,
        group=GroupTarget("table_group", table_group.id, table_group.name),
        now=now,
    )


async def award_whole_class(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    classroom_id: str,
    awarded_by: str,
    skill_id: str,
    points: int | None = None,
    context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Award every enrolled learner in a classroom."""
    tenant_id = require_id(tenant_id, "tenant_id")
    classroom_id = require_id(classroom_id, "classroom_id")
    classroom = await repository.get_classroom(db, classroom_id)
    if classroom is None or classroom.tenant_id != tenant_id:
        raise NotFoundError("classroom", classroom_id)
    learners = await repository.list_enrolled_learners(db, tenant_id, classroom_id)
    return await AwardPipeline(db, hooks).award(
        tenant_id, classroom_id, awarded_by, [learner.id for learner in learners], skill_id,
        points=points, context=context,
        group=GroupTarget("whole_class", classroom.id, classroom.name),
        now=now,
    )


# ---------------------------------------------------------------------------
# Parent engagement
# ---------------------------------------------------------------------------


async def _load_award(db: AsyncSession, tenant_id: str, award_id: str) -> PointAward:
    award_id = require_id(award_id, "award_id")
    award = await repository.get_award(db, award_id)
    if award is None or award.tenant_id != tenant_id:
        raise NotFoundError("award", award_id)
    return award


async def add_reaction(
    db: AsyncSession,
    tenant_id: str,
    award_id: str,
    parent_id: str,
    reaction: str,
    now: datetime | None = None,
) -> PointAward:
    """Append a parent reaction. Existing reactions are never edited."""
    parent_id = require_id(parent_id, "parent_id")
    if reaction not in REACTIONS:
        raise ValidationError(f"reaction must be one of {sorted(REACTIONS)}")
    award = await _load_award(db, tenant_id, award_id)
    if now is None:
        now = datetime.now(timezone.utc)
    award.reactions = [
        *award.reactions,
        {"parent_id": parent_id, "reaction": reaction, "created_at": now.isoformat()},
    ]
    await db.commit()
    return award


async def mark_parent_viewed(
    db: AsyncSession,
    tenant_id: str,
    award_id: str,
    now: datetime | None = None,
) -> PointAward:
    award = await _load_award(db, tenant_id, award_id)
    if not award.parent_viewed:
        award.parent_viewed = True
        award.parent_viewed_at = now or datetime.now(timezone.utc)
        await db.commit()
    return award
