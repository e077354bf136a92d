"""Learner and classroom analytics computed from raw award history.

Aggregates are rebuilt on every call from the stored awards; nothing is kept live.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.db.models import Learner, PointAward, TableGroup
from explorer.errors import NotFoundError, ValidationError, require_id
from explorer.points import repository
from explorer.points.interaction_log import InteractionLog, InteractionRecord, Timer, get_interaction_log
from explorer.points.schemas import (
    ClassroomAnalytics,
    DailyPoints,
    SkillBreakdown,
    StudentAnalytics,
    StudentTotal,
    TableGroupPerformance,
    TrendClassification,
)
from explorer.points.streak_service import local_day, resolve_timezone

logger = logging.getLogger(__name__)

TREND_WINDOW_DAYS = 7
IMPROVING_RATIO = 1.2
DECLINING_RATIO = 0.8
EXCELLING_CLASS_MULTIPLIER = 1.5
HIGH_CONFIDENCE_MIN_RECORDS = 10
NEEDS_SUPPORT_RATIO = 0.5
TOP_PERFORMERS = 3

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def classify_trend(
    awards: Iterable[PointAward],
    now: datetime,
    class_daily_average: float,
    sample_size: int | None = None,
) -> TrendClassification:
    """Compare the last 7 days' daily average against the 7 days before.

    ``class_daily_average`` is the classroom's per-learner points per day for
    the excelling check. Confidence is high from 10 award records up.
    """
    recent_start = now - timedelta(days=TREND_WINDOW_DAYS)
    older_start = now - timedelta(days=2 * TREND_WINDOW_DAYS)
    recent_sum = 0
    older_sum = 0
    counted = 0
    for award in awards:
        counted += 1
        if recent_start <= award.awarded_at <= now:
            recent_sum += award.points
        elif older_start <= award.awarded_at < recent_start:
            older_sum += award.points

    recent_avg = recent_sum / TREND_WINDOW_DAYS
    older_avg = older_sum / TREND_WINDOW_DAYS

    if recent_avg > older_avg * IMPROVING_RATIO:
        trend = "excelling" if recent_avg > class_daily_average * EXCELLING_CLASS_MULTIPLIER else "improving"
    elif recent_avg < older_avg * DECLINING_RATIO:
        trend = "needs_support"
    else:
        trend = "stable"

    size = counted if sample_size is None else sample_size
    return TrendClassification(
        trend=trend,
        confidence="high" if size >= HIGH_CONFIDENCE_MIN_RECORDS else "low",
        recent_daily_average=round(recent_avg, 3),
        older_daily_average=round(older_avg, 3),
    )


def skill_breakdown(awards: Sequence[PointAward]) -> list[SkillBreakdown]:
    """Per-skill counts and points, most used first."""
    buckets: dict[str, dict] = {}
    for award in awards:
        bucket = buckets.setdefault(award.skill_id, {
            "skill_id": award.skill_id,
            "skill_name": award.skill_name,
            "emoji": award.skill_emoji,
            "count": 0,
            "points": 0,
        })
        bucket["count"] += 1
        bucket["points"] += award.points

    total = len(awards)
    rows = [
        SkillBreakdown(**b, percentage=round(b["count"] / total * 100, 1) if total else 0.0)
        for b in buckets.values()
    ]
    rows.sort(key=lambda r: (-r.count, r.skill_name))
    return rows


def group_by_learner(awards: Iterable[PointAward]) -> dict[str, list[PointAward]]:
    grouped: dict[str, list[PointAward]] = defaultdict(list)
    for award in awards:
        grouped[award.student_id].append(award)
    return grouped


def _student_totals(learners: Sequence[Learner], by_learner: dict[str, list[PointAward]]) -> list[StudentTotal]:
    totals = [
        StudentTotal(
            student_id=learner.id,
            student_name=learner.display_name,
            total_points=sum(a.points for a in by_learner.get(learner.id, [])),
            award_count=len(by_learner.get(learner.id, [])),
        )
        for learner in learners
    ]
    totals.sort(key=lambda t: (-t.total_points, t.student_name))
    return totals


def _table_group_performance(
    groups: Sequence[TableGroup],
    totals: dict[str, int],
) -> list[TableGroupPerformance]:
    rows = []
    for group in groups:
        members = [m for m in group.member_ids if m in totals]
        group_total = sum(totals[m] for m in members)
        rows.append(TableGroupPerformance(
            table_group_id=group.id,
            name=group.name,
            total_points=group_total,
            average_points=round(group_total / len(members), 2) if members else 0.0,
            member_count=len(members),
        ))
    rows.sort(key=lambda r: (-r.total_points, r.name))
    return rows


def summarize_classroom(
    classroom_id: str,
    learners: Sequence[Learner],
    awards: Sequence[PointAward],
    period_start: datetime,
    period_end: datetime,
    table_groups: Sequence[TableGroup] = (),
) -> ClassroomAnalytics:
    """Classroom rollup over enrolled learners. Awards to anyone else are ignored."""
    enrolled = {learner.id for learner in learners}
    in_scope = [a for a in awards if a.student_id in enrolled]
    by_learner = group_by_learner(in_scope)
    distribution = _student_totals(learners, by_learner)

    total = sum(a.points for a in in_scope)
    average = total / len(learners) if learners else 0.0
    usage = skill_breakdown(in_scope)

    needs_support = []
    if average > 0:
        needs_support = sorted(
            (t for t in distribution if t.total_points < average * NEEDS_SUPPORT_RATIO),
            key=lambda t: (t.total_points, t.student_name),
        )

    return ClassroomAnalytics(
        classroom_id=classroom_id,
        period_start=period_start,
        period_end=period_end,
        total_points=total,
        award_count=len(in_scope),
        enrolled_count=len(learners),
        average_points=round(average, 2),
        student_distribution=distribution,
        top_performers=[t for t in distribution if t.total_points > 0][:TOP_PERFORMERS],
        needs_support=needs_support,
        skill_usage=usage,
        dominant_skill=usage[0] if usage else None,
        table_groups=_table_group_performance(table_groups, {t.student_id: t.total_points for t in distribution}),
    )


def _daily_series(awards: Sequence[PointAward], start: datetime, end: datetime, tz_name: str) -> list[DailyPoints]:
    points: dict = defaultdict(int)
    counts: dict = defaultdict(int)
    for award in awards:
        day = local_day(award.awarded_at, tz_name)
        points[day] += award.points
        counts[day] += 1

    series = []
    day = local_day(start, tz_name)
    last = local_day(end, tz_name)
    while day <= last:
        series.append(DailyPoints(day=day, points=points[day], count=counts[day]))
        day += timedelta(days=1)
    return series


def _weekday_distribution(awards: Sequence[PointAward], tz_name: str) -> dict[str, int]:
    distribution = dict.fromkeys(WEEKDAYS, 0)
    for award in awards:
        distribution[WEEKDAYS[local_day(award.awarded_at, tz_name).weekday()]] += 1
    return distribution


def _period(period_days: int, now: datetime | None) -> tuple[datetime, datetime]:
    if period_days < 1:
        raise ValidationError("period_days must be at least 1")
    end = now or datetime.now(timezone.utc)
    return end - timedelta(days=period_days), end


async def student_analytics(
    db: AsyncSession,
    tenant_id: str,
    student_id: str,
    period_days: int = 30,
    now: datetime | None = None,
    log: InteractionLog | None = None,
) -> StudentAnalytics:
    """Totals, skill mix, time patterns, class comparison and trend for one learner.

    Each call is recorded in the interaction log as a ``student_insight`` request.
    """
    tenant_id = require_id(tenant_id, "tenant_id")
    student_id = require_id(student_id, "student_id")
    log = log if log is not None else get_interaction_log()
    timer = Timer()
    request = f"student {student_id}, last {period_days} days"

    try:
        stats = await _student_analytics(db, tenant_id, student_id, period_days, now)
    except Exception as exc:
        log.record(InteractionRecord(
            tenant_id=tenant_id,
            request_type="student_insight",
            input_summary=request,
            output_summary="",
            latency_ms=timer.elapsed_ms,
            success=False,
            error=str(exc),
        ))
        raise

    log.record(InteractionRecord(
        tenant_id=tenant_id,
        request_type="student_insight",
        input_summary=request,
        output_summary=f"trend {stats.trend.trend} ({stats.trend.confidence} confidence), {stats.total_points} points",
        latency_ms=timer.elapsed_ms,
        success=True,
    ))
    return stats


async def _student_analytics(
    db: AsyncSession,
    tenant_id: str,
    student_id: str,
    period_days: int,
    now: datetime | None,
) -> StudentAnalytics:
    start, end = _period(period_days, now)

    learner = (await repository.get_learners(db, tenant_id, [student_id])).get(student_id)
    if learner is None:
        raise NotFoundError("learner", student_id)

    history_start = min(start, end - timedelta(days=2 * TREND_WINDOW_DAYS))
    history = await repository.list_learner_awards(db, tenant_id, student_id, since=history_start, until=end)
    awards = [a for a in history if a.awarded_at >= start]

    tz_name = "UTC"
    classmates: list[Learner] = []
    class_awards: list[PointAward] = []
    if learner.classroom_id:
        tz_name = await resolve_timezone(db, learner.classroom_id)
        classmates = await repository.list_enrolled_learners(db, tenant_id, learner.classroom_id)
        class_awards = await repository.list_classroom_awards(db, tenant_id, learner.classroom_id, since=start, until=end)
    if learner.id not in {c.id for c in classmates}:
        classmates = [*classmates, learner]
        class_awards = [*class_awards, *(a for a in awards if a.classroom_id != learner.classroom_id)]

    classroom = summarize_classroom(learner.classroom_id or "", classmates, class_awards, start, end)
    totals = {t.student_id: t.total_points for t in classroom.student_distribution}
    own_total = sum(a.points for a in awards)
    rank = 1 + sum(1 for sid, total in totals.items() if sid != learner.id and total > own_total)
    percentile = round((len(totals) - rank + 1) / len(totals) * 100, 1)

    trend = classify_trend(
        history,
        end,
        class_daily_average=classroom.average_points / period_days,
        sample_size=len(awards),
    )

    return StudentAnalytics(
        student_id=learner.id,
        student_name=learner.display_name,
        period_start=start,
        period_end=end,
        total_points=own_total,
        positive_points=sum(a.points for a in awards if a.is_positive),
        constructive_points=sum(-a.points for a in awards if not a.is_positive),
        award_count=len(awards),
        skill_breakdown=skill_breakdown(awards),
        weekday_distribution=_weekday_distribution(awards, tz_name),
        daily_trend=_daily_series(awards, start, end, tz_name),
        class_average=classroom.average_points,
        rank=rank,
        percentile=percentile,
        trend=trend,
    )


async def classroom_analytics(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    period_days: int = 30,
    now: datetime | None = None,
) -> ClassroomAnalytics:
    tenant_id = require_id(tenant_id, "tenant_id")
    classroom_id = require_id(classroom_id, "classroom_id")
    start, end = _period(period_days, now)

    classroom = await repository.get_classroom(db, classroom_id)
    if classroom is None or classroom.tenant_id != tenant_id:
        raise NotFoundError("classroom", classroom_id)

    learners = await repository.list_enrolled_learners(db, tenant_id, classroom_id)
    awards = await repository.list_classroom_awards(db, tenant_id, classroom_id, since=start, until=end)
    groups = await repository.list_table_groups(db, tenant_id, classroom_id)
    summary = summarize_classroom(classroom_id, learners, awards, start, end, groups)
    if summary.needs_support:
        logger.info("Classroom %s: %d learners below half the class average", classroom_id, len(summary.needs_support))
    return summary
