"""Streak persistence through the award pipeline."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from explorer.points.award_service import quick_award
from explorer.points.streak_service import advance_streak, get_learner_streak, list_classroom_streaks


async def _award(db, hooks, classroom, learner, skill, when):
    return await quick_award(db, hooks, classroom.tenant_id, classroom.id, "teacher-1", learner.id, skill.id, now=when)


class TestStreakService:
    @pytest.mark.asyncio
    async def test_school_timezone_decides_the_day(self, db_session, hooks, classroom, learners, skills):
        emma, kind = learners["Emma"], skills["Kind Hearts"]
        # 23:30 and 00:30 in Sydney, one hour apart in UTC
        await _award(db_session, hooks, classroom, emma, kind, datetime(2026, 3, 2, 12, 30, tzinfo=timezone.utc))
        await _award(db_session, hooks, classroom, emma, kind, datetime(2026, 3, 2, 13, 30, tzinfo=timezone.utc))

        streak = await get_learner_streak(db_session, emma.id)
        assert streak.current_streak == 2
        assert streak.current_streak_start == date(2026, 3, 2)
        assert streak.last_point_day == date(2026, 3, 3)

    @pytest.mark.asyncio
    async def test_same_local_day_counts_once(self, db_session, hooks, classroom, learners, skills):
        emma, kind = learners["Emma"], skills["Kind Hearts"]
        await _award(db_session, hooks, classroom, emma, kind, datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc))
        await _award(db_session, hooks, classroom, emma, kind, datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc))

        streak = await get_learner_streak(db_session, emma.id)
        assert streak.current_streak == 1
        assert streak.last_point_date == datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_gap_resets_but_keeps_longest(self, db_session, hooks, classroom, learners, skills):
        emma, kind = learners["Emma"], skills["Kind Hearts"]
        start = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)
        for offset in (0, 1, 2, 5):
            await _award(db_session, hooks, classroom, emma, kind, start + timedelta(days=offset))

        streak = await get_learner_streak(db_session, emma.id)
        assert streak.current_streak == 1
        assert streak.longest_streak == 3
        assert streak.longest_streak_start == date(2026, 3, 2)
        assert streak.longest_streak_end == date(2026, 3, 4)
        assert streak.milestones_achieved == []

    @pytest.mark.asyncio
    async def test_backdated_award_leaves_streak(self, db_session, hooks, classroom, learners, skills):
        emma, kind = learners["Emma"], skills["Kind Hearts"]
        latest = datetime(2026, 3, 5, 1, 0, tzinfo=timezone.utc)
        await _award(db_session, hooks, classroom, emma, kind, latest)
        await _award(db_session, hooks, classroom, emma, kind, latest - timedelta(days=2))

        streak = await get_learner_streak(db_session, emma.id)
        assert streak.current_streak == 1
        assert streak.last_point_date == latest

    @pytest.mark.asyncio
    async def test_constructive_award_returns_existing_row(self, db_session, classroom, learners):
        assert await advance_streak(
            db_session, classroom.tenant_id, learners["Emma"].id, classroom.id, False
        ) is None

    @pytest.mark.asyncio
    async def test_classroom_listing_longest_current_first(self, db_session, hooks, classroom, learners, skills):
        kind = skills["Kind Hearts"]
        start = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)
        await _award(db_session, hooks, classroom, learners["Liam"], kind, start)
        for offset in (0, 1):
            await _award(db_session, hooks, classroom, learners["Emma"], kind, start + timedelta(days=offset))

        streaks = await list_classroom_streaks(db_session, classroom.tenant_id, classroom.id)
        assert [s.student_id for s in streaks] == [learners["Emma"].id, learners["Liam"].id]
