"""Suggestion generation, acceptance, rejection and expiry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from explorer.config import Settings
from explorer.db.models import PointAward, PointSuggestion
from explorer.errors import NotFoundError, StateConflictError, ValidationError
from explorer.points.interaction_log import InteractionLog
from explorer.points.schemas import SuggestionOverrides
from explorer.points.skill_library import create_custom_skill, set_skill_active
from explorer.points.suggestion_service import (
    GENERATED_EVENT,
    REJECTED_EVENT,
    accept_suggestion,
    expire_stale_suggestions,
    list_pending_suggestions,
    reject_suggestion,
    suggest_from_observation,
)

NOW = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)
OBSERVATION = "Emma was a super star when she packed away the blocks"


async def _count(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


@pytest_asyncio.fixture
async def star(db_session, classroom, skills):
    return await create_custom_skill(
        db_session, classroom.tenant_id, classroom.school_id, classroom.id, "teacher-1", "Super Star", "\u2b50", now=NOW
    )


async def _suggest(db, hooks, classroom, student_ids, text=OBSERVATION, log=None):
    return await suggest_from_observation(
        db, hooks, classroom.tenant_id, classroom.id, text, student_ids,
        now=NOW, log=log if log is not None else InteractionLog(capacity=10),
    )


class TestSuggestFromObservation:
    @pytest.mark.asyncio
    async def test_persists_pending_suggestion(self, db_session, hooks, classroom, learners, star):
        emma = learners["Emma"]
        batch = await _suggest(db_session, hooks, classroom, [emma.id])

        assert batch.suggestions
        top = batch.suggestions[0]
        assert top.suggested_skill_name == "Super Star"
        assert top.status == "pending"
        assert top.suggested_student_ids == [emma.id]
        assert top.expires_at == NOW + timedelta(minutes=30)
        assert top.confidence >= star.auto_suggest_confidence
        assert top.detected_behaviours == ["super", "star"]
        assert batch.reasoning.startswith("Detected indicators for: Super Star")

        event_type, _, payload = hooks.events.publish.call_args.args
        assert event_type == GENERATED_EVENT
        assert payload["suggestion_ids"] == [s.id for s in batch.suggestions]
        assert await _count(db_session, PointSuggestion) == len(batch.suggestions)

    @pytest.mark.asyncio
    async def test_unknown_learners_dropped(self, db_session, hooks, classroom, learners, star):
        batch = await _suggest(db_session, hooks, classroom, [learners["Emma"].id, "ghost"])
        assert batch.suggestions[0].suggested_student_ids == [learners["Emma"].id]

    @pytest.mark.asyncio
    async def test_no_learner_no_suggestion(self, db_session, hooks, classroom, learners, star):
        batch = await _suggest(db_session, hooks, classroom, ["ghost"])
        assert batch.suggestions == []
        assert await _count(db_session, PointSuggestion) == 0
        hooks.events.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unmatched_observation(self, db_session, hooks, classroom, learners, star):
        batch = await _suggest(db_session, hooks, classroom, [learners["Emma"].id], text="Ate lunch")
        assert batch.suggestions == []
        assert batch.reasoning == "No clear behaviour indicators detected."

    @pytest.mark.asyncio
    async def test_unknown_classroom(self, db_session, hooks, classroom, learners, star):
        log = InteractionLog(capacity=10)
        with pytest.raises(NotFoundError):
            await suggest_from_observation(
                db_session, hooks, classroom.tenant_id, "missing", OBSERVATION, [learners["Emma"].id], log=log
            )
        assert log.entries[-1].success is False

    @pytest.mark.asyncio
    async def test_interaction_recorded(self, db_session, hooks, classroom, learners, star):
        log = InteractionLog(capacity=10)
        batch = await _suggest(db_session, hooks, classroom, [learners["Emma"].id], log=log)
        entry = log.entries[-1]
        assert entry.request_type == "suggest_points"
        assert entry.success is True
        assert entry.output_summary == batch.reasoning

    @pytest.mark.asyncio
    async def test_custom_ttl(self, db_session, hooks, classroom, learners, star):
        batch = await suggest_from_observation(
            db_session, hooks, classroom.tenant_id, classroom.id, OBSERVATION, [learners["Emma"].id],
            now=NOW, settings=Settings(suggestion_ttl_minutes=5), log=InteractionLog(capacity=10),
        )
        assert batch.suggestions[0].expires_at == NOW + timedelta(minutes=5)


class TestAcceptSuggestion:
    @pytest.mark.asyncio
    async def test_accept_awards_as_suggested(self, db_session, hooks, classroom, learners, star):
        emma = learners["Emma"]
        suggestion = (await _suggest(db_session, hooks, classroom, [emma.id])).suggestions[0]

        result = await accept_suggestion(
            db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW + timedelta(minutes=2)
        )

        assert suggestion.status == "accepted"
        assert suggestion.accepted_by == "teacher-1"
        assert suggestion.resolved_at == NOW + timedelta(minutes=2)
        assert suggestion.modified_award is None
        award = result.awards[0]
        assert award.student_id == emma.id
        assert award.skill_id == suggestion.suggested_skill_id
        assert award.ai_generated is True
        assert award.ai_suggestion_id == suggestion.id
        assert award.ai_confidence == suggestion.confidence
        assert award.context["description"] == f"AI suggested: {suggestion.reasoning}"

    @pytest.mark.asyncio
    async def test_overrides_make_it_modified(self, db_session, hooks, classroom, learners, skills, star):
        emma, liam = learners["Emma"], learners["Liam"]
        suggestion = (await _suggest(db_session, hooks, classroom, [emma.id])).suggestions[0]
        teamwork = skills["Teamwork Star"]

        result = await accept_suggestion(
            db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1",
            overrides=SuggestionOverrides(student_ids=[emma.id, liam.id], skill_id=teamwork.id),
            now=NOW + timedelta(minutes=1),
        )

        assert suggestion.status == "modified"
        assert suggestion.modified_award == {
            "student_ids": [emma.id, liam.id],
            "skill_id": teamwork.id,
            "points": teamwork.default_points,
        }
        assert {a.skill_id for a in result.awards} == {teamwork.id}
        assert result.group_award is not None

    @pytest.mark.asyncio
    async def test_points_override(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        result = await accept_suggestion(
            db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1",
            overrides=SuggestionOverrides(points=3), now=NOW,
        )
        assert suggestion.status == "modified"
        assert result.awards[0].points == 3

    @pytest.mark.asyncio
    async def test_empty_overrides_count_as_accepted(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        await accept_suggestion(
            db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1",
            overrides=SuggestionOverrides(), now=NOW,
        )
        assert suggestion.status == "accepted"

    @pytest.mark.asyncio
    async def test_terminal_suggestion_cannot_be_reused(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        await accept_suggestion(db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW)
        awards_before = await _count(db_session, PointAward)

        with pytest.raises(StateConflictError):
            await accept_suggestion(db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW)
        with pytest.raises(StateConflictError):
            await reject_suggestion(db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW)

        assert await _count(db_session, PointAward) == awards_before
        assert suggestion.status == "accepted"

    @pytest.mark.asyncio
    async def test_bad_override_leaves_suggestion_pending(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        with pytest.raises(ValidationError):
            await accept_suggestion(
                db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1",
                overrides=SuggestionOverrides(points=50), now=NOW,
            )
        assert suggestion.status == "pending"
        assert await _count(db_session, PointAward) == 0

    @pytest.mark.asyncio
    async def test_deactivated_skill_blocks_accept(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        await set_skill_active(db_session, suggestion.suggested_skill_id, False, now=NOW)

        with pytest.raises(StateConflictError):
            await accept_suggestion(db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW)
        assert suggestion.status == "pending"
        assert await _count(db_session, PointAward) == 0

    @pytest.mark.asyncio
    async def test_unknown_suggestion(self, db_session, hooks, classroom):
        with pytest.raises(NotFoundError):
            await accept_suggestion(db_session, hooks, classroom.tenant_id, "missing", "teacher-1")


class TestRejectSuggestion:
    @pytest.mark.asyncio
    async def test_reject_records_reason(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]
        rejected = await reject_suggestion(
            db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", reason="Wrong child", now=NOW
        )
        assert rejected.status == "rejected"
        assert rejected.rejected_by == "teacher-1"
        assert rejected.rejection_reason == "Wrong child"
        assert await _count(db_session, PointAward) == 0
        assert hooks.events.publish.call_args.args[0] == REJECTED_EVENT


class TestExpiry:
    @pytest.mark.asyncio
    async def test_overdue_suggestion_expires_on_accept(self, db_session, hooks, classroom, learners, star):
        suggestion = (await _suggest(db_session, hooks, classroom, [learners["Emma"].id])).suggestions[0]

        with pytest.raises(StateConflictError):
            await accept_suggestion(
                db_session, hooks, classroom.tenant_id, suggestion.id, "teacher-1", now=NOW + timedelta(hours=1)
            )
        assert suggestion.status == "expired"
        assert await _count(db_session, PointAward) == 0

    @pytest.mark.asyncio
    async def test_sweep_expires_stale_only(self, db_session, hooks, classroom, learners, star):
        await _suggest(db_session, hooks, classroom, [learners["Emma"].id])
        later = await suggest_from_observation(
            db_session, hooks, classroom.tenant_id, classroom.id, "Liam is a super star",
            [learners["Liam"].id], now=NOW + timedelta(minutes=20), log=InteractionLog(capacity=10),
        )

        pending = await list_pending_suggestions(
            db_session, classroom.tenant_id, classroom.id, now=NOW + timedelta(minutes=35)
        )
        assert [s.id for s in pending] == [s.id for s in later.suggestions]

        expired = await expire_stale_suggestions(
            db_session, classroom.tenant_id, classroom.id, now=NOW + timedelta(hours=2)
        )
        assert expired == len(later.suggestions)
        assert await list_pending_suggestions(
            db_session, classroom.tenant_id, classroom.id, now=NOW + timedelta(hours=2)
        ) == []
