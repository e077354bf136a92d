"""Suggestion lifecycle.

State progression: pending -> accepted | modified | rejected | expired
All four outcomes are terminal. Expiry is discovered lazily when pending
suggestions are listed or acted on.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings, get_settings
from explorer.db.models import PointSuggestion
from explorer.errors import NotFoundError, StateConflictError, require_id
from explorer.points import repository
from explorer.points.award_service import AwardPipeline, AwardResult
from explorer.points.hooks import EngineHooks
from explorer.points.interaction_log import InteractionLog, InteractionRecord, Timer, get_interaction_log
from explorer.points.schemas import SuggestionOverrides
from explorer.points.suggestions import generate_suggestions

logger = structlog.get_logger()

VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["accepted", "modified", "rejected", "expired"],
    "accepted": [],
    "modified": [],
    "rejected": [],
    "expired": [],
}

GENERATED_EVENT = "points.suggestions_generated"
REJECTED_EVENT = "points.suggestion_rejected"


def validate_transition(current_status: str, target_status: str) -> None:
    """Raise StateConflictError unless ``current_status -> target_status`` is allowed."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise StateConflictError(
            f"Invalid suggestion transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


@dataclass
class SuggestionBatch:
    suggestions: list[PointSuggestion] = field(default_factory=list)
    reasoning: str = ""
    patterns: list[str] = field(default_factory=list)


async def _publish(hooks: EngineHooks | None, event_type: str, scope: dict, payload: dict) -> None:
    if hooks is None or hooks.events is None:
        return
    try:
        await hooks.events.publish(event_type, scope, payload)
    except Exception:
        logger.warning("domain_event_failed", event=event_type, exc_info=True)


async def suggest_from_observation(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    classroom_id: str,
    observation_text: str,
    student_ids: Sequence[str],
    source: str = "teacher_note",
    now: datetime | None = None,
    settings: Settings | None = None,
    log: InteractionLog | None = None,
) -> SuggestionBatch:
    """Score an observation against the classroom's skills and store the pending suggestions."""
    tenant_id = require_id(tenant_id, "tenant_id")
    classroom_id = require_id(classroom_id, "classroom_id")
    settings = settings or get_settings()
    log = log if log is not None else get_interaction_log()
    now = now or datetime.now(timezone.utc)
    timer = Timer()

    try:
        batch = await _suggest(db, hooks, tenant_id, classroom_id, observation_text, student_ids, source, now, settings)
    except Exception as exc:
        log.record(InteractionRecord(
            tenant_id=tenant_id,
            classroom_id=classroom_id,
            request_type="suggest_points",
            input_summary=(observation_text or "")[:200],
            output_summary="",
            latency_ms=timer.elapsed_ms,
            success=False,
            error=str(exc),
        ))
        raise

    log.record(InteractionRecord(
        tenant_id=tenant_id,
        classroom_id=classroom_id,
        request_type="suggest_points",
        input_summary=(observation_text or "")[:200],
        output_summary=batch.reasoning,
        latency_ms=timer.elapsed_ms,
        success=True,
    ))
    return batch


async def _suggest(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    classroom_id: str,
    observation_text: str,
    student_ids: Sequence[str],
    source: str,
    now: datetime,
    settings: Settings,
) -> SuggestionBatch:
    classroom = await repository.get_classroom(db, classroom_id)
    if classroom is None or classroom.tenant_id != tenant_id:
        raise NotFoundError("classroom", classroom_id)

    requested = [s for s in dict.fromkeys(student_ids or []) if s]
    found = await repository.get_learners(db, tenant_id, requested)
    candidates = [sid for sid in requested if sid in found]
    if len(candidates) < len(requested):
        logger.info("suggestion_candidates_dropped", dropped=[s for s in requested if s not in found])

    library = await repository.list_skills(db, tenant_id, classroom.school_id, classroom_id, active_only=True)
    recent = await repository.list_classroom_awards(
        db, tenant_id, classroom_id,
        since=now - timedelta(days=settings.pattern_window_days),
        until=now,
        limit=settings.pattern_window_limit,
    )

    generated = generate_suggestions(
        observation_text,
        candidates,
        library,
        recent_skill_names=[a.skill_name for a in recent],
        max_suggestions=settings.max_suggestions,
        alternative_min_confidence=settings.alternative_min_confidence,
        max_alternatives=settings.max_alternatives,
        pattern_min_awards=settings.pattern_min_awards,
        pattern_dominance_ratio=settings.pattern_dominance_ratio,
    )
    for pattern in generated.patterns:
        logger.info("award_pattern_detected", classroom_id=classroom_id, pattern=pattern)

    expires_at = now + timedelta(minutes=settings.suggestion_ttl_minutes)
    rows = [
        PointSuggestion(
            tenant_id=tenant_id,
            school_id=classroom.school_id,
            classroom_id=classroom_id,
            observation_source=source,
            observation_text=observation_text,
            suggested_student_ids=list(draft.student_ids),
            suggested_skill_id=draft.skill.id,
            suggested_skill_name=draft.skill.name,
            suggested_points=draft.points,
            reasoning=draft.reasoning,
            confidence=draft.confidence,
            detected_behaviours=list(draft.detected_behaviours),
            alternatives=[a.model_dump() for a in draft.alternatives],
            status="pending",
            suggested_at=now,
            expires_at=expires_at,
        )
        for draft in generated.suggestions
    ]
    if rows:
        await repository.add_suggestions(db, rows)
        await db.commit()
        await _publish(hooks, GENERATED_EVENT, {"tenant_id": tenant_id, "classroom_id": classroom_id}, {
            "suggestion_ids": [r.id for r in rows],
            "skill_ids": [r.suggested_skill_id for r in rows],
            "student_ids": candidates,
        })

    return SuggestionBatch(suggestions=rows, reasoning=generated.reasoning, patterns=generated.patterns)


async def expire_stale_suggestions(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    now: datetime | None = None,
) -> int:
    """Expire every pending suggestion in a classroom whose window has passed. Commits."""
    expired = await repository.expire_pending_before(db, tenant_id, classroom_id, now or datetime.now(timezone.utc))
    if expired:
        await db.commit()
        logger.info("suggestions_expired", classroom_id=classroom_id, count=expired)
    return expired


async def list_pending_suggestions(
    db: AsyncSession,
    tenant_id: str,
    classroom_id: str,
    now: datetime | None = None,
) -> list[PointSuggestion]:
    """Pending suggestions for a classroom, after sweeping out expired ones."""
    tenant_id = require_id(tenant_id, "tenant_id")
    classroom_id = require_id(classroom_id, "classroom_id")
    await expire_stale_suggestions(db, tenant_id, classroom_id, now)
    return await repository.list_pending_suggestions(db, tenant_id, classroom_id)


async def _load_pending(
    db: AsyncSession,
    tenant_id: str,
    suggestion_id: str,
    target: str,
    now: datetime,
) -> PointSuggestion:
    suggestion_id = require_id(suggestion_id, "suggestion_id")
    suggestion = await repository.get_suggestion(db, suggestion_id)
    if suggestion is None or suggestion.tenant_id != tenant_id:
        raise NotFoundError("suggestion", suggestion_id)

    if suggestion.status == "pending" and suggestion.expires_at <= now:
        if await repository.transition_suggestion(db, suggestion, "expired", resolved_at=now):
            await db.commit()
            logger.info("suggestions_expired", classroom_id=suggestion.classroom_id, count=1)
        else:
            await db.rollback()
            await db.refresh(suggestion)

    validate_transition(suggestion.status, target)
    return suggestion


async def _claim(db: AsyncSession, suggestion: PointSuggestion, target: str, **fields) -> None:
    """Take the pending -> ``target`` transition, or fail if another decision got there first."""
    if not await repository.transition_suggestion(db, suggestion, target, **fields):
        raise StateConflictError(f"suggestion {suggestion.id} is no longer pending")


async def accept_suggestion(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    suggestion_id: str,
    accepted_by: str,
    overrides: SuggestionOverrides | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Award a pending suggestion, with optional teacher overrides.

    Any override makes the outcome ``modified`` and is stored for audit. The
    status change is claimed first and commits together with the awards.
    """
    tenant_id = require_id(tenant_id, "tenant_id")
    accepted_by = require_id(accepted_by, "accepted_by")
    now = now or datetime.now(timezone.utc)
    modified = overrides is not None and not overrides.is_empty
    target = "modified" if modified else "accepted"

    suggestion = await _load_pending(db, tenant_id, suggestion_id, target, now)

    student_ids = list(suggestion.suggested_student_ids)
    skill_id = suggestion.suggested_skill_id
    points = suggestion.suggested_points
    if modified:
        student_ids = overrides.student_ids if overrides.student_ids is not None else student_ids
        skill_id = overrides.skill_id or skill_id
        if overrides.points is not None:
            points = overrides.points
        elif overrides.skill_id:
            # A different skill starts from its own default
            points = None

    pipeline = AwardPipeline(db, hooks)
    prepared = await pipeline.prepare(
        tenant_id, suggestion.classroom_id, accepted_by, student_ids, skill_id,
        points=points,
        context={"description": f"AI suggested: {suggestion.reasoning}", "observation": suggestion.observation_text},
        ai_suggestion_id=suggestion.id,
        ai_confidence=suggestion.confidence,
        now=now,
    )
    outcome = {"accepted_by": accepted_by, "resolved_at": now}
    if modified:
        outcome["modified_award"] = {
            "student_ids": [learner.id for learner in prepared.learners],
            "skill_id": prepared.skill.id,
            "points": prepared.points,
        }
    try:
        await _claim(db, suggestion, target, **outcome)
        result = await pipeline.apply(prepared)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("suggestion_resolved", suggestion_id=suggestion.id, status=target, awards=len(result.awards))
    await pipeline.dispatch(prepared, result)
    return result


async def reject_suggestion(
    db: AsyncSession,
    hooks: EngineHooks | None,
    tenant_id: str,
    suggestion_id: str,
    rejected_by: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> PointSuggestion:
    tenant_id = require_id(tenant_id, "tenant_id")
    rejected_by = require_id(rejected_by, "rejected_by")
    now = now or datetime.now(timezone.utc)

    suggestion = await _load_pending(db, tenant_id, suggestion_id, "rejected", now)
    try:
        await _claim(db, suggestion, "rejected", rejected_by=rejected_by, rejection_reason=reason, resolved_at=now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("suggestion_resolved", suggestion_id=suggestion.id, status="rejected")
    await _publish(hooks, REJECTED_EVENT, {"tenant_id": tenant_id, "classroom_id": suggestion.classroom_id}, {
        "suggestion_id": suggestion.id,
        "skill_id": suggestion.suggested_skill_id,
        "reason": reason,
        "rejected_by": rejected_by,
    })
    return suggestion
