"""Suggestion generation: rank library skills against an observation and flag lopsided award history."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from explorer.db.models import BehaviourSkill
from explorer.points.schemas import Alternative
from explorer.points.scorer import matched_keywords, score_skill_match


@dataclass
class SuggestionDraft:
    """One suggested award, shared by every candidate learner."""

    skill: BehaviourSkill
    student_ids: list[str]
    points: int
    confidence: float
    detected_behaviours: list[str]
    alternatives: list[Alternative]
    reasoning: str


@dataclass
class GenerationResult:
    suggestions: list[SuggestionDraft] = field(default_factory=list)
    reasoning: str = ""
    patterns: list[str] = field(default_factory=list)


def _skill_reasoning(skill: BehaviourSkill, detected: list[str]) -> str:
    basis = ", ".join(detected[:3]) if detected else "contextual analysis"
    return f'Detected "{skill.name}" based on: {basis}'


def _overall_reasoning(suggestions: list[SuggestionDraft]) -> str:
    if not suggestions:
        return "No clear behaviour indicators detected."
    names = ", ".join(s.skill.name for s in suggestions[:3])
    return f"Detected indicators for: {names}. Confidence: {round(suggestions[0].confidence * 100)}%"


def _alternatives(
    observation: str,
    chosen: BehaviourSkill,
    candidates: Sequence[BehaviourSkill],
    min_confidence: float,
    limit: int,
) -> list[Alternative]:
    scored = []
    for skill in candidates:
        if skill.id == chosen.id:
            continue
        confidence = score_skill_match(observation, skill)
        if confidence >= min_confidence:
            scored.append(Alternative(skill_id=skill.id, skill_name=skill.name, confidence=confidence))
    scored.sort(key=lambda a: a.confidence, reverse=True)
    return scored[:limit]


def detect_patterns(
    recent_skill_names: Iterable[str],
    min_awards: int = 5,
    dominance_ratio: float = 0.4,
) -> list[str]:
    """Flag a skill that dominates the recent award window.

    Needs at least ``min_awards`` awards, and the top skill must account for
    ``dominance_ratio`` or more of them.
    """
    names = list(recent_skill_names)
    if len(names) < min_awards:
        return []
    top_name, top_count = Counter(names).most_common(1)[0]
    if top_count >= len(names) * dominance_ratio:
        return [f'High frequency of "{top_name}" awards']
    return []


def generate_suggestions(
    observation: str,
    student_ids: Sequence[str],
    library: Sequence[BehaviourSkill],
    recent_skill_names: Iterable[str] = (),
    max_suggestions: int = 5,
    alternative_min_confidence: float = 0.5,
    max_alternatives: int = 3,
    pattern_min_awards: int = 5,
    pattern_dominance_ratio: float = 0.4,
) -> GenerationResult:
    """Score every active positive skill and return the qualifying ones, best first.

    No suggestion is produced without at least one candidate learner; patterns
    are still reported.
    """
    patterns = detect_patterns(recent_skill_names, pattern_min_awards, pattern_dominance_ratio)
    active = [s for s in library if s.is_active]
    candidates = [s for s in active if s.is_positive]

    students = list(dict.fromkeys(student_ids))
    if not students or not (observation or "").strip():
        return GenerationResult(reasoning=_overall_reasoning([]), patterns=patterns)

    drafts: list[SuggestionDraft] = []
    for skill in candidates:
        confidence = score_skill_match(observation, skill)
        if confidence <= 0 or confidence < skill.auto_suggest_confidence:
            continue
        detected = matched_keywords(observation, skill)
        drafts.append(SuggestionDraft(
            skill=skill,
            student_ids=list(students),
            points=skill.default_points,
            confidence=confidence,
            detected_behaviours=detected,
            alternatives=_alternatives(observation, skill, active, alternative_min_confidence, max_alternatives),
            reasoning=_skill_reasoning(skill, detected),
        ))

    drafts.sort(key=lambda d: d.confidence, reverse=True)
    drafts = drafts[:max_suggestions]
    return GenerationResult(suggestions=drafts, reasoning=_overall_reasoning(drafts), patterns=patterns)
