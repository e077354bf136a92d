"""Skill match scoring: a weighted keyword coverage ratio for one observation and one skill.

Trigger keywords weigh 1, observation phrases 2 and context indicators 0.5.
Matching is case-insensitive substring containment.
"""

from __future__ import annotations

from explorer.db.models import BehaviourSkill

KEYWORD_WEIGHT = 1.0
PHRASE_WEIGHT = 2.0
CONTEXT_WEIGHT = 0.5


def _weighted_terms(skill: BehaviourSkill) -> list[tuple[str, float]]:
    terms = [(k, KEYWORD_WEIGHT) for k in skill.trigger_keywords or []]
    terms += [(p, PHRASE_WEIGHT) for p in skill.observation_phrases or []]
    terms += [(c, CONTEXT_WEIGHT) for c in skill.context_indicators or []]
    return [(term.lower(), weight) for term, weight in terms if term]


def score_skill_match(observation: str, skill: BehaviourSkill) -> float:
    """Confidence in [0, 1] that ``observation`` describes ``skill``.

    0.0 when the skill has no scoring terms configured.
    """
    text = (observation or "").lower()
    hits = 0.0
    max_possible = 0.0
    for term, weight in _weighted_terms(skill):
        max_possible += weight
        if term in text:
            hits += weight
    if max_possible <= 0:
        return 0.0
    return hits / max_possible


def matched_keywords(observation: str, skill: BehaviourSkill) -> list[str]:
    """Trigger keywords of ``skill`` that occur in ``observation``, in configured order."""
    text = (observation or "").lower()
    return [k for k in skill.trigger_keywords or [] if k and k.lower() in text]
