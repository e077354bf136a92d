"""Suggestion generator: qualification, ranking, alternatives and pattern flags."""

from __future__ import annotations

import pytest

from explorer.db.models import BehaviourSkill
from explorer.points.suggestions import detect_patterns, generate_suggestions


def _skill(skill_id, name, keywords=(), phrases=(), threshold=0.5, positive=True, active=True, points=1):
    return BehaviourSkill(
        id=skill_id,
        name=name,
        is_positive=positive,
        is_active=active,
        default_points=points if positive else -1,
        trigger_keywords=list(keywords),
        observation_phrases=list(phrases),
        context_indicators=[],
        auto_suggest_confidence=threshold,
    )


@pytest.fixture
def library():
    return [
        _skill("kind", "Kind Hearts", keywords=["kind"], phrases=["helped a friend"], threshold=0.6),
        _skill("team", "Teamwork Star", keywords=["together", "team"], threshold=0.5),
        _skill("tidy", "Tidy Up Champion", keywords=["tidy", "clean"], threshold=0.5, points=2),
        _skill("remind", "Needs Reminder", keywords=["reminder"], threshold=0.1, positive=False),
        _skill("brave", "Brave Learner", keywords=["brave"], threshold=0.1, active=False),
    ]


class TestGenerateSuggestions:
    def test_qualifying_skill_becomes_one_shared_suggestion(self, library):
        result = generate_suggestions("Emma helped a friend today", ["s1", "s2"], library)
        assert len(result.suggestions) == 1
        draft = result.suggestions[0]
        assert draft.skill.name == "Kind Hearts"
        assert draft.student_ids == ["s1", "s2"]
        assert draft.confidence == pytest.approx(2 / 3)
        assert draft.points == 1

    def test_below_threshold_is_dropped(self, library):
        # Only "kind" matches: 1/3 < 0.6
        result = generate_suggestions("Emma was kind", ["s1"], library)
        assert all(s.skill.name != "Kind Hearts" for s in result.suggestions)

    def test_no_learner_means_no_suggestion(self, library):
        result = generate_suggestions("Emma helped a friend and was kind", [], library)
        assert result.suggestions == []
        assert result.reasoning == "No clear behaviour indicators detected."

    def test_inactive_and_constructive_skills_never_suggested(self, library):
        result = generate_suggestions("brave but needed a reminder", ["s1"], library)
        assert result.suggestions == []

    def test_sorted_by_confidence_and_capped(self, library):
        text = "They worked together as a team, then did a tidy job, kind as ever and helped a friend"
        result = generate_suggestions(text, ["s1"], library, max_suggestions=2)
        confidences = [s.confidence for s in result.suggestions]
        assert len(result.suggestions) == 2
        assert confidences == sorted(confidences, reverse=True)
        assert result.suggestions[0].confidence == 1.0

    def test_detected_behaviours_are_matched_keywords(self, library):
        result = generate_suggestions("We tidy and clean together", ["s1"], library)
        tidy = next(s for s in result.suggestions if s.skill.id == "tidy")
        assert tidy.detected_behaviours == ["tidy", "clean"]
        assert tidy.reasoning == 'Detected "Tidy Up Champion" based on: tidy, clean'

    def test_alternatives_are_other_skills_at_or_above_half(self, library):
        result = generate_suggestions("We tidy and clean, working together", ["s1"], library)
        tidy = next(s for s in result.suggestions if s.skill.id == "tidy")
        assert [a.skill_id for a in tidy.alternatives] == ["team"]
        assert tidy.alternatives[0].confidence == pytest.approx(0.5)

    def test_alternatives_capped_at_limit(self):
        library = [_skill(f"k{i}", f"Skill {i}", keywords=["star"]) for i in range(6)]
        result = generate_suggestions("a star", ["s1"], library, max_suggestions=1)
        assert len(result.suggestions[0].alternatives) == 3

    def test_overall_reasoning_names_top_skills(self, library):
        result = generate_suggestions("They worked together as a team", ["s1"], library)
        assert result.reasoning == "Detected indicators for: Teamwork Star. Confidence: 100%"

    def test_duplicate_student_ids_collapse(self, library):
        result = generate_suggestions("helped a friend", ["s1", "s1", "s2"], library)
        assert result.suggestions[0].student_ids == ["s1", "s2"]

    def test_patterns_reported_even_without_learners(self, library):
        history = ["Kind Hearts"] * 4 + ["Tidy Up Champion"]
        result = generate_suggestions("nothing much", [], library, recent_skill_names=history)
        assert result.patterns == ['High frequency of "Kind Hearts" awards']


class TestDetectPatterns:
    def test_needs_five_awards(self):
        assert detect_patterns(["Kind Hearts"] * 4) == []

    def test_flags_dominant_skill(self):
        names = ["Kind Hearts"] * 2 + ["A", "B", "C"]
        assert detect_patterns(names) == ['High frequency of "Kind Hearts" awards']

    def test_balanced_history_is_not_flagged(self):
        assert detect_patterns(["A", "B", "C", "D", "E", "F"]) == []
