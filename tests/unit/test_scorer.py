"""Skill match scorer: weighted keyword, phrase and context coverage."""

from __future__ import annotations

import pytest

from explorer.db.models import BehaviourSkill
from explorer.points.scorer import matched_keywords, score_skill_match


def _skill(keywords=(), phrases=(), contexts=()) -> BehaviourSkill:
    return BehaviourSkill(
        name="Kind Hearts",
        trigger_keywords=list(keywords),
        observation_phrases=list(phrases),
        context_indicators=list(contexts),
    )


class TestScoreSkillMatch:
    def test_phrase_only_match_scores_two_thirds(self):
        skill = _skill(keywords=["kind"], phrases=["helped a friend"])
        assert score_skill_match("Emma helped a friend today", skill) == pytest.approx(2 / 3)

    def test_full_match_is_one(self):
        skill = _skill(keywords=["kind"], phrases=["helped a friend"], contexts=["playground"])
        assert score_skill_match("So kind! She helped a friend in the playground", skill) == 1.0

    def test_no_match_is_zero(self):
        skill = _skill(keywords=["kind"], phrases=["helped a friend"])
        assert score_skill_match("Built a tall tower", skill) == 0.0

    def test_unconfigured_skill_is_zero(self):
        assert score_skill_match("kind and gentle", _skill()) == 0.0

    def test_empty_observation_is_zero(self):
        assert score_skill_match("", _skill(keywords=["kind"])) == 0.0

    def test_case_insensitive(self):
        skill = _skill(keywords=["Kind"], phrases=["Helped A Friend"])
        assert score_skill_match("EMMA HELPED A FRIEND AND WAS KIND", skill) == 1.0

    def test_context_indicator_weighs_half(self):
        skill = _skill(keywords=["kind"], contexts=["playground"])
        # 0.5 of a possible 1.5
        assert score_skill_match("out on the playground", skill) == pytest.approx(1 / 3)

    def test_substring_containment_counts(self):
        skill = _skill(keywords=["help"])
        assert score_skill_match("Liam was helpful", skill) == 1.0

    def test_adding_matching_terms_never_lowers_confidence(self):
        skill = _skill(
            keywords=["kind", "gentle", "caring"],
            phrases=["helped a friend", "shared with"],
            contexts=["empathy"],
        )
        observation = "Emma"
        previous = score_skill_match(observation, skill)
        additions = [
            " was kind", " and gentle", " and helped a friend", " showing empathy", " and shared with Noah", " and caring",
        ]
        for addition in additions:
            observation += addition
            current = score_skill_match(observation, skill)
            assert current >= previous
            previous = current
        assert previous == 1.0


class TestMatchedKeywords:
    def test_returns_matched_keywords_in_configured_order(self):
        skill = _skill(keywords=["kind", "gentle", "caring"])
        assert matched_keywords("So caring and kind", skill) == ["kind", "caring"]

    def test_phrases_are_not_reported_as_keywords(self):
        skill = _skill(keywords=["kind"], phrases=["helped a friend"])
        assert matched_keywords("helped a friend", skill) == []
