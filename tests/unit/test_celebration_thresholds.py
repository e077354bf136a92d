"""Point threshold ladder and celebration content."""

from __future__ import annotations

from datetime import datetime, timezone

from explorer.db.models import Learner
from explorer.points.celebration_service import POINT_THRESHOLDS, build_celebration, crossed_thresholds

ACHIEVED = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _learner() -> Learner:
    return Learner(id="s1", tenant_id="t1", school_id="sc1", first_name="Emma", last_name="Stone")


class TestCrossedThresholds:
    def test_single_threshold_crossed(self):
        assert crossed_thresholds(92, 102) == [100]

    def test_landing_exactly_on_threshold_counts(self):
        assert crossed_thresholds(20, 25) == [25]

    def test_starting_on_threshold_does_not_recount(self):
        assert crossed_thresholds(25, 30) == []

    def test_multiple_thresholds_in_one_jump(self):
        assert crossed_thresholds(0, 60) == [10, 25, 50]

    def test_one_jump_equals_two_halves(self):
        assert crossed_thresholds(0, 30) + crossed_thresholds(30, 60) == crossed_thresholds(0, 60)

    def test_no_progress_crosses_nothing(self):
        assert crossed_thresholds(40, 40) == []

    def test_full_ladder(self):
        assert crossed_thresholds(0, 5000) == POINT_THRESHOLDS


class TestBuildCelebration:
    def test_hundred_points_gets_fireworks_and_certificate(self):
        celebration = build_celebration(_learner(), "c1", 100, ACHIEVED)
        assert celebration.title == "\U0001F389 100 Points!"
        assert celebration.message == "Amazing Emma! You've earned 100 Explorer Points!"
        assert celebration.milestone_name == "100 Points Champion"
        assert celebration.animation_type == "fireworks"
        assert celebration.certificate_generated is True

    def test_small_threshold_gets_confetti_without_certificate(self):
        celebration = build_celebration(_learner(), "c1", 25, ACHIEVED)
        assert celebration.animation_type == "confetti"
        assert celebration.certificate_generated is False

    def test_fifty_gets_certificate_and_confetti(self):
        celebration = build_celebration(_learner(), "c1", 50, ACHIEVED)
        assert celebration.animation_type == "confetti"
        assert celebration.certificate_generated is True

    def test_scoped_to_learner_and_classroom(self):
        celebration = build_celebration(_learner(), "c1", 10, ACHIEVED)
        assert celebration.student_id == "s1"
        assert celebration.classroom_id == "c1"
        assert celebration.tenant_id == "t1"
        assert celebration.milestone_type == "points_threshold"
        assert celebration.achieved_at == ACHIEVED
