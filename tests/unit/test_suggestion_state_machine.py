"""Suggestion status transitions."""

from __future__ import annotations

import pytest

from explorer.errors import StateConflictError
from explorer.points.suggestion_service import VALID_TRANSITIONS, validate_transition

TERMINAL = ["accepted", "modified", "rejected", "expired"]


class TestValidateTransition:
    @pytest.mark.parametrize("target", TERMINAL)
    def test_pending_moves_to_any_outcome(self, target):
        validate_transition("pending", target)

    @pytest.mark.parametrize("current", TERMINAL)
    def test_outcomes_are_terminal(self, current):
        for target in ["pending", *TERMINAL]:
            with pytest.raises(StateConflictError):
                validate_transition(current, target)

    def test_pending_cannot_stay_pending(self):
        with pytest.raises(StateConflictError):
            validate_transition("pending", "pending")

    def test_unknown_status_rejected(self):
        with pytest.raises(StateConflictError):
            validate_transition("archived", "accepted")

    def test_every_status_listed(self):
        assert set(VALID_TRANSITIONS) == {"pending", *TERMINAL}
