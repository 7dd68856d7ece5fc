"""Duel state machine and pure resolution rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from coarc.duels.duel_service import (
    VALID_TRANSITIONS,
    DuelError,
    decide_winner,
    find_solve_time,
    should_resolve,
    validate_transition,
)
from coarc.platforms.codeforces import Submission

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
CHALLENGER, CHALLENGED = 1, 2


def sub(problem_id: str, seconds: float, verdict: str = "OK", sub_id: int = 1) -> Submission:
    return Submission(
        submission_id=sub_id,
        problem_id=problem_id,
        verdict=verdict,
        submitted_at=START + timedelta(seconds=seconds),
    )


class TestDuelStateMachine:
    """Transitions are validated against one table."""

    def test_states(self):
        assert set(VALID_TRANSITIONS) == {"pending", "active", "completed", "expired", "declined"}

    @pytest.mark.parametrize(
        "current,target",
        [("pending", "active"), ("pending", "declined"), ("pending", "expired"), ("active", "completed")],
    )
    def test_valid_transitions(self, current, target):
        validate_transition(current, target)  # Should not raise

    @pytest.mark.parametrize("terminal", ["completed", "expired", "declined"])
    def test_terminal_states_are_final(self, terminal):
        assert VALID_TRANSITIONS[terminal] == []
        for target in VALID_TRANSITIONS:
            with pytest.raises(DuelError, match="Invalid transition"):
                validate_transition(terminal, target)

    def test_active_cannot_expire_or_decline(self):
        with pytest.raises(DuelError):
            validate_transition("active", "expired")
        with pytest.raises(DuelError):
            validate_transition("active", "declined")

    def test_pending_cannot_complete_directly(self):
        with pytest.raises(DuelError):
            validate_transition("pending", "completed")

    def test_duel_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_transition("completed", "active")


class TestFindSolveTime:
    def test_first_accepted_after_start(self):
        subs = [sub("1234A", 120, sub_id=3), sub("1234A", 90, sub_id=2)]
        assert find_solve_time(subs, "1234A", START) == 90

    def test_order_does_not_matter(self):
        subs = [sub("1234A", 90, sub_id=2), sub("1234A", 120, sub_id=3)]
        assert find_solve_time(subs, "1234A", START) == 90

    def test_ignores_rejected_and_other_problems(self):
        subs = [
            sub("1234A", 30, verdict="WRONG_ANSWER"),
            sub("1234B", 40),
            sub("1234A", 75),
        ]
        assert find_solve_time(subs, "1234A", START) == 75

    def test_ignores_solves_before_start(self):
        assert find_solve_time([sub("1234A", -5)], "1234A", START) is None

    def test_solve_exactly_at_start_counts(self):
        assert find_solve_time([sub("1234A", 0)], "1234A", START) == 0

    def test_rounds_half_up(self):
        assert find_solve_time([sub("1234A", 89.5)], "1234A", START) == 90
        assert find_solve_time([sub("1234A", 89.4)], "1234A", START) == 89

    def test_ignores_solves_after_expiry(self):
        expires = START + timedelta(minutes=60)
        subs = [sub("1234A", 7200, sub_id=2)]
        assert find_solve_time(subs, "1234A", START, expires) is None

    def test_solve_exactly_at_expiry_counts(self):
        expires = START + timedelta(minutes=60)
        assert find_solve_time([sub("1234A", 3600)], "1234A", START, expires) == 3600

    def test_no_solve(self):
        assert find_solve_time([], "1234A", START) is None


class TestDecideWinner:
    def test_faster_challenged_wins(self):
        assert decide_winner(CHALLENGER, CHALLENGED, 90, 75) == CHALLENGED

    def test_faster_challenger_wins(self):
        assert decide_winner(CHALLENGER, CHALLENGED, 60, 75) == CHALLENGER

    def test_equal_times_go_to_challenger(self):
        assert decide_winner(CHALLENGER, CHALLENGED, 80, 80) == CHALLENGER

    def test_lone_solver_wins(self):
        assert decide_winner(CHALLENGER, CHALLENGED, 300, None) == CHALLENGER
        assert decide_winner(CHALLENGER, CHALLENGED, None, 300) == CHALLENGED

    def test_nobody_solved_is_draw(self):
        assert decide_winner(CHALLENGER, CHALLENGED, None, None) is None


class TestShouldResolve:
    def test_waits_for_second_solver_before_expiry(self):
        expires = START + timedelta(hours=1)
        assert should_resolve(90, None, expires, START + timedelta(minutes=5)) is False

    def test_both_solved_resolves_early(self):
        expires = START + timedelta(hours=1)
        assert should_resolve(90, 75, expires, START + timedelta(minutes=5)) is True

    def test_expiry_resolves(self):
        expires = START + timedelta(hours=1)
        assert should_resolve(None, None, expires, expires) is True
