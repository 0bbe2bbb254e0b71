import math

import pytest

from agents.content_generator import DEFAULT_AXES
from agents.game_master import game_master
from models.game import GameMetrics, IdealPoint, RoundOutcome, TeamVote


def _ideal(a1, a2):
    return IdealPoint(axis1=a1, axis2=a2, action_summary="Breathe.")


def test_exact_match_scores_100():
    assert game_master.score_accuracy(TeamVote(axis1=0.2, axis2=-0.4), _ideal(0.2, -0.4)) == 100.0


def test_accuracy_falls_50_per_unit_distance():
    team = TeamVote(axis1=0.0, axis2=0.0)
    assert game_master.score_accuracy(team, _ideal(1.0, 0.0)) == pytest.approx(50.0)
    assert game_master.score_accuracy(team, _ideal(0.6, 0.8)) == pytest.approx(50.0)
    assert game_master.score_accuracy(team, _ideal(0.3, 0.4)) == pytest.approx(75.0)


def test_accuracy_floored_at_zero():
    team = TeamVote(axis1=-1.0, axis2=-1.0)
    assert game_master.distance(team, _ideal(1.0, 1.0)) == pytest.approx(2 * math.sqrt(2))
    assert game_master.score_accuracy(team, _ideal(1.0, 1.0)) == 0.0


def test_approach_raises_reputation():
    m = game_master.apply_gauge_adjustments(GameMetrics(), TeamVote(axis1=0.5, axis2=0.0))
    assert (m.cohesion, m.reputation, m.volatility) == (50, 60, 50)


def test_avoidance_lowers_reputation():
    m = game_master.apply_gauge_adjustments(GameMetrics(), TeamVote(axis1=-0.5, axis2=0.0))
    assert m.reputation == 40


def test_empathy_raises_cohesion_and_calms_volatility():
    m = game_master.apply_gauge_adjustments(GameMetrics(), TeamVote(axis1=0.0, axis2=0.9))
    assert (m.cohesion, m.reputation, m.volatility) == (55, 50, 45)


def test_vindictiveness_does_the_reverse():
    m = game_master.apply_gauge_adjustments(GameMetrics(), TeamVote(axis1=0.0, axis2=-0.9))
    assert (m.cohesion, m.volatility) == (45, 55)


def test_threshold_is_strict():
    m = game_master.apply_gauge_adjustments(GameMetrics(), TeamVote(axis1=0.3, axis2=-0.3))
    assert m == GameMetrics()


def test_gauges_clamped_and_input_untouched():
    start = GameMetrics(cohesion=2, reputation=95, volatility=99)
    m = game_master.apply_gauge_adjustments(start, TeamVote(axis1=1.0, axis2=-1.0))
    assert (m.cohesion, m.reputation, m.volatility) == (0, 100, 100)
    assert start.reputation == 95


def test_final_score_is_mean_accuracy():
    def outcome(i, acc):
        return RoundOutcome(
            round_index=i, scenario_text="s", axes=DEFAULT_AXES, team_vote=TeamVote(),
            ideal=_ideal(0, 0), accuracy=acc, response_count=0,
        )

    history = [outcome(0, 100), outcome(1, 50), outcome(2, 0), outcome(3, 70)]
    assert game_master.final_score(history) == pytest.approx(55.0)
    assert game_master.final_score([]) == 0.0
