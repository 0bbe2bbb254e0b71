"""
Game Master — pure deterministic scoring, no LLM.

Responsibilities:
- Round accuracy: how close the team's stance landed to the hidden ideal point
- Gauge adjustments: the team's stance nudges cohesion / reputation / volatility
- Final score: mean accuracy across the game's rounds

The constants are game tuning, kept exactly as designed.
"""
import logging
import math
from typing import List

from models.game import GameMetrics, IdealPoint, RoundOutcome, TeamVote

logger = logging.getLogger(__name__)


class GameMaster:
    """Scoring rules. Stateless; the Round Controller owns all game state."""

    # accuracy = max(0, 100 - DISTANCE_PENALTY * distance). The axes span
    # [-1, 1], so the farthest corners (distance 2√2) both score 0.
    MAX_ACCURACY = 100.0
    DISTANCE_PENALTY = 50.0

    # A stance beyond ±STANCE_THRESHOLD on an axis moves the gauges.
    STANCE_THRESHOLD = 0.3
    REPUTATION_DELTA = 10.0   # axis1: approach raises reputation, avoidance lowers it
    COHESION_DELTA = 5.0      # axis2: empathy raises cohesion ...
    VOLATILITY_DELTA = 5.0    # ... and calms volatility; vindictiveness does the reverse

    GAUGE_MIN = 0.0
    GAUGE_MAX = 100.0

    # ── Round scoring ──────────────────────────────────────────────────────────

    def distance(self, team: TeamVote, ideal: IdealPoint) -> float:
        return math.hypot(team.axis1 - ideal.axis1, team.axis2 - ideal.axis2)

    def score_accuracy(self, team: TeamVote, ideal: IdealPoint) -> float:
        return max(0.0, self.MAX_ACCURACY - self.DISTANCE_PENALTY * self.distance(team, ideal))

    def _bound(self, value: float) -> float:
        return max(self.GAUGE_MIN, min(self.GAUGE_MAX, value))

    def apply_gauge_adjustments(self, metrics: GameMetrics, team: TeamVote) -> GameMetrics:
        """Return the gauges after this round's stance. The input is not mutated."""
        reputation = metrics.reputation
        cohesion = metrics.cohesion
        volatility = metrics.volatility

        if team.axis1 > self.STANCE_THRESHOLD:
            reputation += self.REPUTATION_DELTA
        elif team.axis1 < -self.STANCE_THRESHOLD:
            reputation -= self.REPUTATION_DELTA

        if team.axis2 > self.STANCE_THRESHOLD:
            cohesion += self.COHESION_DELTA
            volatility -= self.VOLATILITY_DELTA
        elif team.axis2 < -self.STANCE_THRESHOLD:
            cohesion -= self.COHESION_DELTA
            volatility += self.VOLATILITY_DELTA

        return GameMetrics(
            cohesion=self._bound(cohesion),
            reputation=self._bound(reputation),
            volatility=self._bound(volatility),
        )

    # ── Game scoring ───────────────────────────────────────────────────────────

    def final_score(self, history: List[RoundOutcome]) -> float:
        if not history:
            return 0.0
        return sum(o.accuracy for o in history) / len(history)


# Module-level singleton
game_master = GameMaster()
