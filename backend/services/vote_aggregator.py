"""
Vote Aggregator — turns screen positions into the team's stance.

Every client draws the same two-axis map scaled to its own viewport, so each
player is normalized against their own viewport (minus a fixed margin on every
edge) before averaging.
"""
from typing import Iterable, Tuple

from models.game import PlayerState, TeamVote, clamp


def _normalize_axis(pos: float, extent: float, margin: float) -> float:
    half_span = (extent - 2 * margin) / 2
    if half_span <= 0:
        return 0.0
    return clamp((pos - extent / 2) / half_span)


def normalize_position(player: PlayerState, margin: float) -> Tuple[float, float]:
    """Project a player's (x, y) into [-1, 1] × [-1, 1]."""
    return (
        _normalize_axis(player.x, player.viewport_width, margin),
        _normalize_axis(player.y, player.viewport_height, margin),
    )


class VoteAggregator:
    """Holds the latest team vote for one room."""

    def __init__(self, margin: float = 60.0):
        self.margin = margin
        self.latest = TeamVote()

    def recompute(self, players: Iterable[PlayerState]) -> TeamVote:
        points = [normalize_position(p, self.margin) for p in players]
        if not points:
            self.latest = TeamVote()
        else:
            n = len(points)
            self.latest = TeamVote(
                axis1=clamp(sum(a for a, _ in points) / n),
                axis2=clamp(sum(b for _, b in points) / n),
                sample_count=n,
            )
        return self.latest
