from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum
import time
import uuid


def _now_ms() -> float:
    """Wall-clock epoch milliseconds (what clients compare countdowns against)."""
    return time.time() * 1000


def clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class RoundPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    SCORING = "scoring"
    COMPLETE = "complete"


class FeedbackKind(str, Enum):
    IDEAL_EXPLANATION = "idealExplanation"    # what the team should have done
    ACTUAL_EXPLANATION = "actualExplanation"  # what the team actually did


# Roles a participant can play — aspects of one shared mind.
DEFAULT_ROLES: List[str] = ["Logic", "Emotion", "Memory", "Impulse", "Anxiety", "Instinct"]


class PlayerState(BaseModel):
    id: str
    connection_id: str
    name: str
    role: str = ""
    x: float = 400.0
    y: float = 300.0
    viewport_width: float = 800.0
    viewport_height: float = 600.0
    joined_at: float = Field(default_factory=_now_ms)

    def to_public(self) -> Dict[str, Any]:
        """Wire representation — omits the connection id."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "x": self.x,
            "y": self.y,
            "viewportWidth": self.viewport_width,
            "viewportHeight": self.viewport_height,
        }


# ── Generated round content ───────────────────────────────────────────────────
# These models double as the schema the text generator's JSON must satisfy,
# so they reject unknown keys.

class AxisPair(BaseModel):
    model_config = ConfigDict(extra="forbid")

    negative: str = Field(min_length=1)
    positive: str = Field(min_length=1)

    @field_validator("negative", "positive")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("axis label must not be blank")
        return v


class AxisLabels(BaseModel):
    model_config = ConfigDict(extra="forbid")

    axis1: AxisPair
    axis2: AxisPair


class IdealPoint(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    axis1: float
    axis2: float
    action_summary: str = Field(alias="actionSummary", min_length=1)

    @field_validator("axis1", "axis2")
    @classmethod
    def _clamp_axis(cls, v: float) -> float:
        return clamp(float(v))

    def to_public(self) -> Dict[str, Any]:
        return {"axis1": self.axis1, "axis2": self.axis2, "actionSummary": self.action_summary}


class TeamVote(BaseModel):
    axis1: float = 0.0
    axis2: float = 0.0
    sample_count: int = 0

    def to_public(self) -> Dict[str, Any]:
        return {"axis1": self.axis1, "axis2": self.axis2, "sampleCount": self.sample_count}


class Scenario(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str
    axes: AxisLabels
    ideal: IdealPoint
    round_index: int
    started_at: float = Field(default_factory=_now_ms)  # epoch ms
    duration_ms: int
    responses: Dict[str, str] = {}  # connection_id → response text
    used_fallback: bool = False

    def time_left_ms(self, now_ms: Optional[float] = None) -> int:
        now_ms = _now_ms() if now_ms is None else now_ms
        return max(0, int(self.started_at + self.duration_ms - now_ms))

    def to_public(self, total_rounds: int) -> Dict[str, Any]:
        """Safe representation — the ideal point stays hidden until scoring."""
        return {
            "id": self.id,
            "text": self.text,
            "axes": self.axes.model_dump(),
            "round": self.round_index + 1,
            "totalRounds": total_rounds,
            "startTime": self.started_at,
            "duration": self.duration_ms,
            "responseCount": len(self.responses),
            "usedFallback": self.used_fallback,
        }


# ── Round bookkeeping ─────────────────────────────────────────────────────────

class GameMetrics(BaseModel):
    cohesion: float = 50.0
    reputation: float = 50.0
    volatility: float = 50.0


class RoundOutcome(BaseModel):
    round_index: int
    scenario_text: str
    axes: AxisLabels
    team_vote: TeamVote
    ideal: IdealPoint
    accuracy: float
    response_count: int
    used_fallback: bool = False

    def to_public(self) -> Dict[str, Any]:
        return {
            "round": self.round_index + 1,
            "scenario": self.scenario_text,
            "axes": self.axes.model_dump(),
            "teamVote": self.team_vote.to_public(),
            "idealPoint": self.ideal.to_public(),
            "accuracy": self.accuracy,
            "responseCount": self.response_count,
            "usedFallback": self.used_fallback,
        }


class RoundState(BaseModel):
    round_index: int = 0
    durations_ms: List[int]
    metrics: GameMetrics = Field(default_factory=GameMetrics)
    history: List[RoundOutcome] = []

    @property
    def total_rounds(self) -> int:
        return len(self.durations_ms)

    @property
    def current_duration_ms(self) -> int:
        return self.durations_ms[self.round_index]

    @classmethod
    def initial(cls, durations_ms: List[int], gauge: float = 50.0) -> "RoundState":
        return cls(
            durations_ms=list(durations_ms),
            metrics=GameMetrics(cohesion=gauge, reputation=gauge, volatility=gauge),
        )


# ── WebSocket message shapes ──────────────────────────────────────────────────

class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinPayload(_Inbound):
    player_id: str = Field(alias="playerId", min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=40)
    role: str = Field(default="", max_length=40)
    x: float = 400.0
    y: float = 300.0
    viewport_width: float = Field(default=800.0, alias="viewportWidth", gt=0)
    viewport_height: float = Field(default=600.0, alias="viewportHeight", gt=0)


class MovePayload(_Inbound):
    x: float
    y: float


class RespondPayload(_Inbound):
    text: str = Field(min_length=1)


class ChatPayload(_Inbound):
    text: str = Field(min_length=1)


class EmptyPayload(_Inbound):
    pass


INBOUND_PAYLOADS: Dict[str, type] = {
    "join": JoinPayload,
    "move": MovePayload,
    "respond": RespondPayload,
    "chat": ChatPayload,
    "start": EmptyPayload,
    "ping": EmptyPayload,
}


# ── HTTP response models ──────────────────────────────────────────────────────

class RoomSummary(BaseModel):
    room_id: str
    phase: RoundPhase
    player_count: int
    capacity: int


class RoomStatus(RoomSummary):
    round: int
    total_rounds: int
    players: List[Dict[str, Any]]
    team_vote: Dict[str, Any]
    metrics: GameMetrics
    scenario: Optional[Dict[str, Any]] = None
