"""
Round Controller — per-room round lifecycle state machine.

    IDLE ──(first join + delay)──▶ LOADING ──(content ready)──▶ ACTIVE
      ▲                               ▲                           │ countdown
      │                               │ inter-round delay         ▼
      └──── COMPLETE ◀──(last round)── SCORING ◀───────────────────┘

Every scheduled step (start delay, countdown, inter-round delay) is one
asyncio.Task held in self._timer; entering a new phase cancels the handle
left over from the previous one. Content generation runs inside that task,
so cancelling it (room emptied) also cancels in-flight generator calls.
Results are tagged with self._epoch and dropped if the game moved on while
they were being produced.

Positions keep flowing during LOADING and SCORING: the only awaits here are
generator calls and broadcasts, and the event loop serves joins/moves/leaves
in between.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from agents.content_generator import ContentGenerator, Generated
from agents.game_master import game_master
from config import Settings, settings as default_settings
from models.game import (
    FeedbackKind,
    RoundOutcome,
    RoundPhase,
    RoundState,
    Scenario,
)
from services.session_registry import SessionRegistry
from services.vote_aggregator import VoteAggregator

logger = logging.getLogger(__name__)


class RoundController:
    """Owns the live Scenario and RoundState of one room."""

    def __init__(
        self,
        room_id: str,
        registry: SessionRegistry,
        aggregator: VoteAggregator,
        hub,
        generator: ContentGenerator,
        settings: Optional[Settings] = None,
    ):
        self.room_id = room_id
        self.registry = registry
        self.aggregator = aggregator
        self.hub = hub
        self.generator = generator
        self.settings = settings or default_settings

        self.phase = RoundPhase.IDLE
        self.scenario: Optional[Scenario] = None
        self.round_state = self._initial_round_state()
        self._timer: Optional[asyncio.Task] = None
        self._epoch = 0

    def _initial_round_state(self) -> RoundState:
        return RoundState.initial(self.settings.round_durations_ms, self.settings.initial_gauge)

    # ── Timers ─────────────────────────────────────────────────────────────────

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def _cancel_timer(self) -> None:
        task = self._timer
        if task is None or task is asyncio.current_task():
            # The running step is the one transitioning: it stays the room's
            # handle (so an abort can still cancel it) and finishes on its own.
            return
        self._timer = None
        if not task.done():
            task.cancel()

    def _arm(self, delay_ms: float, step: Callable[[], Awaitable[None]], label: str) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(
            self._run_after(delay_ms / 1000, step, label),
            name=f"round:{self.room_id}:{label}",
        )

    async def _run_after(
        self, delay_s: float, step: Callable[[], Awaitable[None]], label: str
    ) -> None:
        try:
            await asyncio.sleep(delay_s)
            await step()
        except asyncio.CancelledError:
            logger.debug("[%s] %s step cancelled", self.room_id, label)
            raise
        except Exception:
            logger.exception("[%s] %s step failed — resetting room to idle", self.room_id, label)
            self._reset(cancel_timer=False)

    def _transition(self, phase: RoundPhase) -> None:
        self._cancel_timer()
        if phase != self.phase:
            logger.info(
                "[%s] Phase: %s → %s (round %d/%d)",
                self.room_id, self.phase.value, phase.value,
                self.round_state.round_index + 1, self.round_state.total_rounds,
            )
        self.phase = phase

    def _stale(self, epoch: int, expected: RoundPhase) -> bool:
        if epoch != self._epoch or self.phase != expected:
            logger.debug("[%s] discarding stale %s result", self.room_id, expected.value)
            return True
        return False

    # ── Triggers from the room ─────────────────────────────────────────────────

    def on_player_joined(self) -> bool:
        """Schedule the game start when an idle room gets its first player."""
        return self._schedule_start(self.settings.first_join_delay_ms)

    def request_start(self) -> bool:
        """Explicit start from a player in an idle room."""
        return self._schedule_start(0)

    def _schedule_start(self, delay_ms: float) -> bool:
        if self.phase != RoundPhase.IDLE or self.is_scheduled or self.registry.is_empty:
            return False
        self._arm(delay_ms, self._start_game, "start")
        logger.info("[%s] Game start scheduled in %dms", self.room_id, delay_ms)
        return True

    def abort(self) -> None:
        """Room emptied: drop everything and go back to idle."""
        if self.phase == RoundPhase.IDLE and not self.is_scheduled:
            return
        logger.info("[%s] Room empty — abandoning game in phase %s", self.room_id, self.phase.value)
        self._reset(cancel_timer=True)

    def _reset(self, cancel_timer: bool) -> None:
        self._epoch += 1
        if cancel_timer:
            self._cancel_timer()
        else:
            self._timer = None
        self.scenario = None
        self.round_state = self._initial_round_state()
        self.phase = RoundPhase.IDLE

    # ── Phase steps ────────────────────────────────────────────────────────────

    async def _start_game(self) -> None:
        if self.registry.is_empty:
            logger.info("[%s] Start skipped — room is empty", self.room_id)
            self._timer = None
            return
        await self._enter_loading()

    async def _enter_loading(self) -> None:
        self._transition(RoundPhase.LOADING)
        self._epoch += 1
        epoch = self._epoch
        rs = self.round_state

        await self.hub.broadcast(self.room_id, {
            "type": "scenario:loading",
            "round": rs.round_index + 1,
            "totalRounds": rs.total_rounds,
        })

        # Strictly sequential: axis semantics gate the ideal point.
        text = await self.generator.generate_scenario_text(self.registry.roles(), rs.round_index)
        if self._stale(epoch, RoundPhase.LOADING):
            return
        axes = await self.generator.generate_axis_labels(text.value)
        if self._stale(epoch, RoundPhase.LOADING):
            return
        ideal = await self.generator.generate_ideal_point(text.value, axes.value)
        if self._stale(epoch, RoundPhase.LOADING):
            return

        await self._enter_active(text, axes, ideal)

    async def _enter_active(self, text: Generated, axes: Generated, ideal: Generated) -> None:
        rs = self.round_state
        scenario = Scenario(
            text=text.value,
            axes=axes.value,
            ideal=ideal.value,
            round_index=rs.round_index,
            duration_ms=rs.current_duration_ms,
            used_fallback=text.used_fallback or axes.used_fallback or ideal.used_fallback,
        )
        self._transition(RoundPhase.ACTIVE)
        self.scenario = scenario
        self._arm(scenario.duration_ms, self._end_round, "countdown")
        logger.info(
            "[%s] Round %d live for %dms%s",
            self.room_id, rs.round_index + 1, scenario.duration_ms,
            " (fallback content)" if scenario.used_fallback else "",
        )
        await self.hub.broadcast(self.room_id, {
            "type": "scenario:new",
            **scenario.to_public(rs.total_rounds),
        })

    async def _end_round(self) -> None:
        if self.phase != RoundPhase.ACTIVE:
            return
        scenario, self.scenario = self.scenario, None
        self._transition(RoundPhase.SCORING)
        epoch = self._epoch
        rs = self.round_state

        if scenario is None:
            logger.warning("[%s] Round %d ended without a scenario", self.room_id, rs.round_index + 1)
            await self._advance()
            return

        # The team's final answer is wherever everyone is standing right now.
        team = self.aggregator.recompute(self.registry.players())
        await self.hub.broadcast(self.room_id, {"type": "team:vote", **team.to_public()})
        accuracy = game_master.score_accuracy(team, scenario.ideal)
        rs.metrics = game_master.apply_gauge_adjustments(rs.metrics, team)
        rs.history.append(RoundOutcome(
            round_index=rs.round_index,
            scenario_text=scenario.text,
            axes=scenario.axes,
            team_vote=team,
            ideal=scenario.ideal,
            accuracy=accuracy,
            response_count=len(scenario.responses),
            used_fallback=scenario.used_fallback,
        ))
        logger.info(
            "[%s] Round %d scored: team=(%.2f, %.2f) ideal=(%.2f, %.2f) accuracy=%.1f",
            self.room_id, rs.round_index + 1, team.axis1, team.axis2,
            scenario.ideal.axis1, scenario.ideal.axis2, accuracy,
        )

        await self.hub.broadcast(self.room_id, {
            "type": "scenario:end",
            "scenarioId": scenario.id,
            "teamVote": team.to_public(),
            "idealPoint": scenario.ideal.to_public(),
            "responseCount": len(scenario.responses),
        })
        await self.hub.broadcast(self.room_id, {"type": "score:loading", "round": rs.round_index + 1})

        ideal_fb, actual_fb = await asyncio.gather(
            self.generator.generate_feedback(
                scenario.text, scenario.axes, scenario.ideal.axis1, scenario.ideal.axis2,
                FeedbackKind.IDEAL_EXPLANATION,
            ),
            self.generator.generate_feedback(
                scenario.text, scenario.axes, team.axis1, team.axis2,
                FeedbackKind.ACTUAL_EXPLANATION,
            ),
        )
        if self._stale(epoch, RoundPhase.SCORING):
            return

        await self.hub.broadcast(self.room_id, {
            "type": "score:display",
            "round": rs.round_index + 1,
            "totalRounds": rs.total_rounds,
            "accuracy": accuracy,
            "whatYouShouldHaveDone": ideal_fb.value,
            "whatYouActuallyDid": actual_fb.value,
            "actionSummary": scenario.ideal.action_summary,
            "teamVote": team.to_public(),
            "idealPoint": scenario.ideal.to_public(),
            "axes": scenario.axes.model_dump(),
            "metrics": rs.metrics.model_dump(),
        })
        await self._advance()

    async def _advance(self) -> None:
        rs = self.round_state
        if rs.round_index + 1 >= rs.total_rounds:
            await self._complete()
            return
        rs.round_index += 1
        self._arm(self.settings.inter_round_delay_ms, self._enter_loading, "next-round")

    async def _complete(self) -> None:
        self._transition(RoundPhase.COMPLETE)
        rs = self.round_state
        final = game_master.final_score(rs.history)
        history = [o.to_public() for o in rs.history]
        metrics = rs.metrics.model_dump()
        logger.info("[%s] Game complete after %d rounds: final score %.1f",
                    self.room_id, len(history), final)

        self.round_state = self._initial_round_state()
        self._transition(RoundPhase.IDLE)
        if self._timer is asyncio.current_task():
            self._timer = None
        await self.hub.broadcast(self.room_id, {
            "type": "game:complete",
            "finalScore": final,
            "history": history,
            "metrics": metrics,
        })

    # ── Responses ──────────────────────────────────────────────────────────────

    async def record_response(self, connection_id: str, text: str) -> Optional[int]:
        """Store a player's free-text response. Returns the new count, or None if ignored."""
        scenario = self.scenario
        if self.phase != RoundPhase.ACTIVE or scenario is None:
            return None
        if not self.registry.has(connection_id):
            return None
        text = text.strip()[: self.settings.response_max_chars]
        if not text:
            return None
        scenario.responses[connection_id] = text
        count = len(scenario.responses)
        await self.hub.broadcast(self.room_id, {"type": "scenario:response_count", "count": count})
        return count

    def discard_response(self, connection_id: str) -> bool:
        if self.scenario is None:
            return False
        return self.scenario.responses.pop(connection_id, None) is not None

    # ── Views ──────────────────────────────────────────────────────────────────

    def resync_payload(self) -> Optional[Dict[str, Any]]:
        """What a peer connecting mid-game needs to catch up, if anything."""
        rs = self.round_state
        if self.phase == RoundPhase.ACTIVE and self.scenario is not None:
            return {
                "type": "scenario:resync",
                **self.scenario.to_public(rs.total_rounds),
                "timeLeft": self.scenario.time_left_ms(),
            }
        if self.phase == RoundPhase.LOADING:
            return {
                "type": "scenario:loading",
                "round": rs.round_index + 1,
                "totalRounds": rs.total_rounds,
            }
        return None

    def public_scenario(self) -> Optional[Dict[str, Any]]:
        if self.scenario is None:
            return None
        return {
            **self.scenario.to_public(self.round_state.total_rounds),
            "timeLeft": self.scenario.time_left_ms(),
        }

    def status(self) -> Dict[str, Any]:
        rs = self.round_state
        return {
            "phase": self.phase,
            "round": rs.round_index + 1,
            "total_rounds": rs.total_rounds,
            "metrics": rs.metrics,
            "scenario": self.public_scenario(),
        }
