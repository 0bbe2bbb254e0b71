"""
Room Service — one explicitly owned aggregate per room id.

A Room bundles the Session Registry, the Vote Aggregator and the Round
Controller of one room. Every player event goes through the Room so that the
same three things always happen together: mutate the registry, recompute the
team vote, broadcast both.

Rooms are in-process only and share nothing with each other.
"""
import logging
import time
from typing import Dict, List, Optional

from agents.content_generator import ContentGenerator
from agents.round_controller import RoundController
from config import Settings, settings as default_settings
from models.errors import UnknownConnection
from models.game import (
    JoinPayload,
    PlayerState,
    RoomStatus,
    RoomSummary,
    TeamVote,
)
from services.session_registry import SessionRegistry
from services.vote_aggregator import VoteAggregator

logger = logging.getLogger(__name__)


class Room:
    def __init__(
        self,
        room_id: str,
        hub,
        generator: ContentGenerator,
        settings: Optional[Settings] = None,
    ):
        self.room_id = room_id
        self.hub = hub
        self.settings = settings or default_settings
        self.registry = SessionRegistry(room_id, capacity=self.settings.room_capacity)
        self.aggregator = VoteAggregator(margin=self.settings.map_margin)
        self.controller = RoundController(
            room_id, self.registry, self.aggregator, hub, generator, self.settings
        )

    # ── Broadcast helpers ──────────────────────────────────────────────────────

    async def _publish_positions(self) -> TeamVote:
        """Snapshot + team vote, independent of round phase."""
        vote = self.aggregator.recompute(self.registry.players())
        await self.hub.broadcast(self.room_id, {
            "type": "player:snapshot",
            "players": self.registry.snapshot(),
        })
        await self.hub.broadcast(self.room_id, {"type": "team:vote", **vote.to_public()})
        return vote

    async def send_state(self, connection_id: str) -> None:
        """Private catch-up for a newly connected peer."""
        await self.hub.send_to(self.room_id, connection_id, {
            "type": "player:snapshot",
            "players": self.registry.snapshot(),
        })
        await self.hub.send_to(self.room_id, connection_id, {
            "type": "team:vote",
            **self.aggregator.latest.to_public(),
        })
        resync = self.controller.resync_payload()
        if resync:
            await self.hub.send_to(self.room_id, connection_id, resync)

    # ── Player events ──────────────────────────────────────────────────────────

    async def join(self, connection_id: str, payload: JoinPayload) -> List[Dict]:
        """Raises CapacityError when full (room unchanged, nothing broadcast)."""
        was_empty = self.registry.is_empty
        previous = self.registry.find_by_player_id(payload.player_id)
        players = self.registry.join(
            connection_id,
            payload.player_id,
            payload.name,
            payload.role,
            payload.x,
            payload.y,
            payload.viewport_width,
            payload.viewport_height,
        )
        if previous is not None and previous.connection_id != connection_id:
            self.controller.discard_response(previous.connection_id)
        await self._publish_positions()
        if was_empty:
            self.controller.on_player_joined()
        return players

    async def move(self, connection_id: str, x: float, y: float) -> bool:
        if not self.registry.move(connection_id, x, y):
            return False
        await self._publish_positions()
        return True

    async def leave(self, connection_id: str) -> Optional[PlayerState]:
        player = self.registry.leave(connection_id)
        if player is None:
            return None
        self.controller.discard_response(connection_id)
        if self.registry.is_empty:
            self.controller.abort()
        await self.hub.broadcast(self.room_id, {"type": "player:leave", "playerId": player.id})
        await self._publish_positions()
        return player

    async def respond(self, connection_id: str, text: str) -> Optional[int]:
        return await self.controller.record_response(connection_id, text)

    async def chat(self, connection_id: str, text: str) -> bool:
        try:
            player = self.registry.get(connection_id)
        except UnknownConnection:
            logger.debug("[%s] chat from unjoined connection %s ignored", self.room_id, connection_id)
            return False
        text = text.strip()[: self.settings.chat_max_chars]
        if not text:
            return False
        await self.hub.broadcast(self.room_id, {
            "type": "chat:message",
            "playerId": player.id,
            "playerName": player.name,
            "role": player.role,
            "text": text,
            "timestamp": int(time.time() * 1000),
        })
        return True

    def start(self, connection_id: str) -> bool:
        if not self.registry.has(connection_id):
            return False
        return self.controller.request_start()

    # ── Views ──────────────────────────────────────────────────────────────────

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_id=self.room_id,
            phase=self.controller.phase,
            player_count=self.registry.count,
            capacity=self.registry.capacity,
        )

    def status(self) -> RoomStatus:
        return RoomStatus(
            room_id=self.room_id,
            player_count=self.registry.count,
            capacity=self.registry.capacity,
            players=self.registry.snapshot(),
            team_vote=self.aggregator.latest.to_public(),
            **self.controller.status(),
        )


class RoomService:
    """In-memory room store: rooms are created on first connect, dropped when abandoned."""

    def __init__(
        self,
        hub,
        generator: Optional[ContentGenerator] = None,
        settings: Optional[Settings] = None,
    ):
        self.hub = hub
        self.settings = settings or default_settings
        self.generator = generator or ContentGenerator(settings=self.settings)
        self._rooms: Dict[str, Room] = {}

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id, self.hub, self.generator, self.settings)
            self._rooms[room_id] = room
            logger.info("[%s] Room created", room_id)
        return room

    def discard_if_abandoned(self, room_id: str) -> bool:
        """Drop a room with no players and no open connections."""
        room = self._rooms.get(room_id)
        if room is None or not room.registry.is_empty or self.hub.count(room_id):
            return False
        room.controller.abort()
        del self._rooms[room_id]
        logger.info("[%s] Room discarded", room_id)
        return True

    def all(self) -> List[Room]:
        return list(self._rooms.values())
