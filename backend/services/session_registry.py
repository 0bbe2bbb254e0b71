"""
Session Registry — who is in a room and where they stand.

Keyed by connection id (one WebSocket per player). Player ids are stable across
reconnects: a join that reuses a player id rebinds that player to the new
connection instead of adding a second entry.
"""
import logging
from typing import Dict, List, Optional

from models.errors import CapacityError, UnknownConnection
from models.game import PlayerState

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-memory player map for a single room.
    All operations are synchronous; the event loop serializes callers.
    """

    def __init__(self, room_id: str, capacity: int = 8):
        self.room_id = room_id
        self.capacity = capacity
        # {connection_id: PlayerState}, insertion order == join order
        self._players: Dict[str, PlayerState] = {}

    # ── Queries ────────────────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._players)

    @property
    def is_empty(self) -> bool:
        return not self._players

    @property
    def is_full(self) -> bool:
        return len(self._players) >= self.capacity

    def has(self, connection_id: str) -> bool:
        return connection_id in self._players

    def get(self, connection_id: str) -> PlayerState:
        player = self._players.get(connection_id)
        if player is None:
            raise UnknownConnection(connection_id)
        return player

    def find_by_player_id(self, player_id: str) -> Optional[PlayerState]:
        for player in self._players.values():
            if player.id == player_id:
                return player
        return None

    def players(self) -> List[PlayerState]:
        return list(self._players.values())

    def roles(self) -> List[str]:
        """Distinct role labels of connected players, in join order."""
        seen: List[str] = []
        for p in self._players.values():
            if p.role and p.role not in seen:
                seen.append(p.role)
        return seen

    def snapshot(self) -> List[Dict]:
        return [p.to_public() for p in self._players.values()]

    # ── Mutation ───────────────────────────────────────────────────────────────

    def join(
        self,
        connection_id: str,
        player_id: str,
        name: str,
        role: str,
        x: float,
        y: float,
        viewport_width: float,
        viewport_height: float,
    ) -> List[Dict]:
        """
        Add (or rebind) a player and return the authoritative player list.
        Raises CapacityError — leaving the room untouched — when full.
        """
        previous = self.find_by_player_id(player_id)
        if previous is not None and previous.connection_id != connection_id:
            # Reconnect: the old socket's entry is replaced, capacity unchanged.
            self._players.pop(previous.connection_id, None)
            logger.info(
                "[%s] %s rebound %s → %s",
                self.room_id, player_id, previous.connection_id, connection_id,
            )
        elif connection_id not in self._players and self.is_full:
            raise CapacityError(self.room_id, self.capacity)

        self._players[connection_id] = PlayerState(
            id=player_id,
            connection_id=connection_id,
            name=name,
            role=role,
            x=x,
            y=y,
            viewport_width=viewport_width,
            viewport_height=viewport_height,
        )
        logger.info(
            "[%s] %s (%s) joined (%d/%d)",
            self.room_id, name, role or "no role", self.count, self.capacity,
        )
        return self.snapshot()

    def move(self, connection_id: str, x: float, y: float) -> bool:
        """Update a position. Unknown connections are a silent no-op (returns False)."""
        player = self._players.get(connection_id)
        if player is None:
            return False
        player.x = x
        player.y = y
        return True

    def leave(self, connection_id: str) -> Optional[PlayerState]:
        player = self._players.pop(connection_id, None)
        if player:
            logger.info(
                "[%s] %s left (%d/%d)", self.room_id, player.name, self.count, self.capacity
            )
        return player
