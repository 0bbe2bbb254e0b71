"""
Error taxonomy for the room engine.

Room-level errors (CapacityError, UnknownConnection, InvalidInput) are raised
by the registry or reported at the WebSocket boundary. Generation errors never leave the
content generator: every one of them is replaced by fallback content.
"""
from typing import Optional


class GameError(Exception):
    """Base class for errors a room reports (or deliberately ignores)."""

    code = "GAME_ERROR"


class CapacityError(GameError):
    code = "ROOM_FULL"

    def __init__(self, room_id: str, capacity: int):
        super().__init__(f"Room {room_id} is full ({capacity} players)")
        self.room_id = room_id
        self.capacity = capacity


class UnknownConnection(GameError):
    code = "UNKNOWN_CONNECTION"

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} has not joined")
        self.connection_id = connection_id


class InvalidInput(GameError):
    code = "INVALID_INPUT"


class GenerationError(Exception):
    """The text generator failed to produce a usable value."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        super().__init__(f"{operation}: {detail}" if detail else operation)
        self.operation = operation


class GenerationTimeout(GenerationError):
    def __init__(self, operation: str, timeout_s: float):
        super().__init__(operation, f"no response within {timeout_s:g}s")
        self.timeout_s = timeout_s


class GenerationMalformed(GenerationError):
    pass
