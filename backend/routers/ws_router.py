"""
WebSocket Hub — real-time room connection management.

URL: /ws/{room_id}

Connection flow:
  1. Accept connection → assign a connection id, register with the hub
  2. Send private catch-up: player snapshot, team vote, and the live scenario
     with its remaining time (or "loading" while content is being generated)
  3. Message loop (validated payloads → Room)
  4. On disconnect: the player leaves the room, everyone gets a fresh snapshot

Client → server frames are {"type": ..., "data": {...}}:
  join     — {playerId, name, role, x, y, viewportWidth, viewportHeight}
  move     — {x, y}
  respond  — {text}  free-text answer to the live scenario
  chat     — {text}  broadcast only, not scored
  start    — start a new game in an idle room
  ping     — keep-alive heartbeat → responds with "pong"
"""
import json
import logging
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from models.errors import CapacityError, InvalidInput
from models.game import INBOUND_PAYLOADS
from services.room_service import Room, RoomService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks active WebSocket connections per room (the Broadcast Hub).
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_id: {connection_id: WebSocket}}
        self._rooms: Dict[str, Dict[str, WebSocket]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, room_id: str, connection_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._rooms.setdefault(room_id, {})[connection_id] = ws
        logger.debug(
            f"[{room_id}] {connection_id} connected ({self.count(room_id)} total)"
        )

    def disconnect(self, room_id: str, connection_id: str) -> None:
        room_conns = self._rooms.get(room_id, {})
        room_conns.pop(connection_id, None)
        if not room_conns:
            self._rooms.pop(room_id, None)

    def count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, room_id: str, connection_id: str, message: Dict) -> None:
        """Send a private message to a single connection."""
        ws = self._rooms.get(room_id, {}).get(connection_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(
                    f"[{room_id}] send_to {connection_id} failed: {exc}"
                )
                self.disconnect(room_id, connection_id)

    async def broadcast(
        self,
        room_id: str,
        message: Dict,
        exclude: Optional[str] = None,
    ) -> None:
        """Broadcast a message to every connection in a room."""
        for cid, ws in list(self._rooms.get(room_id, {}).items()):
            if cid == exclude:
                continue
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(
                    f"[{room_id}] broadcast to {cid} failed: {exc}"
                )
                self.disconnect(room_id, cid)

    async def send_error(self, room_id: str, connection_id: str, message: str, code: str) -> None:
        await self.send_to(room_id, connection_id, {
            "type": "error",
            "message": message,
            "code": code,
        })


# Module-level singletons — imported by main and the room router
manager = ConnectionManager()
rooms = RoomService(manager)


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_id}")
async def websocket_endpoint(ws: WebSocket, room_id: str):
    connection_id = uuid.uuid4().hex
    await manager.connect(room_id, connection_id, ws)
    # Resolve after connect: a registered connection keeps the room from being discarded.
    room = rooms.get_or_create(room_id)

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        await room.send_state(connection_id)
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_error(room_id, connection_id, "Invalid JSON", "PARSE_ERROR")
                continue
            if not isinstance(data, dict):
                await manager.send_error(room_id, connection_id, "Expected a JSON object", "PARSE_ERROR")
                continue

            msg_type = str(data.get("type", ""))
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            await _handle_message(room, connection_id, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room_id, connection_id)
        await room.leave(connection_id)
        rooms.discard_if_abandoned(room_id)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(room: Room, connection_id: str, msg_type: str, data: Dict) -> None:
    try:
        await _dispatch_message(room, connection_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", room.room_id, msg_type)
        await manager.send_error(room.room_id, connection_id, "Internal server error", "SERVER_ERROR")


async def _dispatch_message(room: Room, connection_id: str, msg_type: str, data: Dict) -> None:
    payload_model = INBOUND_PAYLOADS.get(msg_type)
    if payload_model is None:
        await manager.send_error(
            room.room_id, connection_id, f"Unknown message type: '{msg_type}'", "UNKNOWN_TYPE"
        )
        return

    try:
        payload = payload_model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or msg_type
        await manager.send_error(
            room.room_id, connection_id, f"Invalid '{msg_type}' payload: {field} {first.get('msg', '')}".strip(),
            InvalidInput.code,
        )
        return

    if msg_type == "ping":
        await manager.send_to(room.room_id, connection_id, {"type": "pong"})

    elif msg_type == "join":
        try:
            await room.join(connection_id, payload)
        except CapacityError as exc:
            logger.info("[%s] join rejected: %s", room.room_id, exc)
            await manager.send_error(room.room_id, connection_id, "Room is full", exc.code)

    elif msg_type == "move":
        await room.move(connection_id, payload.x, payload.y)

    elif msg_type == "respond":
        await room.respond(connection_id, payload.text)

    elif msg_type == "chat":
        await room.chat(connection_id, payload.text)

    elif msg_type == "start":
        if not room.start(connection_id):
            logger.debug("[%s] start ignored (phase=%s)", room.room_id, room.controller.phase.value)
