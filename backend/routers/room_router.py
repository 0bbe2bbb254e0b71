"""
Room HTTP endpoints (read-only).

Routes:
  GET /api/rooms             — Summary of every live room
  GET /api/rooms/{room_id}   — Phase, round, players, team vote and gauges
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from models.game import RoomStatus, RoomSummary
from routers.ws_router import rooms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms():
    return [room.summary() for room in rooms.all()]


@router.get("/rooms/{room_id}", response_model=RoomStatus)
async def get_room(room_id: str):
    room = rooms.get(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.status()
