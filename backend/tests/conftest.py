import asyncio
import json
import time
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from agents.content_generator import ContentGenerator, TextClient
from config import Settings
from services.room_service import Room


IDEAL = {"axis1": 0.5, "axis2": 0.5, "actionSummary": "Own the mistake and offer to help."}

DEFAULT_RESPONSES = {
    "scenario": "You spill coffee on your new manager's laptop during your first meeting.",
    "axes": json.dumps({
        "axis1": {"negative": "Withdraw", "positive": "Engage"},
        "axis2": {"negative": "Defensive", "positive": "Accountable"},
    }),
    "ideal": json.dumps(IDEAL),
    "feedback": "The mind kept its head and made it right.",
}


class FakeTextClient(TextClient):
    """Scripted text generator: per request type response, delay and error."""

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        delays: Optional[Dict[str, float]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls: List[str] = []
        self.cancelled: List[str] = []

    async def complete(self, request_type, prompt, *, system, temperature, max_output_tokens):
        self.calls.append(request_type)
        delay = self.delays.get(request_type, 0)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled.append(request_type)
                raise
        if request_type in self.errors:
            raise self.errors[request_type]
        return self.responses[request_type]


class FakeHub:
    """Records everything a room sends instead of writing to sockets."""

    def __init__(self):
        self.broadcasts: List[Tuple[float, Dict]] = []
        self.private: List[Tuple[str, Dict]] = []
        self.connections: Dict[str, int] = {}

    async def broadcast(self, room_id: str, message: Dict, exclude: Optional[str] = None) -> None:
        self.broadcasts.append((time.monotonic(), message))

    async def send_to(self, room_id: str, connection_id: str, message: Dict) -> None:
        self.private.append((connection_id, message))

    def count(self, room_id: str) -> int:
        return self.connections.get(room_id, 0)

    def of_type(self, msg_type: str) -> List[Dict]:
        return [m for _, m in self.broadcasts if m["type"] == msg_type]

    def stamped(self, msg_type: str) -> List[Tuple[float, Dict]]:
        return [(t, m) for t, m in self.broadcasts if m["type"] == msg_type]

    async def wait_for(self, msg_type: str, count: int = 1, timeout: float = 3.0) -> Dict:
        """Wait until `count` broadcasts of msg_type were seen; return the last one."""
        deadline = time.monotonic() + timeout
        while len(self.of_type(msg_type)) < count:
            if time.monotonic() > deadline:
                seen = [m["type"] for _, m in self.broadcasts]
                raise AssertionError(f"timed out waiting for {count}x {msg_type}; saw {seen}")
            await asyncio.sleep(0.005)
        return self.of_type(msg_type)[count - 1]


@pytest.fixture()
def fast_settings():
    return Settings(
        gemini_api_key="",
        first_join_delay_ms=50,
        round_durations_ms=[200, 150, 120, 100],
        inter_round_delay_ms=50,
        scenario_timeout_s=0.1,
        axes_timeout_s=0.1,
        ideal_timeout_s=0.1,
        feedback_timeout_s=0.1,
    )


@pytest.fixture()
def text_client():
    return FakeTextClient()


@pytest.fixture()
def generator(text_client, fast_settings):
    return ContentGenerator(client=text_client, settings=fast_settings)


@pytest.fixture()
def hub():
    return FakeHub()


@pytest_asyncio.fixture()
async def room(hub, generator, fast_settings):
    room = Room("test-room", hub, generator, fast_settings)
    yield room
    room.controller.abort()
    await asyncio.sleep(0.01)
