"""
Content Generator — LLM-written round content with deterministic fallbacks.

Uses gemini-2.5-flash (text-only) for:
  1. Scenario text   — an awkward social situation the shared mind must react to
  2. Axis labels     — the two psychological dimensions the map represents
  3. Ideal point     — the hidden target stance (depends on the axes)
  4. Feedback        — post-round narrative for the ideal and the actual stance

Every operation is bounded by a timeout. A timeout, transport error, non-JSON
body or schema mismatch all end the same way: a locally built fallback value
that passes the same validation as a real one. Game flow is never blocked.
"""
import asyncio
import json
import logging
import random
import re
import zlib
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, TypeVar

from pydantic import ValidationError

from config import Settings, settings as default_settings
from models.errors import GenerationError, GenerationMalformed, GenerationTimeout
from models.game import DEFAULT_ROLES, AxisLabels, AxisPair, FeedbackKind, IdealPoint

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Generated(NamedTuple):
    value: Any
    used_fallback: bool = False


# ── Fallback content ──────────────────────────────────────────────────────────

_FALLBACK_SCENARIOS: List[str] = [
    "You wave back enthusiastically at someone across the street, then realize "
    "they were waving at the person behind you. They saw the whole thing.",
    "At a friend's dinner party you accidentally call the host by their ex's name "
    "during a toast. The table goes quiet and everyone is looking at you.",
    "Your coworker presents your idea in the team meeting as their own, and your "
    "manager praises them for it while you sit right there.",
    "A stranger on the train has been reading your messages over your shoulder and "
    "just laughed at something private you typed.",
    "You get a text meant for someone else: your closest friend complaining about "
    "you to another friend in the group.",
    "At the checkout the cashier says your card was declined. There is a long line "
    "behind you and someone sighs loudly.",
]

DEFAULT_AXES = AxisLabels(
    axis1=AxisPair(negative="Avoidance", positive="Approach"),
    axis2=AxisPair(negative="Vindictive", positive="Empathetic"),
)

_FALLBACK_ACTION_SUMMARY = "Pause, read the room, and respond in proportion to what happened."

# Fallback ideal points stay away from the extreme corners.
_FALLBACK_POINT_RANGE = 0.8


def fallback_scenario_text(round_index: int) -> str:
    return _FALLBACK_SCENARIOS[round_index % len(_FALLBACK_SCENARIOS)]


def fallback_ideal_point(scenario_text: str) -> IdealPoint:
    """Pseudo-random but reproducible: the same scenario always yields the same point."""
    rng = random.Random(zlib.crc32(scenario_text.encode("utf-8")))
    return IdealPoint(
        axis1=round(rng.uniform(-_FALLBACK_POINT_RANGE, _FALLBACK_POINT_RANGE), 2),
        axis2=round(rng.uniform(-_FALLBACK_POINT_RANGE, _FALLBACK_POINT_RANGE), 2),
        action_summary=_FALLBACK_ACTION_SUMMARY,
    )


def _lean(value: float, pair: AxisPair) -> str:
    if abs(value) < 0.1:
        return f"balanced between {pair.negative.lower()} and {pair.positive.lower()}"
    label = pair.positive if value > 0 else pair.negative
    strength = "strongly" if abs(value) >= 0.6 else "somewhat"
    return f"{strength} toward {label.lower()}"


def fallback_feedback(
    axes: AxisLabels, axis1: float, axis2: float, kind: FeedbackKind
) -> str:
    stance = f"{_lean(axis1, axes.axis1)} and {_lean(axis2, axes.axis2)}"
    coords = f"({axis1:+.2f}, {axis2:+.2f})"
    if kind == FeedbackKind.IDEAL_EXPLANATION:
        return f"The healthiest response leaned {stance} {coords}."
    return f"Your team settled {stance} {coords}."


# ── System prompts (one per request type) ─────────────────────────────────────

_SYSTEM_PROMPTS = {
    "scenario": (
        "You are a creative writer who generates awkward, relatable social "
        "scenarios for a psychological party game."
    ),
    "axes": (
        "You are a psychology expert who generates relevant emotional/psychological "
        "dimensions for decision-making scenarios. Always respond with valid JSON only."
    ),
    "ideal": (
        "You are a psychology expert who determines ideal emotional responses to "
        "social situations. Consider psychological health, social appropriateness, "
        "and effectiveness. Always respond with valid JSON only."
    ),
    "feedback": (
        "You are a creative writer specializing in character dialogue for a "
        "psychological game involving different aspects of human consciousness."
    ),
}

# (temperature, max_output_tokens) — structured requests run cooler
_SAMPLING = {
    "scenario": (0.7, 500),
    "axes": (0.3, 300),
    "ideal": (0.3, 300),
    "feedback": (0.7, 300),
}


# ── Text clients ──────────────────────────────────────────────────────────────

class TextClient:
    """One request/response call to an external text generator."""

    async def complete(
        self,
        request_type: str,
        prompt: str,
        *,
        system: str,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        raise NotImplementedError


class GeminiTextClient(TextClient):
    """Async text generation via Gemini (not Live API). The SDK client is created on first use."""

    def __init__(self, api_key: str, model: str):
        self.api_key = api_key
        self.model = model
        self._client: Optional[Any] = None

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise GenerationError("gemini", "GEMINI_API_KEY not set")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        request_type: str,
        prompt: str,
        *,
        system: str,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        from google.genai import errors, types

        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system,
                    temperature=temperature,
                    max_output_tokens=max_output_tokens,
                ),
            )
        except errors.APIError as exc:
            raise GenerationError(request_type, f"Gemini API error {exc.code}") from exc
        text = response.text
        if not text:
            raise GenerationMalformed(request_type, "empty response")
        return text


# ── Decoding ──────────────────────────────────────────────────────────────────

def _strip_fences(raw: str) -> str:
    """Strip optional markdown code fences (```json or ``` with any language tag)."""
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\n?", "", text)
        text = re.sub(r"\n?```$", "", text.strip())
    return text.strip()


def _decode_text(operation: str, raw: str, max_chars: int = 800) -> str:
    text = _strip_fences(raw).strip('"').strip()
    if not text:
        raise GenerationMalformed(operation, "empty text")
    return text[:max_chars]


def _decode_json(operation: str, raw: str) -> Any:
    try:
        return json.loads(_strip_fences(raw))
    except json.JSONDecodeError as exc:
        raise GenerationMalformed(operation, f"not JSON: {exc}") from exc


def decode_axis_labels(raw: str) -> AxisLabels:
    try:
        return AxisLabels.model_validate(_decode_json("axes", raw))
    except ValidationError as exc:
        raise GenerationMalformed("axes", f"schema mismatch: {exc.error_count()} error(s)") from exc


def decode_ideal_point(raw: str) -> IdealPoint:
    try:
        return IdealPoint.model_validate(_decode_json("ideal", raw))
    except ValidationError as exc:
        raise GenerationMalformed("ideal", f"schema mismatch: {exc.error_count()} error(s)") from exc


def _discard_late(operation: str, task: "asyncio.Task[str]") -> None:
    """Done-callback for requests abandoned after their timeout."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        logger.debug("[%s] late response discarded; fallback already applied", operation)
    else:
        logger.debug("[%s] abandoned request failed: %s", operation, exc)


# ── Content Generator ─────────────────────────────────────────────────────────

class ContentGenerator:
    """
    Adapter between the Round Controller and an external text generator.
    Never raises (except on cancellation): every result is structurally valid.
    """

    def __init__(self, client: Optional[TextClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.client = client or GeminiTextClient(
            api_key=self.settings.gemini_api_key,
            model=self.settings.content_model,
        )

    async def _request(self, request_type: str, prompt: str, timeout_s: float) -> str:
        """One bounded call. On timeout the request is cancelled and any late reply dropped."""
        temperature, max_tokens = _SAMPLING[request_type]
        task = asyncio.ensure_future(
            self.client.complete(
                request_type,
                prompt,
                system=_SYSTEM_PROMPTS[request_type],
                temperature=temperature,
                max_output_tokens=max_tokens,
            )
        )
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_s)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.add_done_callback(lambda t: _discard_late(request_type, t))
            task.cancel()
            raise GenerationTimeout(request_type, timeout_s)
        return task.result()

    async def _with_fallback(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        fallback: Callable[[], T],
    ) -> Generated:
        """The single decode-or-fallback path shared by every operation."""
        try:
            return Generated(await call(), False)
        except GenerationTimeout as exc:
            logger.warning("[%s] timed out after %gs — using fallback", operation, exc.timeout_s)
        except GenerationError as exc:
            logger.warning("[%s] unusable response (%s) — using fallback", operation, exc)
        except Exception as exc:
            logger.warning("[%s] generator call failed: %s — using fallback", operation, exc)
        return Generated(fallback(), True)

    # ── Operations ─────────────────────────────────────────────────────────────

    async def generate_scenario_text(
        self, active_roles: List[str], round_index: int = 0
    ) -> Generated:
        roles = ", ".join(active_roles or DEFAULT_ROLES)
        prompt = (
            f"Write one short, awkward but relatable social scenario (2-3 sentences, "
            f"second person, present tense) that a single person has to react to.\n"
            f"The player's mind is split into these voices: {roles}. The situation "
            f"should give each of them something to argue about.\n"
            f"Reply with ONLY the scenario text — no title, no quotes, no options."
        )

        async def call() -> str:
            raw = await self._request("scenario", prompt, self.settings.scenario_timeout_s)
            return _decode_text("scenario", raw)

        return await self._with_fallback(
            "scenario", call, lambda: fallback_scenario_text(round_index)
        )

    async def generate_axis_labels(self, scenario_text: str) -> Generated:
        prompt = (
            f"Scenario: {scenario_text}\n\n"
            f"Choose the two psychological dimensions that best capture how someone "
            f"could react to this scenario. Each dimension has a negative and a "
            f"positive pole, 1-2 words each (e.g. Avoidance / Approach).\n\n"
            f"Return ONLY this JSON object with no markdown fences:\n"
            f'{{"axis1": {{"negative": "...", "positive": "..."}}, '
            f'"axis2": {{"negative": "...", "positive": "..."}}}}'
        )

        async def call() -> AxisLabels:
            return decode_axis_labels(
                await self._request("axes", prompt, self.settings.axes_timeout_s)
            )

        return await self._with_fallback("axes", call, lambda: DEFAULT_AXES)

    async def generate_ideal_point(
        self, scenario_text: str, axes: AxisLabels
    ) -> Generated:
        prompt = (
            f"Scenario: {scenario_text}\n\n"
            f"Axis 1 runs from {axes.axis1.negative} (-1) to {axes.axis1.positive} (+1).\n"
            f"Axis 2 runs from {axes.axis2.negative} (-1) to {axes.axis2.positive} (+1).\n\n"
            f"Where on these axes does the healthiest, most effective response sit? "
            f"Summarize that response as one concrete action (max 20 words).\n\n"
            f"Return ONLY this JSON object with no markdown fences:\n"
            f'{{"axis1": <number -1..1>, "axis2": <number -1..1>, "actionSummary": "..."}}'
        )

        async def call() -> IdealPoint:
            return decode_ideal_point(
                await self._request("ideal", prompt, self.settings.ideal_timeout_s)
            )

        return await self._with_fallback(
            "ideal", call, lambda: fallback_ideal_point(scenario_text)
        )

    async def generate_feedback(
        self,
        scenario_text: str,
        axes: AxisLabels,
        axis1: float,
        axis2: float,
        kind: FeedbackKind,
    ) -> Generated:
        if kind == FeedbackKind.IDEAL_EXPLANATION:
            ask = "Explain in 2 sentences why this is what the mind should have done."
        else:
            ask = "Describe in 2 sentences what the mind actually did and how it played out."
        prompt = (
            f"Scenario: {scenario_text}\n"
            f"Axis 1: {axes.axis1.negative} (-1) to {axes.axis1.positive} (+1) → {axis1:+.2f}\n"
            f"Axis 2: {axes.axis2.negative} (-1) to {axes.axis2.positive} (+1) → {axis2:+.2f}\n\n"
            f"{ask} Speak to the group directly, no preamble."
        )

        async def call() -> str:
            raw = await self._request("feedback", prompt, self.settings.feedback_timeout_s)
            return _decode_text("feedback", raw)

        return await self._with_fallback(
            f"feedback:{kind.value}",
            call,
            lambda: fallback_feedback(axes, axis1, axis2, kind),
        )
