"""Fire/smoke classification of still frames by an external vision model."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from hazardwatch.config import VisionConfig
from hazardwatch.errors import ClassificationBusy, ClassificationError

INSTRUCTION = (
    "You are a fire-safety assistant. Look at this image and decide whether it shows an active fire "
    "or smoke from a fire. Respond with strict JSON only, no prose and no code fences, in exactly this "
    'shape: {"is_fire": <true|false>, "safety_instructions": "<short safety instructions if fire, '
    'otherwise an empty string>"}.'
)

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "is_fire": {"type": "BOOLEAN"},
        "safety_instructions": {"type": "STRING"},
    },
    "required": ["is_fire", "safety_instructions"],
}

_RESPONSE_KEYS = frozenset(RESPONSE_SCHEMA["properties"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FireClassification:
    is_fire: bool
    safety_instructions: str


@dataclass(frozen=True, slots=True)
class FireDetection:
    safety_note: str
    detected_at: datetime = field(default_factory=_utcnow)
    is_fire: bool = True


def guess_mime_type(image: bytes) -> str:
    if image.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def parse_classification(text: str) -> FireClassification:
    """Strictly parse the model's JSON answer; anything else is rejected."""
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ClassificationError(f"response is not strict JSON: {e}") from e
    if not isinstance(obj, dict) or set(obj) != _RESPONSE_KEYS:
        raise ClassificationError(f"unexpected response shape: {text[:200]!r}")
    is_fire = obj["is_fire"]
    instructions = obj["safety_instructions"]
    if not isinstance(is_fire, bool) or not isinstance(instructions, str):
        raise ClassificationError(f"unexpected response types: {text[:200]!r}")
    return FireClassification(is_fire=is_fire, safety_instructions=instructions)


def _candidate_text(body: Any) -> str:
    try:
        parts = body["candidates"][0]["content"]["parts"]
        text = "".join(p["text"] for p in parts if "text" in p)
    except (KeyError, IndexError, TypeError) as e:
        raise ClassificationError("vision response has no candidate text") from e
    if not text.strip():
        raise ClassificationError("vision response is empty")
    return text


class FireClassificationGateway:
    """One classification request per user action; never retried here."""

    def __init__(
        self,
        cfg: VisionConfig | None = None,
        *,
        publish: Callable[[FireDetection], Awaitable[Any]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg or VisionConfig()
        self._publish = publish
        self._transport = transport
        self._in_flight = False
        self._logger = logging.getLogger("hazardwatch.fire")

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _build_request(self, image: bytes, mime_type: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode("ascii")}},
                        {"text": INSTRUCTION},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    async def classify(self, image: bytes, mime_type: str | None = None) -> FireClassification:
        if not self._cfg.api_key:
            raise ClassificationError(
                "vision service not configured (GEMINI_API_KEY missing)",
                user_message="Image analysis is not configured on this device.",
            )
        if not image:
            raise ClassificationError("empty image", user_message="No image to analyze.")

        url = f"{self._cfg.base_url.rstrip('/')}/v1beta/models/{self._cfg.model}:generateContent"
        payload = self._build_request(image, mime_type or guess_mime_type(image))
        try:
            async with httpx.AsyncClient(timeout=self._cfg.timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers={"x-goog-api-key": self._cfg.api_key})
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            self._logger.error("Vision request failed status=%s", e.response.status_code)
            raise ClassificationError(f"vision service returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            self._logger.error("Vision request error: %s", e)
            raise ClassificationError(
                f"vision request failed: {e}",
                user_message="Network connection failed. Please check your connection and try again.",
            ) from e
        except ValueError as e:
            raise ClassificationError("vision response is not JSON") from e

        return parse_classification(_candidate_text(body))

    async def analyze_frame(self, image: bytes, mime_type: str | None = None) -> FireDetection | None:
        """Classify one frame and publish a FireDetection if it shows fire."""
        if self._in_flight:
            raise ClassificationBusy("analysis already in flight")
        self._in_flight = True
        try:
            result = await self.classify(image, mime_type)
        finally:
            self._in_flight = False

        if not result.is_fire:
            self._logger.info("Frame analyzed: no fire")
            return None
        detection = FireDetection(safety_note=result.safety_instructions)
        self._logger.info("Frame analyzed: fire detected")
        if self._publish is not None:
            await self._publish(detection)
        return detection
