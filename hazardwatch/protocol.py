from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

ALERT_EVENT = "new-alert"
ALERT_KINDS = ("fire", "seismic")
DEFAULT_TOPIC = "alerts"


class ProtocolError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Wire form of one hazard alert. Stateless, fire-and-forget."""

    kind: str
    magnitude: str | None = None
    timestamp: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.kind}
        if self.magnitude is not None:
            payload["detail"] = {"magnitude": self.magnitude}
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp
        return payload


def dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def loads(text: str | bytes) -> Any:
    return json.loads(text)


def parse_alert_payload(payload: Any) -> AlertEvent:
    if not isinstance(payload, dict):
        raise ProtocolError("payload must be an object")
    kind = payload.get("type")
    if kind not in ALERT_KINDS:
        raise ProtocolError("Invalid payload: 'type' must be 'fire' or 'seismic'")

    magnitude: str | None = None
    detail = payload.get("detail")
    if detail is not None:
        if not isinstance(detail, dict):
            raise ProtocolError("'detail' must be an object")
        raw = detail.get("magnitude")
        if raw is not None:
            if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
                raise ProtocolError("'detail.magnitude' must be a string")
            magnitude = str(raw)

    timestamp = payload.get("timestamp")
    if timestamp is not None and not isinstance(timestamp, str):
        raise ProtocolError("'timestamp' must be a string")
    return AlertEvent(kind=kind, magnitude=magnitude, timestamp=timestamp)


def encode_alert(event: AlertEvent) -> str:
    return dumps({"event": ALERT_EVENT, "payload": event.to_payload()})


def decode_alert(text: str | bytes) -> AlertEvent:
    try:
        obj = loads(text)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("envelope must be an object")
    if obj.get("event") != ALERT_EVENT:
        raise ProtocolError(f"unexpected event {obj.get('event')!r}")
    return parse_alert_payload(obj.get("payload"))
