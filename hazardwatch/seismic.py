from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from hazardwatch.config import SeismicConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SeismicDetection:
    magnitude: float
    detected_at: datetime = field(default_factory=_utcnow)

    @property
    def magnitude_text(self) -> str:
        return f"{self.magnitude:.1f}"


def peak_to_magnitude(peak: float, cfg: SeismicConfig) -> float:
    """Linear presentation mapping of threshold..max amplitude onto min..max magnitude.

    Not a seismological unit. Unclamped: the byte-domain source never exceeds 128.
    """
    span = float(cfg.max_amplitude - cfg.threshold)
    ratio = (float(peak) - cfg.threshold) / span
    return cfg.min_magnitude + ratio * (cfg.max_magnitude - cfg.min_magnitude)


class SeismicTrigger:
    """Threshold + cooldown debounce over the peak-amplitude stream."""

    def __init__(self, cfg: SeismicConfig | None = None) -> None:
        self._cfg = cfg or SeismicConfig()
        self._last_trigger_ms: float | None = None

    @property
    def last_trigger_ms(self) -> float | None:
        return self._last_trigger_ms

    def reset(self) -> None:
        self._last_trigger_ms = None

    def evaluate(self, peak: int, now_ms: float) -> SeismicDetection | None:
        if peak <= self._cfg.threshold:
            return None
        last = self._last_trigger_ms
        if last is not None and (now_ms - last) <= self._cfg.cooldown_ms:
            return None
        self._last_trigger_ms = now_ms
        return SeismicDetection(magnitude=peak_to_magnitude(peak, self._cfg))
