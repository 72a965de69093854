from __future__ import annotations

import os
from dataclasses import dataclass

from hazardwatch.protocol import DEFAULT_TOPIC


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return bool(default)
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_str(name: str, default: str) -> str:
    return (os.environ.get(name) or default).strip()


@dataclass(frozen=True, slots=True)
class HubConfig:
    host: str = "0.0.0.0"
    port: int = 8766
    status_interval_s: float = 30.0

    @classmethod
    def from_env(cls) -> HubConfig:
        return cls(
            host=_env_str("HUB_HOST", "0.0.0.0"),
            port=int(os.environ.get("HUB_PORT", "8766")),
            status_interval_s=float(os.environ.get("HUB_STATUS_INTERVAL_S", "30")),
        )


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    hub_url: str = "ws://127.0.0.1:8766"
    topic: str = DEFAULT_TOPIC
    open_timeout_s: float = 5.0
    insecure_ssl: bool = False

    @classmethod
    def from_env(cls) -> ChannelConfig:
        return cls(
            hub_url=_env_str("HUB_URL", "ws://127.0.0.1:8766"),
            topic=_env_str("ALERT_TOPIC", DEFAULT_TOPIC),
            open_timeout_s=float(os.environ.get("HUB_OPEN_TIMEOUT_S", "5.0")),
            insecure_ssl=_parse_bool(os.environ.get("HUB_INSECURE_SSL")),
        )


@dataclass(frozen=True, slots=True)
class SeismicConfig:
    # Peak amplitude is in the unsigned 8-bit deviation domain (0..128).
    threshold: int = 115
    max_amplitude: int = 128
    cooldown_ms: float = 5000.0
    min_magnitude: float = 2.5
    max_magnitude: float = 8.0
    frames_per_second: float = 60.0
    audio_device: str | None = None
    sample_rate_hz: int = 44100

    @classmethod
    def from_env(cls) -> SeismicConfig:
        return cls(
            threshold=int(os.environ.get("SEISMIC_THRESHOLD", "115")),
            cooldown_ms=float(os.environ.get("SEISMIC_COOLDOWN_MS", "5000")),
            frames_per_second=float(os.environ.get("SAMPLER_FPS", "60")),
            audio_device=(os.environ.get("AUDIO_DEVICE") or "").strip() or None,
            sample_rate_hz=int(os.environ.get("AUDIO_SAMPLE_RATE_HZ", "44100")),
        )


@dataclass(frozen=True, slots=True)
class AlarmConfig:
    enabled: bool = True
    interval_s: float = 1.0
    frequency_hz: float = 880.0
    gain: float = 0.5
    duration_s: float = 0.2
    sample_rate_hz: int = 44100

    @classmethod
    def from_env(cls) -> AlarmConfig:
        return cls(
            enabled=_parse_bool(os.environ.get("ALARM_ENABLED"), default=True),
            interval_s=float(os.environ.get("ALARM_INTERVAL_S", "1.0")),
        )


@dataclass(frozen=True, slots=True)
class VisionConfig:
    api_key: str | None = None
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com"
    timeout_s: float = 30.0

    @classmethod
    def from_env(cls) -> VisionConfig:
        return cls(
            api_key=(os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY") or "").strip() or None,
            model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            timeout_s=float(os.environ.get("GEMINI_TIMEOUT_S", "30")),
        )
