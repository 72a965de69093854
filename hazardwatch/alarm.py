from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

import numpy as np

from hazardwatch.alerts import ActiveAlert
from hazardwatch.config import AlarmConfig
from hazardwatch.errors import DeviceUnavailable
from hazardwatch.protocol import AlertEvent

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore[assignment]


class ToneOutput(Protocol):
    def play(self, samples: np.ndarray, sample_rate_hz: int) -> None: ...


class SoundDeviceToneOutput:
    def __init__(self) -> None:
        if sd is None:
            raise DeviceUnavailable("sounddevice/PortAudio is not available")

    def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        # Non-blocking; a new tone replaces one still playing.
        sd.play(samples, samplerate=sample_rate_hz)


def synthesize_tone(cfg: AlarmConfig) -> np.ndarray:
    """Sine beep with a short linear release so consecutive beeps don't click."""
    n = max(1, int(cfg.sample_rate_hz * cfg.duration_s))
    t = np.arange(n, dtype=np.float32) / float(cfg.sample_rate_hz)
    tone = np.sin(2.0 * np.pi * cfg.frequency_hz * t).astype(np.float32)
    release = min(n, max(1, int(cfg.sample_rate_hz * 0.02)))
    envelope = np.ones((n,), dtype=np.float32)
    envelope[-release:] = np.linspace(1.0, 0.0, release, dtype=np.float32)
    return (tone * envelope * float(cfg.gain)).astype(np.float32)


class AlarmSynthesizer:
    """Beeps while the active alert slot is non-empty.

    The tone output is created on the first alert and kept for the rest of the
    session; dismissing only cancels the repeat.
    """

    def __init__(
        self,
        alert: ActiveAlert,
        *,
        cfg: AlarmConfig | None = None,
        output_factory: Callable[[], ToneOutput] = SoundDeviceToneOutput,
    ) -> None:
        self._cfg = cfg or AlarmConfig()
        self._output_factory = output_factory
        self._output: ToneOutput | None = None
        self._tone = synthesize_tone(self._cfg)
        self._task: asyncio.Task[None] | None = None
        self._logger = logging.getLogger("hazardwatch.alarm")
        self._last_err_log_s: float = 0.0
        self._unsubscribe = alert.observe(self._on_transition)

        self.tones_played: int = 0

    @property
    def sounding(self) -> bool:
        return self._task is not None and not self._task.done()

    def _on_transition(self, previous: AlertEvent | None, current: AlertEvent | None) -> None:
        if current is None:
            self._stop()
        elif previous is None:
            self._start()

    def _start(self) -> None:
        if not self._cfg.enabled or self.sounding:
            return
        self._beep()
        self._task = asyncio.get_running_loop().create_task(self._repeat(), name="alarm_repeat")
        self._logger.info("Alarm started (every %.1fs)", self._cfg.interval_s)

    def _stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            self._logger.info("Alarm stopped")

    async def _repeat(self) -> None:
        loop = asyncio.get_running_loop()
        interval = max(0.01, float(self._cfg.interval_s))
        next_time = loop.time()
        while True:
            next_time += interval
            delay = next_time - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            else:
                # Fell behind; resync instead of bursting.
                next_time = loop.time()
                await asyncio.sleep(0)
            self._beep()

    def _beep(self) -> None:
        try:
            if self._output is None:
                self._output = self._output_factory()
            self._output.play(self._tone, self._cfg.sample_rate_hz)
        except Exception as e:
            now_s = time.monotonic()
            if (now_s - self._last_err_log_s) > 5.0:
                self._last_err_log_s = now_s
                self._logger.warning("Alarm tone failed (%s: %s)", type(e).__name__, e)
            return
        self.tones_played += 1

    async def close(self) -> None:
        self._unsubscribe()
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
