from __future__ import annotations

import logging
from collections import deque
from typing import Callable

WAVEFORM_CAPACITY = 150

WaveformListener = Callable[["WaveformFeed"], None]


class WaveformFeed:
    """Sliding window of recent peak amplitudes for the seismograph chart."""

    def __init__(self, capacity: int = WAVEFORM_CAPACITY) -> None:
        self._capacity = max(1, int(capacity))
        self._samples: deque[int] = deque(maxlen=self._capacity)
        self._listeners: list[WaveformListener] = []
        self._logger = logging.getLogger("hazardwatch.waveform")

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, peak: int) -> None:
        self._samples.append(int(peak))
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                self._logger.exception("Waveform listener failed")

    def snapshot(self) -> list[int]:
        return list(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def add_listener(self, listener: WaveformListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
