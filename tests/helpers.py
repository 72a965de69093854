"""Fakes shared by the test modules."""

from __future__ import annotations

import asyncio
from typing import Callable

import numpy as np

from hazardwatch.errors import HazardError


def byte_buffer(peak: int) -> np.ndarray:
    """A time-domain byte buffer whose peak deviation from 128 is exactly `peak`."""
    return np.array([128, 128 - peak, 128], dtype=np.uint8)


class FakeSource:
    """Scripted audio source: returns one buffer per read, then silence."""

    def __init__(
        self,
        peaks: list[int] | None = None,
        *,
        open_error: HazardError | None = None,
        read_error_after: int | None = None,
        read_error: HazardError | None = None,
    ) -> None:
        self._buffers = [byte_buffer(p) for p in (peaks or [])]
        self._open_error = open_error
        self._read_error_after = read_error_after
        self._read_error = read_error
        self.opened = 0
        self.closed = 0
        self.reads = 0

    def open(self) -> None:
        self.opened += 1
        if self._open_error is not None:
            raise self._open_error

    def read(self) -> np.ndarray:
        self.reads += 1
        if self._read_error_after is not None and self.reads > self._read_error_after:
            assert self._read_error is not None
            raise self._read_error
        if self._buffers:
            return self._buffers.pop(0)
        return byte_buffer(0)

    def close(self) -> None:
        self.closed += 1


class SteppingClock:
    """Millisecond clock that advances by `step_ms` on every reading."""

    def __init__(self, start_ms: float = 0.0, step_ms: float = 0.0) -> None:
        self.now_ms = start_ms
        self.step_ms = step_ms

    def __call__(self) -> float:
        value = self.now_ms
        self.now_ms += self.step_ms
        return value


class FakeToneOutput:
    def __init__(self, fail: bool = False) -> None:
        self.plays: list[float] = []
        self.fail = fail

    def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        if self.fail:
            raise RuntimeError("output device gone")
        self.plays.append(asyncio.get_running_loop().time())


class CountingFactory:
    def __init__(self, make: Callable[[], object]) -> None:
        self._make = make
        self.calls = 0
        self.instances: list[object] = []

    def __call__(self):  # type: ignore[no-untyped-def]
        self.calls += 1
        obj = self._make()
        self.instances.append(obj)
        return obj


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
