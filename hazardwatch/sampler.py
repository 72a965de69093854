from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol

import numpy as np

from hazardwatch.errors import DeviceUnavailable, HazardError, PermissionDenied
from hazardwatch.seismic import SeismicDetection, SeismicTrigger
from hazardwatch.waveform import WaveformFeed

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore[assignment]

BYTE_MIDPOINT = 128

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


def float_to_byte_domain(samples: np.ndarray) -> np.ndarray:
    """Map float32 [-1, 1] samples onto unsigned bytes centred on 128."""
    if samples.size == 0:
        return np.zeros((0,), dtype=np.uint8)
    x = np.asarray(samples, dtype=np.float32).reshape((-1,))
    return np.clip(BYTE_MIDPOINT + x * BYTE_MIDPOINT, 0, 255).astype(np.uint8)


def peak_amplitude(buffer: np.ndarray) -> int:
    """Maximum absolute deviation from the midpoint; 0 for an empty buffer."""
    if buffer.size == 0:
        return 0
    deviation = np.abs(np.asarray(buffer, dtype=np.int16) - BYTE_MIDPOINT)
    return int(deviation.max())


def _device_error(e: BaseException) -> HazardError:
    text = str(e).lower()
    if any(m in text for m in _PERMISSION_MARKERS):
        return PermissionDenied(str(e))
    return DeviceUnavailable(str(e))


class AudioSource(Protocol):
    def open(self) -> None: ...

    def read(self) -> np.ndarray: ...

    def close(self) -> None: ...


def list_input_devices() -> list[dict[str, Any]]:
    if sd is None:
        raise DeviceUnavailable("sounddevice/PortAudio is not available")
    devices = sd.query_devices()
    out: list[dict[str, Any]] = []
    for i, d in enumerate(devices):
        chans = int(d.get("max_input_channels") or 0)
        if chans <= 0:
            continue
        out.append({"index": i, "name": str(d.get("name") or ""), "channels": chans, "rate": d.get("default_samplerate")})
    return out


def resolve_input_device(device_arg: str | None) -> int | None:
    if device_arg is None or not device_arg.strip():
        return None
    devices = list_input_devices()
    try:
        idx = int(device_arg)
    except ValueError:
        idx = None
    if idx is not None:
        if not any(d["index"] == idx for d in devices):
            raise DeviceUnavailable(f"input device {idx} not found")
        return idx

    needle = device_arg.strip().lower()
    matches = [d["index"] for d in devices if needle in d["name"].lower()]
    if not matches:
        raise DeviceUnavailable(f'no input device matches "{device_arg}"')
    if len(matches) > 1:
        raise DeviceUnavailable(f'multiple input devices match "{device_arg}": {matches}')
    return matches[0]


class SoundDeviceSource:
    """Microphone input; keeps the most recent block, like an analyser node's buffer."""

    def __init__(self, *, device: str | None = None, sample_rate_hz: int = 44100, block_size: int = 2048) -> None:
        self._device_arg = device
        self._sample_rate_hz = int(sample_rate_hz)
        self._block_size = max(1, int(block_size))
        self._stream: Any = None
        self._latest = np.zeros((0,), dtype=np.uint8)
        self._logger = logging.getLogger("hazardwatch.sampler.sounddevice")

    def open(self) -> None:
        if sd is None:
            raise DeviceUnavailable("sounddevice/PortAudio is not available")
        if self._stream is not None:
            return
        loop = asyncio.get_running_loop()
        device = resolve_input_device(self._device_arg)

        def store(block: np.ndarray) -> None:
            self._latest = block

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[no-untyped-def]
            if status:
                loop.call_soon_threadsafe(self._logger.warning, "Audio status: %s", status)
            block = float_to_byte_domain(indata[:, 0] if indata.ndim == 2 else indata)
            loop.call_soon_threadsafe(store, block)

        try:
            stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate_hz,
                channels=1,
                dtype="float32",
                blocksize=self._block_size,
                callback=callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            raise _device_error(e) from e
        self._stream = stream
        self._logger.info(
            "Microphone opened device=%s rate=%dHz blocksize=%d",
            device if device is not None else "(default)",
            self._sample_rate_hz,
            self._block_size,
        )

    def read(self) -> np.ndarray:
        return self._latest

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        self._latest = np.zeros((0,), dtype=np.uint8)
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception:
            self._logger.exception("Failed to close microphone stream")
        else:
            self._logger.info("Microphone released")


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class AmplitudeSampler:
    """Per-frame peak amplitude loop feeding the seismic trigger and the waveform feed."""

    def __init__(
        self,
        *,
        source_factory: Callable[[], AudioSource],
        trigger: SeismicTrigger,
        feed: WaveformFeed,
        on_detection: Callable[[SeismicDetection], None],
        on_error: Callable[[HazardError], None] | None = None,
        frames_per_second: float = 60.0,
        clock_ms: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._source_factory = source_factory
        self._trigger = trigger
        self._feed = feed
        self._on_detection = on_detection
        self._on_error = on_error
        self._frame_s = 1.0 / max(1.0, float(frames_per_second))
        self._clock_ms = clock_ms
        self._source: AudioSource | None = None
        self._task: asyncio.Task[None] | None = None
        self._logger = logging.getLogger("hazardwatch.sampler")

        self.last_peak: int = 0
        self.last_error: HazardError | None = None
        self.frames: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Open the source and schedule the frame loop. Returns False if already running."""
        if self.running:
            self._logger.warning("Seismic monitoring already running")
            return False
        self._release_source()

        source = self._source_factory()
        try:
            source.open()
        except HazardError as e:
            self.last_error = e
            source.close()
            raise
        except Exception as e:
            source.close()
            err = _device_error(e)
            self.last_error = err
            raise err from e

        self._source = source
        self.last_error = None
        self.last_peak = 0
        self.frames = 0
        self._trigger.reset()
        self._task = asyncio.get_running_loop().create_task(self._frame_loop(source), name="amplitude_sampler")
        self._logger.info("Seismic monitoring started (%.0f fps)", 1.0 / self._frame_s)
        return True

    async def stop(self) -> None:
        # Detach this session before awaiting; a start() meanwhile owns a new source.
        task = self._task
        source = self._source
        self._task = None
        self._source = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self._logger.info("Seismic monitoring stopped")
        if source is not None:
            source.close()

    def _release_source(self) -> None:
        source = self._source
        self._source = None
        if source is not None:
            source.close()

    async def _frame_loop(self, source: AudioSource) -> None:
        try:
            while True:
                peak = peak_amplitude(source.read())
                self.last_peak = peak
                self.frames += 1
                self._feed.append(peak)
                detection = self._trigger.evaluate(peak, self._clock_ms())
                if detection is not None:
                    self._logger.info("Seismic trigger peak=%d magnitude=%s", peak, detection.magnitude_text)
                    self._on_detection(detection)
                await asyncio.sleep(self._frame_s)
        except asyncio.CancelledError:
            raise
        except HazardError as e:
            self._fail(source, e)
        except Exception as e:
            self._logger.exception("Amplitude sampler crashed")
            self._fail(source, DeviceUnavailable(str(e)))

    def _fail(self, source: AudioSource, err: HazardError) -> None:
        self._logger.warning("Seismic monitoring stopped on error: %s", err)
        self.last_error = err
        if self._source is source:
            self._source = None
        source.close()
        if self._on_error is not None:
            self._on_error(err)
