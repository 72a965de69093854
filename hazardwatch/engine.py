from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from hazardwatch.alarm import AlarmSynthesizer, SoundDeviceToneOutput, ToneOutput
from hazardwatch.alerts import ActiveAlert, AlertState
from hazardwatch.channel import AlertChannel
from hazardwatch.config import AlarmConfig, ChannelConfig, SeismicConfig, VisionConfig
from hazardwatch.errors import ChannelUnavailable, HazardError
from hazardwatch.fire import FireClassificationGateway, FireDetection
from hazardwatch.protocol import AlertEvent
from hazardwatch.publisher import AlertPublisher
from hazardwatch.sampler import AmplitudeSampler, AudioSource, SoundDeviceSource
from hazardwatch.seismic import SeismicDetection, SeismicTrigger
from hazardwatch.waveform import WaveformFeed

# Keys for per-control error messages.
MONITORING = "monitoring"
ANALYZE = "analyze"
CHANNEL = "channel"


class HazardEngine:
    """One client session of the hazard engine.

    Commands never raise: failures are logged and kept in `errors` under the
    control that triggered them, so the rest of the application is unaffected.
    """

    def __init__(
        self,
        *,
        seismic: SeismicConfig | None = None,
        alarm: AlarmConfig | None = None,
        channel: ChannelConfig | None = None,
        vision: VisionConfig | None = None,
        source_factory: Callable[[], AudioSource] | None = None,
        tone_output_factory: Callable[[], ToneOutput] = SoundDeviceToneOutput,
        clock_ms: Callable[[], float] | None = None,
        vision_transport: Any = None,
    ) -> None:
        self._logger = logging.getLogger("hazardwatch.engine")
        self._seismic_cfg = seismic or SeismicConfig()
        self._tasks: set[asyncio.Task[Any]] = set()

        self.errors: dict[str, str] = {}
        self.last_magnitude: str | None = None

        self.alert = ActiveAlert()
        self.waveform = WaveformFeed()
        self.alarm = AlarmSynthesizer(self.alert, cfg=alarm or AlarmConfig(), output_factory=tone_output_factory)

        self.channel = AlertChannel(channel, self._deliver) if channel is not None else None
        self.publisher = AlertPublisher(
            self._deliver,
            send=self.channel.send if self.channel is not None else None,
            on_send_error=self._on_send_error,
        )

        if source_factory is None:
            cfg = self._seismic_cfg

            def _default_source() -> AudioSource:
                return SoundDeviceSource(device=cfg.audio_device, sample_rate_hz=cfg.sample_rate_hz)

            source_factory = _default_source

        sampler_kwargs: dict[str, Any] = {}
        if clock_ms is not None:
            sampler_kwargs["clock_ms"] = clock_ms
        self.sampler = AmplitudeSampler(
            source_factory=source_factory,
            trigger=SeismicTrigger(self._seismic_cfg),
            feed=self.waveform,
            on_detection=self._on_seismic,
            on_error=self._on_sampler_error,
            frames_per_second=self._seismic_cfg.frames_per_second,
            **sampler_kwargs,
        )
        self.gateway = FireClassificationGateway(
            vision or VisionConfig(),
            publish=self.publisher.publish,
            transport=vision_transport,
        )

    @property
    def active_alert(self) -> AlertEvent | None:
        return self.alert.current

    @property
    def state(self) -> AlertState:
        return self.alert.state

    @property
    def monitoring(self) -> bool:
        return self.sampler.running

    # -- alert path -------------------------------------------------------

    def _deliver(self, event: AlertEvent) -> None:
        # Single entry point for local and remote alerts.
        self.alert.apply(event)

    def _on_seismic(self, detection: SeismicDetection) -> None:
        self.last_magnitude = detection.magnitude_text
        self._spawn(self.publisher.publish(detection), name="publish_seismic")

    def _on_send_error(self, err: ChannelUnavailable) -> None:
        self.errors[CHANNEL] = err.user_message

    def _on_sampler_error(self, err: HazardError) -> None:
        self.errors[MONITORING] = err.user_message

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- commands ---------------------------------------------------------

    async def connect(self) -> bool:
        if self.channel is None:
            return False
        try:
            await self.channel.subscribe()
        except ChannelUnavailable as e:
            self._logger.warning("Alert hub unavailable; alerts stay local: %s", e)
            self.errors[CHANNEL] = e.user_message
            return False
        self.errors.pop(CHANNEL, None)
        return True

    def start_monitoring(self) -> bool:
        try:
            started = self.sampler.start()
        except HazardError as e:
            self._logger.warning("Seismic monitoring failed to start: %s", e)
            self.errors[MONITORING] = e.user_message
            return False
        self.errors.pop(MONITORING, None)
        return started

    async def stop_monitoring(self) -> None:
        await self.sampler.stop()

    async def analyze_frame(self, image: bytes, mime_type: str | None = None) -> FireDetection | None:
        try:
            detection = await self.gateway.analyze_frame(image, mime_type)
        except HazardError as e:
            self._logger.warning("Frame analysis failed: %s", e)
            self.errors[ANALYZE] = e.user_message
            return None
        self.errors.pop(ANALYZE, None)
        return detection

    def dismiss(self) -> bool:
        return self.alert.dismiss()

    async def close(self) -> None:
        await self.sampler.stop()
        await self.alarm.close()
        if self.channel is not None:
            await self.channel.close()
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
