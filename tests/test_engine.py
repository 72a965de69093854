"""End-to-end tests of one engine session without a hub."""

import httpx

from hazardwatch.alerts import AlertState
from hazardwatch.config import SeismicConfig, VisionConfig
from hazardwatch.engine import ANALYZE, MONITORING, HazardEngine
from hazardwatch.errors import PermissionDenied
from hazardwatch.protocol import AlertEvent
from tests.helpers import CountingFactory, FakeSource, FakeToneOutput, SteppingClock, wait_until

FAST_SEISMIC = SeismicConfig(frames_per_second=500)


def vision_transport(text):
    def handler(request):
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

    return httpx.MockTransport(handler)


def make_engine(source, fast_alarm_cfg, **kwargs):
    tones = CountingFactory(FakeToneOutput)
    engine = HazardEngine(
        seismic=FAST_SEISMIC,
        alarm=fast_alarm_cfg,
        source_factory=lambda: source,
        tone_output_factory=tones,
        clock_ms=SteppingClock(step_ms=40),
        **kwargs,
    )
    return engine, tones


class TestHazardEngine:
    async def test_seismic_detection_raises_local_alert(self, fast_alarm_cfg):
        engine, tones = make_engine(FakeSource([10, 20, 116, 30, 118, 40]), fast_alarm_cfg)
        assert engine.start_monitoring() is True
        assert engine.monitoring
        await wait_until(lambda: engine.state is AlertState.ALERTING)

        assert engine.active_alert == AlertEvent(kind="seismic", magnitude="2.9")
        assert engine.last_magnitude == "2.9"
        assert len(engine.waveform) > 0
        await wait_until(lambda: len(tones.instances[0].plays) >= 2)

        assert engine.dismiss() is True
        assert engine.state is AlertState.IDLE
        assert not engine.alarm.sounding
        await engine.close()
        assert not engine.monitoring

    async def test_quiet_input_never_alerts(self, fast_alarm_cfg):
        engine, tones = make_engine(FakeSource([0, 50, 115, 100]), fast_alarm_cfg)
        engine.start_monitoring()
        await wait_until(lambda: engine.sampler.frames >= 4)
        assert engine.state is AlertState.IDLE
        assert tones.calls == 0
        await engine.close()

    async def test_permission_denied_is_reported(self, fast_alarm_cfg):
        source = FakeSource(open_error=PermissionDenied("microphone access denied"))
        engine, _ = make_engine(source, fast_alarm_cfg)
        assert engine.start_monitoring() is False
        assert not engine.monitoring
        assert engine.errors[MONITORING] == PermissionDenied.default_message
        await engine.close()

    async def test_read_failure_is_reported(self, fast_alarm_cfg):
        source = FakeSource(read_error_after=2, read_error=PermissionDenied("revoked"))
        engine, _ = make_engine(source, fast_alarm_cfg)
        assert engine.start_monitoring() is True
        await wait_until(lambda: not engine.monitoring)
        assert MONITORING in engine.errors
        assert source.closed == 1
        await engine.close()

    async def test_restart_clears_monitoring_error(self, fast_alarm_cfg):
        sources = [FakeSource(open_error=PermissionDenied("denied")), FakeSource()]
        engine = HazardEngine(
            seismic=FAST_SEISMIC,
            alarm=fast_alarm_cfg,
            source_factory=lambda: sources.pop(0),
            tone_output_factory=FakeToneOutput,
        )
        engine.start_monitoring()
        assert MONITORING in engine.errors

        assert engine.start_monitoring() is True
        assert MONITORING not in engine.errors
        await engine.stop_monitoring()
        await engine.stop_monitoring()
        await engine.close()

    async def test_fire_frame_raises_fire_alert(self, fast_alarm_cfg):
        engine, _ = make_engine(
            FakeSource(),
            fast_alarm_cfg,
            vision=VisionConfig(api_key="k"),
            vision_transport=vision_transport('{"is_fire": true, "safety_instructions": "Get out."}'),
        )
        detection = await engine.analyze_frame(b"\xff\xd8frame")
        assert detection is not None
        assert detection.safety_note == "Get out."
        assert engine.active_alert == AlertEvent(kind="fire")
        assert engine.alarm.sounding
        await engine.close()

    async def test_no_fire_leaves_alert_unchanged(self, fast_alarm_cfg):
        engine, tones = make_engine(
            FakeSource(),
            fast_alarm_cfg,
            vision=VisionConfig(api_key="k"),
            vision_transport=vision_transport('{"is_fire": false, "safety_instructions": ""}'),
        )
        assert await engine.analyze_frame(b"\xff\xd8frame") is None
        assert engine.state is AlertState.IDLE
        assert engine.active_alert is None
        assert ANALYZE not in engine.errors
        assert tones.calls == 0
        await engine.close()

    async def test_unparseable_answer_is_reported(self, fast_alarm_cfg):
        engine, _ = make_engine(
            FakeSource(),
            fast_alarm_cfg,
            vision=VisionConfig(api_key="k"),
            vision_transport=vision_transport("Yes, that looks like fire."),
        )
        assert await engine.analyze_frame(b"\xff\xd8frame") is None
        assert ANALYZE in engine.errors
        assert engine.state is AlertState.IDLE
        await engine.close()

    async def test_local_only_engine(self, fast_alarm_cfg):
        engine, _ = make_engine(FakeSource(), fast_alarm_cfg)
        assert engine.channel is None
        assert await engine.connect() is False
        await engine.close()
