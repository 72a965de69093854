"""Tests for the repeating alarm tone driven by the active alert."""

import asyncio

import numpy as np
import pytest

from hazardwatch.alarm import AlarmSynthesizer, synthesize_tone
from hazardwatch.alerts import ActiveAlert
from hazardwatch.config import AlarmConfig
from hazardwatch.protocol import AlertEvent
from tests.helpers import CountingFactory, FakeToneOutput, wait_until

FIRE = AlertEvent(kind="fire")
QUAKE = AlertEvent(kind="seismic", magnitude="3.0")


def test_synthesized_tone_shape():
    cfg = AlarmConfig()
    tone = synthesize_tone(cfg)
    assert tone.dtype == np.float32
    assert tone.shape == (int(cfg.sample_rate_hz * cfg.duration_s),)
    assert float(np.max(np.abs(tone))) <= cfg.gain + 1e-6
    assert abs(float(tone[-1])) < 1e-3


class TestAlarmSynthesizer:
    async def test_tone_immediately_then_repeats(self, fast_alarm_cfg, tone_output):
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=lambda: tone_output)
        alert.apply(FIRE)
        assert len(tone_output.plays) == 1
        assert alarm.sounding
        await wait_until(lambda: len(tone_output.plays) >= 4)
        gaps = np.diff(tone_output.plays)
        assert float(np.min(gaps)) >= 0.04
        await alarm.close()

    async def test_dismiss_stops_future_tones(self, fast_alarm_cfg, tone_output):
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=lambda: tone_output)
        alert.apply(QUAKE)
        await wait_until(lambda: len(tone_output.plays) >= 2)
        alert.dismiss()
        alert.dismiss()
        count = len(tone_output.plays)
        await asyncio.sleep(0.15)
        assert len(tone_output.plays) == count
        assert not alarm.sounding
        await alarm.close()

    async def test_replacing_alert_keeps_single_repeat(self, fast_alarm_cfg, tone_output):
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=lambda: tone_output)
        alert.apply(FIRE)
        alert.apply(QUAKE)
        alert.apply(FIRE)
        assert len(tone_output.plays) == 1
        await asyncio.sleep(0.12)
        # One repeat loop: roughly two more beeps, not six.
        assert len(tone_output.plays) <= 4
        await alarm.close()

    async def test_output_created_once_and_reused(self, fast_alarm_cfg):
        factory = CountingFactory(FakeToneOutput)
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=factory)
        assert factory.calls == 0
        alert.apply(FIRE)
        alert.dismiss()
        alert.apply(QUAKE)
        alert.dismiss()
        assert factory.calls == 1
        assert len(factory.instances[0].plays) == 2
        await alarm.close()

    async def test_output_failure_is_contained(self, fast_alarm_cfg):
        output = FakeToneOutput(fail=True)
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=lambda: output)
        alert.apply(FIRE)
        await asyncio.sleep(0.08)
        assert alarm.sounding
        assert alarm.tones_played == 0
        await alarm.close()
        assert not alarm.sounding

    async def test_disabled_alarm_is_silent(self, tone_output):
        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=AlarmConfig(enabled=False), output_factory=lambda: tone_output)
        alert.apply(FIRE)
        assert tone_output.plays == []
        assert not alarm.sounding
        await alarm.close()

    @pytest.mark.parametrize("event", [FIRE, QUAKE])
    async def test_same_tone_for_every_kind(self, fast_alarm_cfg, event):
        played = []

        class Recorder:
            def play(self, samples, sample_rate_hz):
                played.append(samples.copy())

        alert = ActiveAlert()
        alarm = AlarmSynthesizer(alert, cfg=fast_alarm_cfg, output_factory=Recorder)
        alert.apply(event)
        np.testing.assert_array_equal(played[0], synthesize_tone(fast_alarm_cfg))
        await alarm.close()
