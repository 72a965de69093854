"""Tests for the single-slot active alert state machine."""

from hazardwatch.alerts import ActiveAlert, AlertState
from hazardwatch.protocol import AlertEvent

FIRE = AlertEvent(kind="fire")
QUAKE = AlertEvent(kind="seismic", magnitude="4.1")


class TestActiveAlert:
    def test_starts_idle(self):
        alert = ActiveAlert()
        assert alert.current is None
        assert alert.state is AlertState.IDLE

    def test_apply_enters_alerting(self):
        alert = ActiveAlert()
        alert.apply(FIRE)
        assert alert.state is AlertState.ALERTING
        assert alert.current == FIRE

    def test_last_write_wins(self):
        alert = ActiveAlert()
        alert.apply(FIRE)
        alert.apply(QUAKE)
        assert alert.current == QUAKE
        alert.apply(FIRE)
        assert alert.current == FIRE

    def test_dismiss_returns_to_idle_and_is_idempotent(self):
        alert = ActiveAlert()
        alert.apply(QUAKE)
        assert alert.dismiss() is True
        assert alert.state is AlertState.IDLE
        assert alert.dismiss() is False

    def test_observers_receive_transitions(self):
        alert = ActiveAlert()
        seen = []
        alert.observe(lambda prev, cur: seen.append((prev, cur)))
        alert.apply(FIRE)
        alert.apply(QUAKE)
        alert.dismiss()
        alert.dismiss()
        assert seen == [(None, FIRE), (FIRE, QUAKE), (QUAKE, None)]

    def test_failing_observer_does_not_block_others(self):
        alert = ActiveAlert()
        seen = []

        def boom(prev, cur):
            raise RuntimeError("banner crashed")

        alert.observe(boom)
        alert.observe(lambda prev, cur: seen.append(cur))
        alert.apply(FIRE)
        assert seen == [FIRE]
        assert alert.current == FIRE

    def test_unsubscribe(self):
        alert = ActiveAlert()
        seen = []
        remove = alert.observe(lambda prev, cur: seen.append(cur))
        remove()
        remove()
        alert.apply(FIRE)
        assert seen == []
