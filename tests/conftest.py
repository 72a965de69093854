"""Pytest fixtures for the hazard engine tests."""

from __future__ import annotations

import pytest

from hazardwatch.config import AlarmConfig, ChannelConfig, HubConfig
from hazardwatch.hub import AlertHub
from tests.helpers import FakeToneOutput


@pytest.fixture
async def hub():
    """Alert hub on an ephemeral localhost port."""
    hub = AlertHub(HubConfig(host="127.0.0.1", port=0, status_interval_s=60.0))
    await hub.start()
    yield hub
    await hub.stop()


@pytest.fixture
def channel_cfg(hub):
    return ChannelConfig(hub_url=f"ws://127.0.0.1:{hub.port}", open_timeout_s=2.0)


@pytest.fixture
def fast_alarm_cfg():
    return AlarmConfig(interval_s=0.05, duration_s=0.01)


@pytest.fixture
def tone_output():
    return FakeToneOutput()
