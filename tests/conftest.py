"""Pytest configuration and fixtures for astro-sequencer tests.

Every test gets a fresh logging configuration and a fresh global driver
factory, so tests that switch driver mode or reconfigure logging cannot
leak into each other. Session tests run on a VirtualClock: sleeping
advances simulated time instantly, so a full night's plan runs in
milliseconds and poll counts are deterministic.
"""

from __future__ import annotations

import pytest

from astro_sequencer.devices import DeviceRegistry
from astro_sequencer.drivers import config as driver_config
from astro_sequencer.drivers.twin import DigitalTwinConfig
from astro_sequencer.observability import reset_logging
from astro_sequencer.sequencing import SessionConfig
from tests.fakes import VirtualClock


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset logging and the global driver factory around each test."""
    reset_logging()
    driver_config._factory = None
    yield
    driver_config._factory = None
    reset_logging()


@pytest.fixture
def clock() -> VirtualClock:
    """Virtual clock starting at 2026-10-19 21:00 UTC."""
    return VirtualClock()


@pytest.fixture
def fast_config(tmp_path) -> SessionConfig:
    """Session settings with short exposures and a small poll budget."""
    return SessionConfig(
        max_failsafe=20,
        exposure_seconds=30.0,
        image_ready_polls=10,
        output_dir=tmp_path,
    )


@pytest.fixture
def twin_config(clock: VirtualClock) -> DigitalTwinConfig:
    """Twin behaviour driven by the virtual clock, with tiny frames."""
    return DigitalTwinConfig(
        time_source=clock.monotonic,
        image_width=16,
        image_height=12,
        seed=42,
    )


@pytest.fixture
def twin_registry(twin_config: DigitalTwinConfig):
    """Registry with the twin backend installed, cleared after the test."""
    factory = driver_config.DriverFactory(driver_config.DriverConfig(twin=twin_config))
    registry: DeviceRegistry = factory.create_registry()
    yield registry
    registry.clear()
