"""Tests for stepwise cooler ramps."""

from __future__ import annotations

import threading

import pytest

from astro_sequencer.drivers import DriverError
from astro_sequencer.sequencing import CoolDirection, WaitOutcome, ramp_cameras
from astro_sequencer.sequencing.cooling import ambient_target, plausible
from tests.fakes import FakeCamera, VirtualClock


def connected(camera: FakeCamera) -> FakeCamera:
    camera.connected = True
    return camera


def cool(cameras, clock, target=-10.0, **kwargs):
    options = {"power_limit": 80.0, "interval": 20.0, "max_steps": 100}
    options.update(kwargs)
    return ramp_cameras(
        [(c.name, c) for c in cameras],
        lambda camera: target,
        CoolDirection.DOWN,
        clock=clock,
        **options,
    )


class BrokenCamera(FakeCamera):
    @property
    def ccd_temperature(self) -> float:
        raise DriverError(f"{self.name}: sensor read failed")


class TestCoolDirection:
    """Setpoint stepping rules."""

    @pytest.mark.parametrize(
        "direction, ccd, target, expected",
        [
            (CoolDirection.DOWN, 0.4, -10.0, -1.0),
            (CoolDirection.DOWN, -9.6, -10.0, -10.0),
            (CoolDirection.UP, -5.0, 15.0, -4.0),
            (CoolDirection.UP, 14.2, 15.0, 15.0),
        ],
    )
    def test_next_setpoint(self, direction, ccd, target, expected) -> None:
        assert direction.next_setpoint(ccd, target) == expected

    def test_needs_ramping(self) -> None:
        assert CoolDirection.DOWN.needs_ramping(0.0, -10.0)
        assert not CoolDirection.DOWN.needs_ramping(-10.0, -10.0)
        assert CoolDirection.UP.needs_ramping(-10.0, 15.0)
        assert not CoolDirection.UP.needs_ramping(15.0, 15.0)

    def test_power_limit(self) -> None:
        assert CoolDirection.DOWN.power_limit_reached(85.0, 80.0)
        assert not CoolDirection.DOWN.power_limit_reached(40.0, 80.0)
        assert CoolDirection.UP.power_limit_reached(0.0, 0.1)
        assert not CoolDirection.UP.power_limit_reached(30.0, 0.1)

    @pytest.mark.parametrize(
        "value, expected",
        [(15.0, True), (-40.0, True), (-41.0, False), (99.0, False), (None, False)],
    )
    def test_plausible(self, value, expected) -> None:
        assert plausible(value) is expected

    def test_nan_is_not_plausible(self) -> None:
        assert not plausible(float("nan"))


class TestCooldown:
    """Ramping down to a setpoint."""

    def test_one_degree_per_interval(self, clock: VirtualClock) -> None:
        """The setpoint walks down a degree per check, then settles.

        Arrangement:
        1. Connected camera at 0 C with the cooler off, no power reading.

        Action:
        Ramp down to -3 C with a 20 s interval.

        Assertion Strategy:
        Validates stepping by confirming setpoints -1, -2, -3, the cooler
        switched on once, two settled checks after the last step, and
        four 20 s sleeps between the five checks.
        """
        camera = connected(FakeCamera())

        result = cool([camera], clock, target=-3.0)

        assert camera.setpoint_history == [-1.0, -2.0, -3.0]
        assert camera.cooler_history == [True]
        assert result.wait.outcome is WaitOutcome.COMPLETED
        assert result.wait.polls == 5
        assert clock.sleeps == [20.0] * 4
        assert result.reached

    def test_power_limit_stops_early(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera(power=85.0))

        result = cool([camera], clock)

        assert camera.setpoint_history == [-1.0]
        assert result.wait.completed
        assert not result.reached

    def test_bounded_by_max_steps(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera())

        result = cool([camera], clock, max_steps=3)

        assert result.wait.outcome is WaitOutcome.TIMED_OUT
        assert camera.setpoint_history == [-1.0, -2.0, -3.0]
        assert len(clock.sleeps) == 2
        assert not result.reached

    def test_camera_without_cooler_ignored(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera(has_cooler=False))

        result = cool([camera], clock)

        assert result.wait.polls == 1
        assert clock.sleeps == []
        assert camera.setpoint_history == []
        assert result.reached

    def test_failing_camera_dropped(self, clock: VirtualClock) -> None:
        broken = connected(BrokenCamera("broken"))
        healthy = connected(FakeCamera("healthy"))

        result = cool([broken, healthy], clock, target=-2.0)

        assert healthy.setpoint_history == [-1.0, -2.0]
        assert result.states[0].failed
        assert result.states[1].target_reached
        assert not result.reached

    def test_cancelled(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera())
        cancel = threading.Event()
        clock.on_sleep.append(lambda c: cancel.set())

        result = cool([camera], clock, cancel=cancel)

        assert result.wait.cancelled
        assert camera.setpoint_history == [-1.0]


class TestWarmUp:
    """Ramping back up to the heat sink temperature."""

    def test_steps_up_to_ambient(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera(ambient=15.0))
        camera.set_ccd_temperature = 12.0
        camera.cooler_on = True
        camera.setpoint_history.clear()

        result = ramp_cameras(
            [("cam", camera)],
            ambient_target,
            CoolDirection.UP,
            power_limit=0.1,
            clock=clock,
            interval=30.0,
            max_steps=100,
        )

        assert camera.setpoint_history == [13.0, 14.0, 15.0]
        assert clock.sleeps == [30.0] * 4
        assert result.reached

    def test_idle_cooler_counts_as_warm(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera(ambient=15.0, power=0.0))
        camera.set_ccd_temperature = 12.0
        camera.cooler_on = True
        camera.setpoint_history.clear()

        ramp_cameras(
            [("cam", camera)],
            ambient_target,
            CoolDirection.UP,
            power_limit=0.1,
            clock=clock,
            interval=30.0,
            max_steps=100,
        )

        assert camera.setpoint_history == []

    def test_unknown_ambient_skipped(self, clock: VirtualClock) -> None:
        camera = connected(FakeCamera())

        result = ramp_cameras(
            [("cam", camera)],
            ambient_target,
            CoolDirection.UP,
            power_limit=0.1,
            clock=clock,
            interval=30.0,
            max_steps=100,
        )

        assert result.states[0].coolable is False
        assert result.reached
        assert clock.sleeps == []
