"""Stepwise cooler ramps.

Cooled sensors are taken to their setpoint one degree at a time and
brought back to ambient the same way at the end of the night, so the
sensor never sees a sudden temperature swing.

Every check of :func:`ramp_cameras` moves each camera's setpoint one
whole degree towards its target, unless the cooler is already at its
power limit for that direction. A camera stops ramping once it has been
found at its target (or at the power limit) on SETTLED_CHECKS checks in
a row. Checks are spaced by the ramp interval on the session clock and
bounded by ``max_steps``.

Cameras without cooler control, without a plausible sensor reading, or
without a target temperature are left alone.

Example:
    result = ramp_cameras(
        [("Redcat", camera)],
        lambda camera: -10.0,
        CoolDirection.DOWN,
        power_limit=80.0,
        clock=SystemClock(),
        interval=20.0,
        max_steps=100,
    )
    if not result.reached:
        ...
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from astro_sequencer.drivers.types import CameraDriver
from astro_sequencer.observability import get_logger
from astro_sequencer.sequencing.clock import Clock
from astro_sequencer.sequencing.waiting import WaitResult, wait_until

logger = get_logger(__name__)

# Consecutive checks at the target before a camera stops ramping
SETTLED_CHECKS = 2

# Sensor readings outside this range are treated as missing
MIN_PLAUSIBLE_CELSIUS = -40.0
MAX_PLAUSIBLE_CELSIUS = 50.0

TargetFn = Callable[[CameraDriver], float | None]


class CoolDirection(Enum):
    """Which way a ramp moves the setpoint."""

    DOWN = "down"
    UP = "up"

    def next_setpoint(self, ccd: float, target: float) -> float:
        """One whole degree from ``ccd`` towards ``target``, never past it."""
        if self is CoolDirection.DOWN:
            return max(float(round(ccd - 1)), target)
        return min(float(round(ccd + 1)), target)

    def needs_ramping(self, ccd: float, target: float) -> bool:
        if self is CoolDirection.DOWN:
            return ccd > target
        return ccd < target

    def power_limit_reached(self, power: float, limit: float) -> bool:
        # cooling works harder the colder it goes, warming ends when idle
        if self is CoolDirection.DOWN:
            return power >= limit
        return power <= limit


@dataclass(frozen=True)
class CoolingState:
    """Progress of one camera through a ramp."""

    ramping: bool = True
    settled_checks: int = 0
    target_reached: bool = False
    coolable: bool = True
    failed: bool = False

    @property
    def finished(self) -> bool:
        return not self.coolable or self.failed


@dataclass(frozen=True)
class RampResult:
    """How the ramp's bounded wait ended and where each camera got to."""

    wait: WaitResult
    states: tuple[CoolingState, ...]

    @property
    def reached(self) -> bool:
        """Every coolable camera ended at its target temperature."""
        return all(
            not s.failed and (s.target_reached or not s.coolable) for s in self.states
        )


def plausible(celsius: float | None) -> bool:
    return (
        celsius is not None
        and not math.isnan(celsius)
        and MIN_PLAUSIBLE_CELSIUS <= celsius <= MAX_PLAUSIBLE_CELSIUS
    )


def ambient_target(camera: CameraDriver) -> float | None:
    """Heat sink temperature as the warm-up target, None when unknown."""
    heat_sink = camera.heat_sink_temperature
    return heat_sink if plausible(heat_sink) else None


def _cooler_power(name: str, camera: CameraDriver) -> float:
    try:
        return float(camera.cooler_power)
    except Exception as e:
        logger.debug("Cooler power unavailable", camera=name, error=str(e))
        return math.nan


def cool_step(
    name: str,
    camera: CameraDriver,
    target: float | None,
    direction: CoolDirection,
    power_limit: float,
    state: CoolingState,
) -> CoolingState:
    """Run one ramp check on one camera and return its new state.

    The cooler is switched on when a step is needed and it is off.
    Exceptions from the driver propagate.
    """
    if not (camera.can_set_cooler_on and camera.can_set_ccd_temperature):
        logger.debug("Camera has no cooler control", camera=name)
        return CoolingState(ramping=False, coolable=False)

    ccd = camera.ccd_temperature
    if target is None or not plausible(ccd):
        logger.warning(
            "Cooler ramp skipped, no usable temperature",
            camera=name,
            ccd=ccd,
            target=target,
        )
        return CoolingState(ramping=False, coolable=False)

    power = _cooler_power(name, camera)
    needs_step = direction.needs_ramping(ccd, target)
    if needs_step and (
        math.isnan(power)
        or not camera.cooler_on
        or not direction.power_limit_reached(power, power_limit)
    ):
        setpoint = direction.next_setpoint(ccd, target)
        camera.set_ccd_temperature = setpoint
        switched_on = not camera.cooler_on
        if switched_on:
            camera.cooler_on = True
        logger.info(
            "Cooler setpoint stepped",
            camera=name,
            direction=direction.value,
            setpoint=setpoint,
            target=target,
            ccd=ccd,
            power=power,
            switched_on=switched_on,
        )
        return CoolingState(ramping=True)

    checks = state.settled_checks + 1
    logger.info(
        "Cooler holding",
        camera=name,
        target=target,
        ccd=ccd,
        power=power,
        checks=checks,
    )
    return CoolingState(
        ramping=checks < SETTLED_CHECKS,
        settled_checks=checks,
        target_reached=not needs_step,
    )


def ramp_cameras(
    cameras: Sequence[tuple[str, CameraDriver]],
    target: TargetFn,
    direction: CoolDirection,
    *,
    power_limit: float,
    clock: Clock,
    interval: float,
    max_steps: int,
    cancel: threading.Event | None = None,
) -> RampResult:
    """Step every camera towards its target until all have settled.

    A camera whose driver raises is logged and dropped from the ramp;
    the others carry on.

    Args:
        cameras: ``(name, driver)`` pairs, connected.
        target: Target Celsius for a camera, None to leave it alone.
        direction: DOWN to cool, UP to warm.
        power_limit: Cooler percent at which stepping stops.
        clock: Time source for the pause between checks.
        interval: Seconds between checks.
        max_steps: Maximum number of checks.
        cancel: Stops the ramp as soon as it is set.

    Returns:
        RampResult with the wait outcome and per-camera states.
    """
    states = [CoolingState() for _ in cameras]

    def check() -> bool:
        for i, (name, camera) in enumerate(cameras):
            if states[i].finished:
                continue
            try:
                states[i] = cool_step(
                    name, camera, target(camera), direction, power_limit, states[i]
                )
            except Exception as e:
                logger.warning("Cooler ramp failed", camera=name, error=str(e))
                states[i] = CoolingState(ramping=False, failed=True)
        return not any(s.ramping for s in states)

    waited = wait_until(
        check,
        clock=clock,
        poll_interval=interval,
        max_polls=max_steps,
        cancel=cancel,
    )
    result = RampResult(waited, tuple(states))
    logger.info(
        "Cooler ramp ended",
        direction=direction.value,
        outcome=waited.outcome.value,
        checks=waited.polls,
        reached=result.reached,
    )
    return result
