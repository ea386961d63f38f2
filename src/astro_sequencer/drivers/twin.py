"""Digital twin drivers for running sessions without hardware.

Every capability contract has a simulated implementation here. Motion
(slews, parking, cover travel, guider settling, exposures) completes
after a configurable number of seconds measured on an injectable time
source, so a session driven by a virtual clock advances the twin
deterministically.

Failure injection switches on DigitalTwinConfig let the same twins
reproduce rejected slews, guiding that never settles, a mount without a
clock or a camera that never finishes reading out.

Example:
    from astro_sequencer.devices.registry import DeviceRegistry
    from astro_sequencer.drivers.twin import register_twin_backend

    registry = DeviceRegistry()
    register_twin_backend(registry)
    mount_id = registry.find_all(DeviceClass.MOUNT)[0]
    mount = registry.instantiate(mount_id)
    mount.connected = True
    mount.slew_async(5.5, -5.4)
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np

from astro_sequencer.devices.identity import DeviceClass, DeviceIdentity
from astro_sequencer.drivers.base import DeviceDriverBase, DriverError
from astro_sequencer.drivers.types import (
    CalibratorStatus,
    CoverStatus,
    Image,
    TrackingSpeed,
)
from astro_sequencer.observability import get_logger

if TYPE_CHECKING:
    from astro_sequencer.devices.registry import DeviceRegistry

logger = get_logger(__name__)

__all__ = [
    "TWIN_BACKEND_KEY",
    "DEFAULT_TWIN_DEVICES",
    "DigitalTwinConfig",
    "DigitalTwinMount",
    "DigitalTwinGuider",
    "DigitalTwinCamera",
    "DigitalTwinCover",
    "DigitalTwinFocuser",
    "DigitalTwinFilterWheel",
    "DigitalTwinSwitch",
    "TwinDeviceSource",
    "register_twin_backend",
]

TWIN_BACKEND_KEY = "twin"

# Timing defaults, seconds of simulated time
DEFAULT_SLEW_SECONDS = 5.0
DEFAULT_PARK_SECONDS = 3.0
DEFAULT_COVER_SECONDS = 4.0
DEFAULT_SETTLE_SECONDS = 12.0
DEFAULT_READOUT_SECONDS = 0.5
DEFAULT_FOCUSER_SPEED = 500.0  # steps/sec

# Synthetic frame defaults
DEFAULT_IMAGE_WIDTH = 640
DEFAULT_IMAGE_HEIGHT = 480
DEFAULT_BIAS_ADU = 500.0
DEFAULT_NOISE_ADU = 12.0
DEFAULT_FILTER_NAMES = ("L", "R", "G", "B", "Ha", "OIII", "SII")

# Thermal model
DEFAULT_AMBIENT_CELSIUS = 15.0
DEFAULT_COOLER_POWER_PER_DEGREE = 2.0  # percent per degree below ambient


def _twin_ids(kind: DeviceClass, *names: str) -> list[DeviceIdentity]:
    return [
        DeviceIdentity(kind, f"twin-{kind.value}-{i}", name, TWIN_BACKEND_KEY)
        for i, name in enumerate(names)
    ]


DEFAULT_TWIN_DEVICES: tuple[DeviceIdentity, ...] = (
    *_twin_ids(DeviceClass.MOUNT, "Twin Mount"),
    *_twin_ids(DeviceClass.GUIDER, "Twin Guider"),
    *_twin_ids(DeviceClass.CAMERA, "Twin Camera A", "Twin Camera B"),
    *_twin_ids(DeviceClass.COVER, "Twin Flat Cover A", "Twin Flat Cover B"),
    *_twin_ids(DeviceClass.FOCUSER, "Twin Focuser"),
    *_twin_ids(DeviceClass.FILTER_WHEEL, "Twin Filter Wheel"),
    *_twin_ids(DeviceClass.SWITCH, "Twin Power Box"),
)


@dataclass
class DigitalTwinConfig:
    """Behaviour of the simulated equipment.

    Attributes:
        slew_seconds: Time for any slew to complete.
        park_seconds: Time for park to complete.
        cover_seconds: Cover travel time in either direction.
        settle_seconds: Guider settle time after guide/dither.
        readout_seconds: Delay after the exposure before image_ready.
        focuser_speed: Focuser steps per second.
        image_width: Synthetic frame width in pixels.
        image_height: Synthetic frame height in pixels.
        bias_adu: Mean level of synthetic frames.
        noise_adu: Gaussian noise sigma of synthetic frames.
        seed: Seed for the frame noise generator.
        mount_has_clock: When False, ``utc_date`` reports None.
        mount_can_set_tracking: Reported tracking capability.
        reject_slews: Refuse every slew request.
        guide_failures: Number of initial guide/dither calls that never
            reach guiding.
        camera_never_ready: Exposures never report image_ready.
        camera_has_cooler: Reported cooler capability.
        ambient_celsius: Heat sink temperature, and the sensor temperature
            while the cooler is off.
        cooler_power_per_degree: Cooler drive in percent per degree the
            setpoint lies below ambient.
        cover_jams: Cover stays MOVING forever after open/close.
        calibrator_present: Whether covers carry a calibrator panel.
        filter_names: Filter wheel slot names.
        switch_count: Number of switches on the power box.
        time_source: Monotonic seconds used for all simulated motion.
    """

    slew_seconds: float = DEFAULT_SLEW_SECONDS
    park_seconds: float = DEFAULT_PARK_SECONDS
    cover_seconds: float = DEFAULT_COVER_SECONDS
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    readout_seconds: float = DEFAULT_READOUT_SECONDS
    focuser_speed: float = DEFAULT_FOCUSER_SPEED

    image_width: int = DEFAULT_IMAGE_WIDTH
    image_height: int = DEFAULT_IMAGE_HEIGHT
    bias_adu: float = DEFAULT_BIAS_ADU
    noise_adu: float = DEFAULT_NOISE_ADU
    seed: int | None = None

    mount_has_clock: bool = True
    mount_can_set_tracking: bool = True
    reject_slews: bool = False
    guide_failures: int = 0
    camera_never_ready: bool = False
    camera_has_cooler: bool = True
    ambient_celsius: float = DEFAULT_AMBIENT_CELSIUS
    cooler_power_per_degree: float = DEFAULT_COOLER_POWER_PER_DEGREE
    cover_jams: bool = False
    calibrator_present: bool = True
    filter_names: Sequence[str] = DEFAULT_FILTER_NAMES
    switch_count: int = 4

    time_source: Callable[[], float] = field(default=time.monotonic, repr=False)


class _Motion:
    """Tracks one timed movement on the twin's time source."""

    def __init__(self, time_source: Callable[[], float]) -> None:
        self._now = time_source
        self._done_at: float | None = None

    def start(self, duration: float) -> None:
        self._done_at = self._now() + max(0.0, duration)

    def cancel(self) -> None:
        self._done_at = None

    @property
    def active(self) -> bool:
        return self._done_at is not None and self._now() < self._done_at

    @property
    def finished(self) -> bool:
        """True once a started movement has run its course."""
        return self._done_at is not None and self._now() >= self._done_at


# =============================================================================
# Mount
# =============================================================================


class DigitalTwinMount(DeviceDriverBase):
    """Simulated GoTo mount with parking and sidereal tracking."""

    CAPABILITY_DEFAULTS = {
        "can_set_tracking": False,
        "can_slew_async": False,
        "can_park": False,
        "can_unpark": False,
    }

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._slew = _Motion(self._config.time_source)
        self._park = _Motion(self._config.time_source)
        self._parked = True
        self._tracking = False
        self._tracking_speed = TrackingSpeed.SIDEREAL
        self.ra = 0.0
        self.dec = 90.0

    def _refresh_capabilities(self) -> None:
        self._caps.update(
            can_set_tracking=self._config.mount_can_set_tracking,
            can_slew_async=True,
            can_park=True,
            can_unpark=True,
        )

    def _disconnect(self) -> None:
        self._slew.cancel()
        self._tracking = False

    @property
    def can_set_tracking(self) -> bool:
        return bool(self._caps["can_set_tracking"])

    @property
    def can_slew_async(self) -> bool:
        return bool(self._caps["can_slew_async"])

    @property
    def can_park(self) -> bool:
        return bool(self._caps["can_park"])

    @property
    def can_unpark(self) -> bool:
        return bool(self._caps["can_unpark"])

    @property
    def at_park(self) -> bool:
        if self._park.finished:
            self._parked = True
            self._park.cancel()
        return self._parked

    @property
    def tracking(self) -> bool:
        return self._tracking

    @tracking.setter
    def tracking(self, value: bool) -> None:
        self._require_connected()
        if value and self._parked:
            raise DriverError(f"{self.name}: cannot track while parked")
        self._tracking = bool(value)

    @property
    def tracking_speed(self) -> TrackingSpeed:
        return self._tracking_speed

    @tracking_speed.setter
    def tracking_speed(self, value: TrackingSpeed) -> None:
        self._require_connected()
        self._tracking_speed = TrackingSpeed(value)

    @property
    def utc_date(self) -> datetime | None:
        if not self._connected or not self._config.mount_has_clock:
            return None
        return datetime.now(UTC)

    def park(self) -> bool:
        self._require_connected()
        if self._parked:
            return True
        self._slew.cancel()
        self._tracking = False
        self._park.start(self._config.park_seconds)
        logger.info("Twin mount parking", device=self.name)
        return True

    def unpark(self) -> bool:
        self._require_connected()
        self._park.cancel()
        self._parked = False
        return True

    def is_slewing(self) -> bool:
        return self._slew.active

    def slew_async(self, ra: float, dec: float) -> bool:
        self._require_connected()
        if self._config.reject_slews or self._parked:
            logger.warning("Twin mount rejected slew", device=self.name, ra=ra, dec=dec)
            return False
        self.ra, self.dec = ra, dec
        self._slew.start(self._config.slew_seconds)
        return True


# =============================================================================
# Guider
# =============================================================================


class DigitalTwinGuider(DeviceDriverBase):
    """Simulated guiding application that settles after a fixed time."""

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._settle = _Motion(self._config.time_source)
        self._equipment_connected = False
        self._will_guide = False
        self._failures_left = self._config.guide_failures
        self.guide_calls: list[tuple[float, float, float]] = []
        self.dither_calls: list[tuple[float, float, float, float]] = []

    def _disconnect(self) -> None:
        self._settle.cancel()
        self._will_guide = False
        self._equipment_connected = False

    def connect_equipment(self) -> bool:
        self._require_connected()
        self._equipment_connected = True
        return True

    def _start_settling(self) -> bool:
        self._require_connected()
        if not self._equipment_connected:
            raise DriverError(f"{self.name}: equipment not connected")
        self._will_guide = self._failures_left <= 0
        if self._failures_left > 0:
            self._failures_left -= 1
        self._settle.start(self._config.settle_seconds)
        return True

    def guide(
        self, settle_pixels: float, settle_time: float, settle_timeout: float
    ) -> bool:
        self.guide_calls.append((settle_pixels, settle_time, settle_timeout))
        return self._start_settling()

    def dither(
        self,
        dither_pixels: float,
        settle_pixels: float,
        settle_time: float,
        settle_timeout: float,
    ) -> bool:
        self.dither_calls.append(
            (dither_pixels, settle_pixels, settle_time, settle_timeout)
        )
        return self._start_settling()

    def is_settling(self) -> bool:
        return self._settle.active

    def is_guiding(self) -> bool:
        return self._will_guide and self._settle.finished

    def stop_capture(self) -> None:
        self._settle.cancel()
        self._will_guide = False


# =============================================================================
# Camera
# =============================================================================


class DigitalTwinCamera(DeviceDriverBase):
    """Simulated cooled camera producing bias-plus-noise frames."""

    CAPABILITY_DEFAULTS = {
        "can_set_cooler_on": False,
        "can_set_ccd_temperature": False,
        "width": 0,
        "height": 0,
    }

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._exposure = _Motion(self._config.time_source)
        self._rng = np.random.default_rng(self._config.seed)
        self._image: Image | None = None
        self._cooler_on = False
        self._setpoint = 0.0
        self._ambient = self._config.ambient_celsius

    def _refresh_capabilities(self) -> None:
        self._caps.update(
            can_set_cooler_on=self._config.camera_has_cooler,
            can_set_ccd_temperature=self._config.camera_has_cooler,
            width=self._config.image_width,
            height=self._config.image_height,
        )

    def _disconnect(self) -> None:
        self._exposure.cancel()
        self._cooler_on = False

    @property
    def can_set_cooler_on(self) -> bool:
        return bool(self._caps["can_set_cooler_on"])

    @property
    def can_set_ccd_temperature(self) -> bool:
        return bool(self._caps["can_set_ccd_temperature"])

    @property
    def cooler_on(self) -> bool:
        return self._cooler_on

    @cooler_on.setter
    def cooler_on(self, value: bool) -> None:
        self._require_connected()
        if value and not self.can_set_cooler_on:
            raise DriverError(f"{self.name}: camera has no cooler")
        self._cooler_on = bool(value)

    @property
    def set_ccd_temperature(self) -> float:
        return self._setpoint

    @set_ccd_temperature.setter
    def set_ccd_temperature(self, value: float) -> None:
        self._require_connected()
        self._setpoint = float(value)

    @property
    def ccd_temperature(self) -> float:
        return self._setpoint if self._cooler_on else self._ambient

    @property
    def heat_sink_temperature(self) -> float:
        return self._ambient if self._config.camera_has_cooler else math.nan

    @property
    def cooler_power(self) -> float:
        if not self._config.camera_has_cooler:
            return math.nan
        if not self._cooler_on:
            return 0.0
        power = (self._ambient - self._setpoint) * self._config.cooler_power_per_degree
        return min(100.0, max(0.0, power))

    @property
    def image_ready(self) -> bool:
        if self._config.camera_never_ready:
            return False
        return self._exposure.finished

    @property
    def image(self) -> Image | None:
        if self.image_ready and self._image is None:
            self._image = self._synthesize()
        return self._image

    def start_exposure(self, duration: float, light: bool = True) -> None:
        self._require_connected()
        if duration < 0:
            raise ValueError(f"Exposure duration must be >= 0, got {duration}")
        self._image = None
        self._exposure.start(duration + self._config.readout_seconds)

    def stop_exposure(self) -> None:
        self._exposure.cancel()

    def _synthesize(self) -> Image:
        cfg = self._config
        frame = self._rng.normal(
            cfg.bias_adu, cfg.noise_adu, size=(cfg.image_height, cfg.image_width)
        )
        return np.clip(frame, 0, 65535).astype(np.uint16)


# =============================================================================
# Cover / calibrator
# =============================================================================


class DigitalTwinCover(DeviceDriverBase):
    """Simulated motorized flat cover with an optional light panel."""

    CAPABILITY_DEFAULTS = {"max_brightness": 0, "has_calibrator": False}

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._travel = _Motion(self._config.time_source)
        self._resting = CoverStatus.CLOSED
        self._target = CoverStatus.CLOSED
        self._brightness = 0

    def _refresh_capabilities(self) -> None:
        present = self._config.calibrator_present
        self._caps.update(max_brightness=255 if present else 0, has_calibrator=present)

    @property
    def cover_state(self) -> CoverStatus:
        if not self._connected:
            return CoverStatus.UNKNOWN
        if self._travel.active or (self._config.cover_jams and self._travel.finished):
            return CoverStatus.MOVING
        if self._travel.finished:
            self._resting = self._target
            self._travel.cancel()
        return self._resting

    @property
    def calibrator_state(self) -> CalibratorStatus:
        if not self._caps["has_calibrator"]:
            return CalibratorStatus.NOT_PRESENT
        return CalibratorStatus.READY if self._brightness else CalibratorStatus.OFF

    @property
    def max_brightness(self) -> int:
        return int(self._caps["max_brightness"])

    @property
    def brightness(self) -> int:
        return self._brightness

    @brightness.setter
    def brightness(self, value: int) -> None:
        self._require_connected()
        if not 0 <= value <= max(self.max_brightness, 0):
            raise ValueError(f"Brightness {value} outside 0..{self.max_brightness}")
        self._brightness = int(value)

    def calibrator_off(self) -> bool:
        self._require_connected()
        self._brightness = 0
        return True

    def _move(self, target: CoverStatus) -> bool:
        self._require_connected()
        if self.cover_state == target:
            return True
        self._target = target
        self._travel.start(self._config.cover_seconds)
        return True

    def open(self) -> bool:
        return self._move(CoverStatus.OPEN)

    def close_cover(self) -> bool:
        return self._move(CoverStatus.CLOSED)


# =============================================================================
# Focuser, filter wheel, switch
# =============================================================================


class DigitalTwinFocuser(DeviceDriverBase):
    """Simulated absolute focuser."""

    CAPABILITY_DEFAULTS = {"max_step": 0}

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._travel = _Motion(self._config.time_source)
        self._position = 25_000
        self._target = self._position

    def _refresh_capabilities(self) -> None:
        self._caps["max_step"] = 50_000

    @property
    def max_step(self) -> int:
        return int(self._caps["max_step"])

    @property
    def is_moving(self) -> bool:
        return self._travel.active

    @property
    def position(self) -> int:
        if self._travel.finished:
            self._position = self._target
            self._travel.cancel()
        return self._position

    def move(self, position: int) -> bool:
        self._require_connected()
        if not 0 <= position <= self.max_step:
            return False
        self._target = position
        steps = abs(position - self.position)
        self._travel.start(steps / self._config.focuser_speed)
        return True

    def halt(self) -> None:
        self._travel.cancel()
        self._target = self._position


class DigitalTwinFilterWheel(DeviceDriverBase):
    """Simulated filter wheel that changes slot instantly."""

    CAPABILITY_DEFAULTS = {"slots": 0}

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._position = 0

    def _refresh_capabilities(self) -> None:
        self._caps["slots"] = len(self._config.filter_names)

    @property
    def names(self) -> Sequence[str]:
        return tuple(self._config.filter_names) if self._connected else ()

    @property
    def position(self) -> int:
        return self._position

    def set_position(self, index: int) -> bool:
        self._require_connected()
        if not 0 <= index < self._caps["slots"]:
            return False
        self._position = index
        return True


class DigitalTwinSwitch(DeviceDriverBase):
    """Simulated power box."""

    CAPABILITY_DEFAULTS = {"max_switch": 0}

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        super().__init__(name)
        self._config = config or DigitalTwinConfig()
        self._states = [False] * self._config.switch_count

    def _refresh_capabilities(self) -> None:
        self._caps["max_switch"] = self._config.switch_count

    @property
    def max_switch(self) -> int:
        return int(self._caps["max_switch"])

    def get_switch(self, index: int) -> bool:
        self._require_connected()
        return self._states[index]

    def set_switch(self, index: int, state: bool) -> None:
        self._require_connected()
        self._states[index] = bool(state)


# =============================================================================
# Backend registration
# =============================================================================

_TWIN_CLASSES: dict[DeviceClass, type[DeviceDriverBase]] = {
    DeviceClass.MOUNT: DigitalTwinMount,
    DeviceClass.GUIDER: DigitalTwinGuider,
    DeviceClass.CAMERA: DigitalTwinCamera,
    DeviceClass.COVER: DigitalTwinCover,
    DeviceClass.FOCUSER: DigitalTwinFocuser,
    DeviceClass.FILTER_WHEEL: DigitalTwinFilterWheel,
    DeviceClass.SWITCH: DigitalTwinSwitch,
}


class TwinDeviceSource:
    """Enumerates the simulated devices a twin backend can serve."""

    backend_key = TWIN_BACKEND_KEY

    def __init__(self, devices: Iterable[DeviceIdentity] = DEFAULT_TWIN_DEVICES):
        self._devices = tuple(devices)

    def enumerate_devices(self) -> list[DeviceIdentity]:
        return list(self._devices)

    def accepts(self, identity: DeviceIdentity) -> bool:
        return identity in self._devices


def register_twin_backend(
    registry: DeviceRegistry,
    config: DigitalTwinConfig | None = None,
    devices: Iterable[DeviceIdentity] = DEFAULT_TWIN_DEVICES,
) -> TwinDeviceSource:
    """Register twin factories and the twin device source on ``registry``.

    The factories refuse (return None for) identities the source did not
    enumerate, matching how a real backend rejects unknown ids.

    Args:
        registry: A DeviceRegistry.
        config: Shared behaviour of all twins created by the factories.
        devices: Identities the twin backend serves.

    Returns:
        The registered device source.
    """
    config = config or DigitalTwinConfig()
    source = TwinDeviceSource(devices)

    def make_factory(
        driver_cls: type[DeviceDriverBase],
    ) -> Callable[[DeviceIdentity], DeviceDriverBase | None]:
        def factory(identity: DeviceIdentity) -> DeviceDriverBase | None:
            if not source.accepts(identity):
                return None
            return driver_cls(identity.label, config)  # type: ignore[call-arg]

        return factory

    for kind, driver_cls in _TWIN_CLASSES.items():
        registry.register_backend(TWIN_BACKEND_KEY, kind, make_factory(driver_cls))
    registry.register_source(source)
    return source
