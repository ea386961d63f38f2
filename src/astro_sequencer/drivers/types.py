"""Driver capability contracts and shared enums.

One runtime-checkable Protocol per device class. Backends (the digital
twin in this package, or external adapters for vendor automation
layers) implement these; everything above the driver layer codes only
against them.

Types defined here:
- TrackingSpeed, CoverStatus, CalibratorStatus: enums reported by drivers
- ConnectionListener: callback signature for connection changes
- DeviceDriver: lifecycle common to every driver
- MountDriver, GuiderDriver, CameraDriver, CoverDriver, FocuserDriver,
  FilterWheelDriver, SwitchDriver: per-class capability contracts

Capability fields (``can_*``, ``max_*``, ...) are only meaningful while
connected. Before the first connect and after a disconnect they read as
zero values (False, 0, None).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray


class TrackingSpeed(Enum):
    """Mount tracking rates."""

    NONE = "none"
    SIDEREAL = "sidereal"
    LUNAR = "lunar"
    SOLAR = "solar"
    KING = "king"


class CoverStatus(Enum):
    """State of a telescope dust cover."""

    NOT_PRESENT = "not_present"
    CLOSED = "closed"
    MOVING = "moving"
    OPEN = "open"
    UNKNOWN = "unknown"
    ERROR = "error"


class CalibratorStatus(Enum):
    """State of a flat-field calibrator panel."""

    NOT_PRESENT = "not_present"
    OFF = "off"
    NOT_READY = "not_ready"
    READY = "ready"
    UNKNOWN = "unknown"
    ERROR = "error"


ConnectionListener = Callable[[bool], None]
"""Called with the new ``connected`` value after every actual transition."""

Image = NDArray[np.generic]


@runtime_checkable
class DeviceDriver(Protocol):  # pragma: no cover
    """Lifecycle shared by all drivers.

    Setting ``connected`` performs the backend connect/disconnect. A
    successful connect populates the capability fields before listeners
    are notified. ``close`` releases the backend handle; it must be
    safe to call once after a disconnect.
    """

    @property
    def name(self) -> str:
        """Backend-reported device name."""
        ...

    @property
    def connected(self) -> bool:
        """Whether the backend link is up."""
        ...

    @connected.setter
    def connected(self, value: bool) -> None: ...

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        """Subscribe to connection changes."""
        ...

    def remove_connection_listener(self, listener: ConnectionListener) -> None:
        """Unsubscribe; unknown listeners are ignored."""
        ...

    def capabilities(self) -> dict[str, Any]:
        """Snapshot of the capability fields for logging and display."""
        ...

    def close(self) -> None:
        """Release the backend handle."""
        ...


@runtime_checkable
class MountDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Equatorial mount.

    Business context: the mount points the optical train at each target
    and keeps it there. ``utc_date`` doubles as the session's time
    reference for frame timestamps, so a mount that cannot report it
    makes further imaging pointless.
    """

    @property
    def can_set_tracking(self) -> bool: ...

    @property
    def can_slew_async(self) -> bool: ...

    @property
    def can_park(self) -> bool: ...

    @property
    def can_unpark(self) -> bool: ...

    @property
    def at_park(self) -> bool: ...

    @property
    def tracking(self) -> bool: ...

    @tracking.setter
    def tracking(self, value: bool) -> None: ...

    @property
    def tracking_speed(self) -> TrackingSpeed: ...

    @tracking_speed.setter
    def tracking_speed(self, value: TrackingSpeed) -> None: ...

    @property
    def utc_date(self) -> datetime | None:
        """Mount clock in UTC, or None when the mount has no clock."""
        ...

    def park(self) -> bool:
        """Start parking; returns False when the request is refused."""
        ...

    def unpark(self) -> bool: ...

    def is_slewing(self) -> bool: ...

    def slew_async(self, ra: float, dec: float) -> bool:
        """Begin a slew to J2000 ``ra`` hours / ``dec`` degrees.

        Returns:
            True when the slew was accepted. Completion is observed by
            polling :meth:`is_slewing`.
        """
        ...


@runtime_checkable
class GuiderDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Autoguiding application link.

    ``guide`` and ``dither`` only start the operation; progress is
    observed through ``is_settling`` and ``is_guiding``.
    """

    def connect_equipment(self) -> bool:
        """Ask the guider to connect its own camera and mount link."""
        ...

    def guide(
        self, settle_pixels: float, settle_time: float, settle_timeout: float
    ) -> bool: ...

    def dither(
        self,
        dither_pixels: float,
        settle_pixels: float,
        settle_time: float,
        settle_timeout: float,
    ) -> bool: ...

    def is_settling(self) -> bool: ...

    def is_guiding(self) -> bool: ...

    def stop_capture(self) -> None:
        """Stop looping and guiding. Calling it while idle is a no-op."""
        ...


@runtime_checkable
class CameraDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Imaging camera."""

    @property
    def image_ready(self) -> bool: ...

    @property
    def image(self) -> Image | None:
        """Last completed frame as a 2-D array, or None."""
        ...

    @property
    def can_set_cooler_on(self) -> bool: ...

    @property
    def can_set_ccd_temperature(self) -> bool: ...

    @property
    def cooler_on(self) -> bool: ...

    @cooler_on.setter
    def cooler_on(self, value: bool) -> None: ...

    @property
    def set_ccd_temperature(self) -> float: ...

    @set_ccd_temperature.setter
    def set_ccd_temperature(self, value: float) -> None: ...

    @property
    def ccd_temperature(self) -> float: ...

    @property
    def heat_sink_temperature(self) -> float:
        """Heat sink (ambient) Celsius, NaN when the camera cannot tell."""
        ...

    @property
    def cooler_power(self) -> float:
        """Cooler drive in percent, NaN when not reported."""
        ...

    def start_exposure(self, duration: float, light: bool = True) -> None: ...

    def stop_exposure(self) -> None: ...


@runtime_checkable
class CoverDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Motorized dust cover, optionally with a calibrator panel."""

    @property
    def cover_state(self) -> CoverStatus: ...

    @property
    def calibrator_state(self) -> CalibratorStatus: ...

    @property
    def max_brightness(self) -> int: ...

    @property
    def brightness(self) -> int: ...

    @brightness.setter
    def brightness(self, value: int) -> None: ...

    def open(self) -> bool: ...

    def close_cover(self) -> bool: ...

    def calibrator_off(self) -> bool: ...


@runtime_checkable
class FocuserDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Absolute focuser."""

    @property
    def position(self) -> int: ...

    @property
    def max_step(self) -> int: ...

    @property
    def is_moving(self) -> bool: ...

    def move(self, position: int) -> bool: ...

    def halt(self) -> None: ...


@runtime_checkable
class FilterWheelDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Filter wheel. Position -1 means moving."""

    @property
    def position(self) -> int: ...

    @property
    def names(self) -> Sequence[str]: ...

    def set_position(self, index: int) -> bool: ...


@runtime_checkable
class SwitchDriver(DeviceDriver, Protocol):  # pragma: no cover
    """Bank of boolean power or dew-heater switches."""

    @property
    def max_switch(self) -> int: ...

    def get_switch(self, index: int) -> bool: ...

    def set_switch(self, index: int, state: bool) -> None: ...

