"""Scripted fake drivers and a virtual clock for engine tests.

The fakes build on DeviceDriverBase so they get the real connection
lifecycle, and record every call the engine makes so tests can assert
on ordering and counts.

Example:
    from tests.fakes import FakeCamera, FakeGuider, FakeMount, build_setup

    clock = VirtualClock()
    mount = FakeMount(slew_polls=3)
    setup, registry = build_setup(mount=mount, cameras=[FakeCamera()])
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import numpy as np

from astro_sequencer.devices import (
    ControllableDevice,
    DeviceClass,
    DeviceIdentity,
    DeviceRegistry,
    Setup,
    Telescope,
)
from astro_sequencer.drivers import (
    CalibratorStatus,
    CoverStatus,
    DeviceDriverBase,
    DriverError,
    TrackingSpeed,
)

FAKE_BACKEND = "fake"
SESSION_START = datetime(2026, 10, 19, 21, 0, tzinfo=UTC)


class VirtualClock:
    """Clock whose time only moves when something sleeps."""

    def __init__(self, start: datetime = SESSION_START) -> None:
        self._start = start
        self._elapsed = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: list[Callable[[VirtualClock], None]] = []

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        self.sleeps.append(seconds)
        if cancel is not None and cancel.is_set():
            return False
        self._elapsed += max(0.0, seconds)
        for hook in list(self.on_sleep):
            hook(self)
        return not (cancel is not None and cancel.is_set())

    def advance(self, seconds: float) -> None:
        self._elapsed += seconds


class FakeDriver(DeviceDriverBase):
    """Common knobs: refuse to connect, fail on close or disconnect."""

    def __init__(
        self,
        name: str,
        *,
        fail_connect: bool = False,
        fail_disconnect: bool = False,
        fail_close: bool = False,
    ) -> None:
        super().__init__(name)
        self.fail_connect = fail_connect
        self.fail_disconnect = fail_disconnect
        self.fail_close = fail_close
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.close_calls = 0
        self.events: list[str] = []

    def _connect(self) -> None:
        self.connect_calls += 1
        self.events.append("connect")
        if self.fail_connect:
            raise DriverError(f"{self.name}: connection refused")

    def _disconnect(self) -> None:
        self.disconnect_calls += 1
        self.events.append("disconnect")
        if self.fail_disconnect:
            raise DriverError(f"{self.name}: disconnect failed")

    def _release(self) -> None:
        self.close_calls += 1
        self.events.append("close")
        if self.fail_close:
            raise DriverError(f"{self.name}: close failed")


class FakeMount(FakeDriver):
    CAPABILITY_DEFAULTS = {
        "can_set_tracking": False,
        "can_slew_async": False,
        "can_park": False,
        "can_unpark": False,
    }

    def __init__(
        self,
        name: str = "Fake Mount",
        *,
        accept_slews: Sequence[bool] | bool = True,
        slew_polls: int = 2,
        slew_forever: bool = False,
        slew_poll_raises: bool = False,
        utc: datetime | None | Exception = SESSION_START,
        parked: bool = False,
        park_polls: int = 2,
        can_set_tracking: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self._accept = accept_slews
        self.slew_polls = slew_polls
        self.slew_forever = slew_forever
        self.slew_poll_raises = slew_poll_raises
        self.utc = utc
        self._parked = parked
        self.park_polls = park_polls
        self._park_countdown: int | None = None
        self._can_set_tracking = can_set_tracking
        self._slewing_left = 0
        self._tracking = False
        self._speed = TrackingSpeed.NONE
        self.slews: list[tuple[float, float]] = []
        self.is_slewing_calls = 0
        self.tracking_history: list[bool] = []
        self.park_calls = 0
        self.unpark_calls = 0

    def _refresh_capabilities(self) -> None:
        self._caps.update(
            can_set_tracking=self._can_set_tracking,
            can_slew_async=True,
            can_park=True,
            can_unpark=True,
        )

    @property
    def can_set_tracking(self) -> bool:
        return self._caps["can_set_tracking"]

    @property
    def can_slew_async(self) -> bool:
        return self._caps["can_slew_async"]

    @property
    def can_park(self) -> bool:
        return self._caps["can_park"]

    @property
    def can_unpark(self) -> bool:
        return self._caps["can_unpark"]

    @property
    def at_park(self) -> bool:
        if self._park_countdown is not None:
            self._park_countdown -= 1
            if self._park_countdown <= 0:
                self._parked = True
                self._park_countdown = None
        return self._parked

    @property
    def tracking(self) -> bool:
        return self._tracking

    @tracking.setter
    def tracking(self, value: bool) -> None:
        self.tracking_history.append(value)
        self.events.append(f"tracking={value}")
        self._tracking = value

    @property
    def tracking_speed(self) -> TrackingSpeed:
        return self._speed

    @tracking_speed.setter
    def tracking_speed(self, value: TrackingSpeed) -> None:
        self._speed = value

    @property
    def utc_date(self) -> datetime | None:
        if isinstance(self.utc, Exception):
            raise self.utc
        return self.utc

    def park(self) -> bool:
        self.park_calls += 1
        self.events.append("park")
        self._park_countdown = self.park_polls
        return True

    def unpark(self) -> bool:
        self.unpark_calls += 1
        self._parked = False
        return True

    def is_slewing(self) -> bool:
        self.is_slewing_calls += 1
        if self.slew_poll_raises:
            raise DriverError("mount stopped responding")
        if self.slew_forever:
            return True
        if self._slewing_left > 0:
            self._slewing_left -= 1
            return True
        return False

    def slew_async(self, ra: float, dec: float) -> bool:
        accept = self._accept
        if not isinstance(accept, bool):
            accept = accept[len(self.slews)] if len(self.slews) < len(accept) else True
        self.slews.append((ra, dec))
        if accept:
            self._slewing_left = self.slew_polls
        return accept


class FakeGuider(FakeDriver):
    """Each guide() call consumes one entry of ``outcomes``.

    An outcome is True (guiding after settling), False (settles but is
    not guiding), "timeout" (never stops settling) or an exception to
    raise from guide().
    """

    def __init__(
        self,
        name: str = "Fake Guider",
        *,
        outcomes: Sequence[Any] = (),
        settle_polls: int = 1,
        equipment_ok: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.outcomes = list(outcomes)
        self.settle_polls = settle_polls
        self.equipment_ok = equipment_ok
        self.guide_calls: list[tuple[float, float, float]] = []
        self.dither_calls: list[tuple[float, float, float, float]] = []
        self.stop_capture_calls = 0
        self._settling_left = 0
        self._current: Any = None

    def connect_equipment(self) -> bool:
        self.events.append("connect_equipment")
        return self.equipment_ok

    def _begin(self) -> bool:
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        self._current = outcome
        self._settling_left = self.settle_polls
        return True

    def guide(self, settle_pixels: float, settle_time: float, settle_timeout: float):
        self.guide_calls.append((settle_pixels, settle_time, settle_timeout))
        return self._begin()

    def dither(self, dither_pixels, settle_pixels, settle_time, settle_timeout):
        self.dither_calls.append(
            (dither_pixels, settle_pixels, settle_time, settle_timeout)
        )
        return self._begin()

    def is_settling(self) -> bool:
        if self._current == "timeout":
            return True
        if self._settling_left > 0:
            self._settling_left -= 1
            return True
        return False

    def is_guiding(self) -> bool:
        return self._current is True

    def stop_capture(self) -> None:
        self.stop_capture_calls += 1
        self.events.append("stop_capture")
        self._current = None


class FakeCamera(FakeDriver):
    CAPABILITY_DEFAULTS = {"can_set_cooler_on": False, "can_set_ccd_temperature": False}

    def __init__(
        self,
        name: str = "Fake Camera",
        *,
        ready_after_polls: int = 1,
        never_ready: bool = False,
        start_raises: Exception | None = None,
        has_cooler: bool = True,
        ambient: float | None = None,
        power: float = math.nan,
        shape: tuple[int, int] = (8, 12),
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.ready_after_polls = ready_after_polls
        self.never_ready = never_ready
        self.start_raises = start_raises
        self._has_cooler = has_cooler
        self.ambient = ambient
        self.power = power
        self.shape = shape
        self.exposures: list[tuple[float, bool]] = []
        self.stop_exposure_calls = 0
        self.cooler_history: list[bool] = []
        self.setpoint_history: list[float] = []
        self._cooler = False
        self._setpoint = 0.0
        self._ready_polls_left = 0
        self._exposing = False

    def _refresh_capabilities(self) -> None:
        self._caps.update(
            can_set_cooler_on=self._has_cooler,
            can_set_ccd_temperature=self._has_cooler,
        )

    @property
    def can_set_cooler_on(self) -> bool:
        return self._caps["can_set_cooler_on"]

    @property
    def can_set_ccd_temperature(self) -> bool:
        return self._caps["can_set_ccd_temperature"]

    @property
    def cooler_on(self) -> bool:
        return self._cooler

    @cooler_on.setter
    def cooler_on(self, value: bool) -> None:
        self.cooler_history.append(value)
        self.events.append(f"cooler={value}")
        self._cooler = value

    @property
    def set_ccd_temperature(self) -> float:
        return self._setpoint

    @set_ccd_temperature.setter
    def set_ccd_temperature(self, value: float) -> None:
        self.setpoint_history.append(value)
        self._setpoint = value

    @property
    def ccd_temperature(self) -> float:
        if not self._cooler and self.ambient is not None:
            return self.ambient
        return self._setpoint

    @property
    def heat_sink_temperature(self) -> float:
        return math.nan if self.ambient is None else self.ambient

    @property
    def cooler_power(self) -> float:
        return self.power

    @property
    def image_ready(self) -> bool:
        if self.never_ready or not self._exposing:
            return False
        self._ready_polls_left -= 1
        return self._ready_polls_left <= 0

    @property
    def image(self) -> np.ndarray | None:
        if not self._exposing or self._ready_polls_left > 0:
            return None
        seed = len(self.exposures)
        return np.full(self.shape, seed, dtype=np.uint16)

    def start_exposure(self, duration: float, light: bool = True) -> None:
        self.events.append("start_exposure")
        if self.start_raises is not None:
            raise self.start_raises
        self.exposures.append((duration, light))
        self._exposing = True
        self._ready_polls_left = self.ready_after_polls

    def stop_exposure(self) -> None:
        self.stop_exposure_calls += 1
        self._exposing = False


class FakeCover(FakeDriver):
    CAPABILITY_DEFAULTS = {"max_brightness": 0}

    def __init__(
        self,
        name: str = "Fake Cover",
        *,
        travel_polls: int = 2,
        jams: bool = False,
        calibrator: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.travel_polls = travel_polls
        self.jams = jams
        self.calibrator = calibrator
        self._state = CoverStatus.CLOSED
        self._target = CoverStatus.CLOSED
        self._travel_left = 0
        self._brightness = 10
        self.calibrator_off_calls = 0
        self.open_calls = 0
        self.close_cover_calls = 0

    def _refresh_capabilities(self) -> None:
        self._caps["max_brightness"] = 255 if self.calibrator else 0

    @property
    def cover_state(self) -> CoverStatus:
        if self._travel_left > 0 or self.jams and self._target is not self._state:
            self._travel_left -= 1
            if self._travel_left <= 0 and not self.jams:
                self._state = self._target
            return CoverStatus.MOVING
        return self._state

    @property
    def calibrator_state(self) -> CalibratorStatus:
        if not self.calibrator:
            return CalibratorStatus.NOT_PRESENT
        return CalibratorStatus.READY if self._brightness else CalibratorStatus.OFF

    @property
    def max_brightness(self) -> int:
        return self._caps["max_brightness"]

    @property
    def brightness(self) -> int:
        return self._brightness

    @brightness.setter
    def brightness(self, value: int) -> None:
        self._brightness = value

    def calibrator_off(self) -> bool:
        self.calibrator_off_calls += 1
        self.events.append("calibrator_off")
        self._brightness = 0
        return True

    def open(self) -> bool:
        self.open_calls += 1
        self.events.append("open")
        self._target = CoverStatus.OPEN
        self._travel_left = self.travel_polls
        return True

    def close_cover(self) -> bool:
        self.close_cover_calls += 1
        self.events.append("close_cover")
        self._target = CoverStatus.CLOSED
        self._travel_left = self.travel_polls
        return True


def fake_identity(kind: DeviceClass, backend_id: str) -> DeviceIdentity:
    return DeviceIdentity(kind, backend_id, backend_id, FAKE_BACKEND)


class FakeBackend:
    """Serves pre-built fake drivers to a registry by backend id."""

    backend_key = FAKE_BACKEND

    def __init__(self) -> None:
        self.drivers: dict[DeviceIdentity, Any] = {}
        self.factory_calls: list[DeviceIdentity] = []

    def add(self, kind: DeviceClass, backend_id: str, driver: Any) -> DeviceIdentity:
        identity = fake_identity(kind, backend_id)
        self.drivers[identity] = driver
        return identity

    def enumerate_devices(self) -> list[DeviceIdentity]:
        return list(self.drivers)

    def factory(self, identity: DeviceIdentity) -> Any:
        self.factory_calls.append(identity)
        return self.drivers.get(identity)

    def install(self, registry: DeviceRegistry) -> None:
        for kind in DeviceClass:
            if kind is not DeviceClass.NONE:
                registry.register_backend(FAKE_BACKEND, kind, self.factory)
        registry.register_source(self)


def build_setup(
    *,
    mount: FakeMount | None = None,
    guider: FakeGuider | None = None,
    cameras: Sequence[FakeCamera] = (),
    covers: Sequence[FakeCover | None] = (),
) -> tuple[Setup, DeviceRegistry]:
    """Wire fakes into a registry and wrap them in a Setup.

    Covers are matched to cameras by position; pass None to leave a
    telescope without a cover.
    """
    backend = FakeBackend()
    registry = DeviceRegistry()
    backend.install(registry)

    mount_id = backend.add(DeviceClass.MOUNT, "mount", mount or FakeMount())
    guider_id = backend.add(DeviceClass.GUIDER, "guider", guider or FakeGuider())
    cameras = list(cameras) or [FakeCamera()]

    telescopes = []
    for i, camera in enumerate(cameras):
        camera_id = backend.add(DeviceClass.CAMERA, f"camera-{i}", camera)
        cover = covers[i] if i < len(covers) else None
        cover_device = None
        if cover is not None:
            cover_id = backend.add(DeviceClass.COVER, f"cover-{i}", cover)
            cover_device = ControllableDevice(cover_id, registry)
        telescopes.append(
            Telescope(
                name=f"scope-{i}",
                focal_length=400.0 + 100 * i,
                camera=ControllableDevice(camera_id, registry),
                cover=cover_device,
            )
        )

    setup = Setup(
        mount=ControllableDevice(mount_id, registry),
        guider=ControllableDevice(guider_id, registry),
        telescopes=telescopes,
    )
    return setup, registry


class RecordingWriter:
    """FrameWriter that keeps frames in memory, optionally failing."""

    def __init__(self, fail_on: Sequence[int] = ()) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail_on = set(fail_on)
        self.calls = 0

    def write_frame(self, image, *, target, timestamp, folder, frame_index,
                    telescope, metadata=None):
        self.calls += 1
        if self.calls in self.fail_on:
            raise OSError("disk full")
        record = {
            "image": image,
            "target": target,
            "timestamp": timestamp,
            "folder": folder,
            "frame_index": frame_index,
            "telescope": telescope,
            "metadata": dict(metadata or {}),
        }
        self.frames.append(record)
        return folder / f"{telescope}_{frame_index:04d}.fake"
