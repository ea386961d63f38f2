"""Equipment setup: one mount, one guider, one or more telescopes.

A Setup owns every ControllableDevice handed to it and is the unit a
session claims for exclusive use. Disposal is best effort: a device
that fails to shut down never prevents the others from being released.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from astro_sequencer.devices.controllable import (
    Camera,
    ControllableDevice,
    Cover,
    FilterWheel,
    Focuser,
    Guider,
    Mount,
    Switch,
)
from astro_sequencer.devices.identity import DeviceClass
from astro_sequencer.observability import get_logger

logger = get_logger(__name__)


class SetupInUseError(RuntimeError):
    """The setup is already claimed by another session."""


@dataclass(eq=False)
class Telescope:
    """One optical train: a camera plus optional accessories.

    Attributes:
        name: Label used in logs and frame metadata.
        focal_length: Focal length in millimetres.
        camera: Imaging camera (required).
        cover: Dust cover / flat panel.
        focuser: Focuser.
        filter_wheel: Filter wheel.
        switch: Power or dew-heater switch bank.
    """

    name: str
    focal_length: float
    camera: Camera
    cover: Cover | None = None
    focuser: Focuser | None = None
    filter_wheel: FilterWheel | None = None
    switch: Switch | None = None

    def __post_init__(self) -> None:
        if self.focal_length <= 0:
            raise ValueError(f"focal_length must be > 0, got {self.focal_length}")
        _require_kind(self.camera, DeviceClass.CAMERA, f"{self.name} camera")
        for device, kind in (
            (self.cover, DeviceClass.COVER),
            (self.focuser, DeviceClass.FOCUSER),
            (self.filter_wheel, DeviceClass.FILTER_WHEEL),
            (self.switch, DeviceClass.SWITCH),
        ):
            if device is not None:
                _require_kind(device, kind, f"{self.name} {kind.value}")

    def devices(self) -> Iterator[ControllableDevice]:
        """Camera first, then the accessories that are present."""
        yield self.camera
        for device in (self.cover, self.focuser, self.filter_wheel, self.switch):
            if device is not None:
                yield device

    def dispose(self, errors: list[Exception]) -> None:
        """Dispose every device, appending failures to ``errors``."""
        for device in self.devices():
            try:
                device.dispose()
            except Exception as e:
                errors.append(e)


class Setup:
    """Aggregate of the devices one imaging session runs on.

    Args:
        mount: The mount.
        guider: The guiding application.
        telescopes: Optical trains, in exposure order. At least one.

    Raises:
        ValueError: No telescopes, or a device of the wrong kind.
    """

    def __init__(
        self, mount: Mount, guider: Guider, telescopes: Sequence[Telescope]
    ) -> None:
        if not telescopes:
            raise ValueError("A setup needs at least one telescope")
        _require_kind(mount, DeviceClass.MOUNT, "mount")
        _require_kind(guider, DeviceClass.GUIDER, "guider")

        self.mount = mount
        self.guider = guider
        self.telescopes: tuple[Telescope, ...] = tuple(telescopes)
        self._owner: object | None = None
        self._disposed = False
        self._lock = threading.Lock()

    def cameras(self) -> list[Camera]:
        return [t.camera for t in self.telescopes]

    def covers(self) -> list[Cover]:
        return [t.cover for t in self.telescopes if t.cover is not None]

    # -- ownership -----------------------------------------------------------

    @property
    def owner(self) -> object | None:
        return self._owner

    def claim(self, owner: object) -> None:
        """Mark the setup as in use by ``owner``.

        Raises:
            SetupInUseError: Another owner holds the setup.
            RuntimeError: The setup has been disposed.
        """
        with self._lock:
            if self._disposed:
                raise RuntimeError("Setup already disposed")
            if self._owner is not None and self._owner is not owner:
                raise SetupInUseError("Setup is already in use by another session")
            self._owner = owner

    def release(self, owner: object) -> None:
        """Give the setup back. Releasing a setup you do not own is ignored."""
        with self._lock:
            if self._owner is owner:
                self._owner = None

    # -- shutdown ------------------------------------------------------------

    def dispose(self) -> list[Exception]:
        """Dispose all devices: telescopes in order, then guider, then mount.

        Never raises. Subsequent calls return an empty list.

        Returns:
            Every error raised while disposing, in the order encountered.
        """
        with self._lock:
            if self._disposed:
                return []
            self._disposed = True

        errors: list[Exception] = []
        for telescope in self.telescopes:
            telescope.dispose(errors)
        for device in (self.guider, self.mount):
            try:
                device.dispose()
            except Exception as e:
                errors.append(e)

        for error in errors:
            logger.error("Device dispose failed", error=str(error))
        logger.info("Setup disposed", failures=len(errors))
        return errors

    def __enter__(self) -> Setup:
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()


def _require_kind(device: ControllableDevice, kind: DeviceClass, role: str) -> None:
    if device.kind is not kind:
        raise ValueError(f"{role} must be a {kind.value}, got {device.kind.value}")
