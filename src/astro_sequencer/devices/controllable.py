"""Lifecycle wrapper binding a device identity to its live driver.

ControllableDevice is the only way the rest of the package touches a
driver's lifecycle. It guarantees:

- the driver is created exactly once, at construction, and construction
  fails fast when the backend cannot serve the identity;
- a capability snapshot refreshed on every connection change, so
  callers never read capability values left over from an earlier
  connection;
- disposal that disconnects before closing, detaches its listener, and
  does nothing on the second call.

Example:
    mount = ControllableDevice(registry.find("twin-mount-0"), registry)
    with mount:
        mount.set_connected(True)
        if mount.driver.can_set_tracking:
            mount.driver.tracking = True
    # disconnected and closed here
"""

from __future__ import annotations

import threading
from typing import Any, Generic, TypeVar

from astro_sequencer.devices.identity import DeviceClass, DeviceIdentity
from astro_sequencer.devices.registry import DeviceRegistry, DriverInstantiationError
from astro_sequencer.drivers.types import (
    CameraDriver,
    CoverDriver,
    DeviceDriver,
    FilterWheelDriver,
    FocuserDriver,
    GuiderDriver,
    MountDriver,
    SwitchDriver,
)
from astro_sequencer.observability import get_logger

logger = get_logger(__name__)

TDriver = TypeVar("TDriver", bound=DeviceDriver)

CONTRACTS: dict[DeviceClass, type[DeviceDriver]] = {
    DeviceClass.MOUNT: MountDriver,
    DeviceClass.GUIDER: GuiderDriver,
    DeviceClass.CAMERA: CameraDriver,
    DeviceClass.COVER: CoverDriver,
    DeviceClass.FOCUSER: FocuserDriver,
    DeviceClass.FILTER_WHEEL: FilterWheelDriver,
    DeviceClass.SWITCH: SwitchDriver,
}


class DeviceConnectionError(Exception):
    """A device did not reach the requested connection state."""

    def __init__(self, identity: DeviceIdentity, message: str) -> None:
        super().__init__(f"{identity.label}: {message}")
        self.identity = identity


class DeviceDisposeError(Exception):
    """One or more disposal steps failed; the device is still disposed."""

    def __init__(self, identity: DeviceIdentity, errors: list[Exception]) -> None:
        summary = "; ".join(str(e) for e in errors)
        super().__init__(f"{identity.label}: dispose failed: {summary}")
        self.identity = identity
        self.errors = errors


class ControllableDevice(Generic[TDriver]):
    """Owns one driver for the lifetime of a setup.

    Attributes:
        device: Identity the driver was created from.
        driver: The live driver, typed by the contract for its kind.
    """

    def __init__(self, device: DeviceIdentity, registry: DeviceRegistry) -> None:
        """Instantiate and validate the driver for ``device``.

        Args:
            device: Identity to bind. Its kind selects the contract.
            registry: Registry holding the backend factory.

        Raises:
            DriverInstantiationError: No factory, the backend rejected the
                identity, or the driver does not implement the contract
                for ``device.kind``.
        """
        contract = CONTRACTS.get(device.kind)
        if contract is None:
            raise DriverInstantiationError(
                device, f"no driver contract for kind {device.kind.value!r}"
            )

        driver = registry.instantiate(device)
        if not isinstance(driver, contract):
            _close_quietly(driver)
            raise DriverInstantiationError(
                device,
                f"{type(driver).__name__} does not implement {contract.__name__}",
            )

        self.device = device
        self.driver: TDriver = driver  # type: ignore[assignment]
        self._capabilities: dict[str, Any] = {}
        self._disposed = False
        self._lock = threading.Lock()
        self.driver.add_connection_listener(self._on_connection_changed)
        if self.driver.connected:
            self._on_connection_changed(True)

    @property
    def kind(self) -> DeviceClass:
        return self.device.kind

    @property
    def name(self) -> str:
        return self.device.label

    @property
    def connected(self) -> bool:
        return not self._disposed and bool(self.driver.connected)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def capabilities(self) -> dict[str, Any]:
        """Capabilities captured at the last connection change."""
        return dict(self._capabilities)

    def set_connected(self, value: bool) -> None:
        """Connect or disconnect the driver.

        Raises:
            DeviceConnectionError: The driver raised, or its ``connected``
                flag does not match ``value`` afterwards.
            RuntimeError: The device has been disposed.
        """
        if self._disposed:
            raise RuntimeError(f"{self.name}: device already disposed")
        try:
            self.driver.connected = value
        except Exception as e:
            raise DeviceConnectionError(
                self.device, f"{'connect' if value else 'disconnect'} failed: {e}"
            ) from e
        if bool(self.driver.connected) != bool(value):
            raise DeviceConnectionError(
                self.device, f"driver did not reach connected={value}"
            )
        logger.info("Device connection set", device=self.name, connected=value)

    def _on_connection_changed(self, connected: bool) -> None:
        self._capabilities = self.driver.capabilities() if connected else {}

    def dispose(self) -> None:
        """Disconnect (if connected), detach, and close the driver once.

        Every step is attempted even if an earlier one fails.

        Raises:
            DeviceDisposeError: At least one step failed.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True

        errors: list[Exception] = []
        try:
            if self.driver.connected:
                self.driver.connected = False
        except Exception as e:
            errors.append(e)
        try:
            self.driver.remove_connection_listener(self._on_connection_changed)
        except Exception as e:
            errors.append(e)
        try:
            self.driver.close()
        except Exception as e:
            errors.append(e)

        self._capabilities = {}
        logger.debug("Device disposed", device=self.name, errors=len(errors))
        if errors:
            raise DeviceDisposeError(self.device, errors) from errors[0]

    def __enter__(self) -> ControllableDevice[TDriver]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return (
            f"ControllableDevice({self.device.encode()!r}, "
            f"connected={self.connected}, disposed={self._disposed})"
        )


def _close_quietly(driver: Any) -> None:
    close = getattr(driver, "close", None)
    if callable(close):
        try:
            close()
        except Exception as e:
            logger.debug("Closing rejected driver failed", error=str(e))


Mount = ControllableDevice[MountDriver]
Guider = ControllableDevice[GuiderDriver]
Camera = ControllableDevice[CameraDriver]
Cover = ControllableDevice[CoverDriver]
Focuser = ControllableDevice[FocuserDriver]
FilterWheel = ControllableDevice[FilterWheelDriver]
Switch = ControllableDevice[SwitchDriver]
