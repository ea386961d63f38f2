"""Device drivers: capability contracts and the digital twin backend.

Supports two modes:
- HARDWARE: backends installed by adapter packages
- DIGITAL_TWIN: simulated devices for running sessions without hardware

Use drivers.config to switch modes:
    from astro_sequencer.drivers import config
    config.use_digital_twin()
"""

from astro_sequencer.drivers.base import (
    DeviceDriverBase,
    DriverError,
    NotConnectedError,
)
from astro_sequencer.drivers.types import (
    CalibratorStatus,
    CameraDriver,
    ConnectionListener,
    CoverDriver,
    CoverStatus,
    DeviceDriver,
    FilterWheelDriver,
    FocuserDriver,
    GuiderDriver,
    Image,
    MountDriver,
    SwitchDriver,
    TrackingSpeed,
)

__all__ = [
    # Lifecycle
    "DeviceDriverBase",
    "DriverError",
    "NotConnectedError",
    # Contracts
    "CameraDriver",
    "ConnectionListener",
    "CoverDriver",
    "DeviceDriver",
    "FilterWheelDriver",
    "FocuserDriver",
    "GuiderDriver",
    "MountDriver",
    "SwitchDriver",
    # Enums
    "CalibratorStatus",
    "CoverStatus",
    "Image",
    "TrackingSpeed",
]
