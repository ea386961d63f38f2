"""Device layer - identities, registry, lifecycle wrappers and setups."""

from astro_sequencer.devices.controllable import (
    CONTRACTS,
    Camera,
    ControllableDevice,
    Cover,
    DeviceConnectionError,
    DeviceDisposeError,
    FilterWheel,
    Focuser,
    Guider,
    Mount,
    Switch,
)
from astro_sequencer.devices.identity import (
    DeviceClass,
    DeviceIdentity,
    IdentityError,
    MalformedIdentityError,
    UnknownKindError,
    encode_identity,
    new_identity,
    parse_identity,
)
from astro_sequencer.devices.registry import (
    DeviceNotFoundError,
    DeviceRegistry,
    DeviceSource,
    DriverInstantiationError,
    get_registry,
    init_registry,
    shutdown_registry,
)
from astro_sequencer.devices.setup import Setup, SetupInUseError, Telescope

__all__ = [
    # Identity
    "DeviceClass",
    "DeviceIdentity",
    "IdentityError",
    "MalformedIdentityError",
    "UnknownKindError",
    "encode_identity",
    "new_identity",
    "parse_identity",
    # Registry
    "DeviceNotFoundError",
    "DeviceRegistry",
    "DeviceSource",
    "DriverInstantiationError",
    "get_registry",
    "init_registry",
    "shutdown_registry",
    # Wrapper
    "CONTRACTS",
    "ControllableDevice",
    "DeviceConnectionError",
    "DeviceDisposeError",
    "Camera",
    "Cover",
    "FilterWheel",
    "Focuser",
    "Guider",
    "Mount",
    "Switch",
    # Setup
    "Setup",
    "SetupInUseError",
    "Telescope",
]
