"""Driver configuration and factory.

Chooses between hardware backends (registered by external adapter
packages) and the built-in digital twin, and builds registries, device
wrappers and setups from that choice.

Example:
    from astro_sequencer.drivers import config

    config.use_digital_twin()
    factory = config.get_factory()
    registry = factory.create_registry()
    setup = factory.create_default_setup(registry)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from astro_sequencer.devices.controllable import ControllableDevice
from astro_sequencer.devices.identity import DeviceClass, DeviceIdentity
from astro_sequencer.devices.registry import DeviceNotFoundError, DeviceRegistry
from astro_sequencer.devices.setup import Setup, Telescope
from astro_sequencer.drivers.twin import DigitalTwinConfig, register_twin_backend
from astro_sequencer.observability import get_logger

logger = get_logger(__name__)

DEFAULT_FOCAL_LENGTH_MM = 530.0

BackendInstaller = Callable[[DeviceRegistry], object]
"""Registers one backend's factories and device source on a registry."""


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # Externally installed backends
    DIGITAL_TWIN = "digital_twin"  # Simulated drivers


def _default_data_dir() -> Path:
    """``~/.astro-sequencer/data``; created on first frame write."""
    return Path.home() / ".astro-sequencer" / "data"


@dataclass
class DriverConfig:
    """Configuration for backend selection.

    Attributes:
        mode: HARDWARE for installed backends, DIGITAL_TWIN for simulation.
        data_dir: Root directory for written frames.
        twin: Behaviour of the digital twin backend.
        backends: Installers for hardware backends. Applied in HARDWARE
            mode only.
        focal_length_mm: Focal length assumed by create_default_setup.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN
    data_dir: Path = field(default_factory=_default_data_dir)
    twin: DigitalTwinConfig = field(default_factory=DigitalTwinConfig)
    backends: list[BackendInstaller] = field(default_factory=list)
    focal_length_mm: float = DEFAULT_FOCAL_LENGTH_MM


class DriverFactory:
    """Builds registries and device wrappers for the configured mode.

    Thread Safety:
        Not thread-safe. Configure once at startup.
    """

    def __init__(self, config: DriverConfig | None = None):
        self.config = config or DriverConfig()

    def create_registry(self) -> DeviceRegistry:
        """New registry with the backends for the configured mode.

        Raises:
            RuntimeError: HARDWARE mode without any backend installer.
        """
        registry = DeviceRegistry()
        if self.config.mode is DriverMode.DIGITAL_TWIN:
            register_twin_backend(registry, self.config.twin)
        else:
            if not self.config.backends:
                raise RuntimeError(
                    "Hardware mode requires at least one backend installer"
                )
            for install in self.config.backends:
                install(registry)
        logger.info(
            "Registry created",
            mode=self.config.mode.value,
            backends=len(self.config.backends),
        )
        return registry

    def create_device(
        self, identity: DeviceIdentity, registry: DeviceRegistry
    ) -> ControllableDevice:
        """Wrap ``identity`` in a ControllableDevice."""
        return ControllableDevice(identity, registry)

    def create_default_setup(self, registry: DeviceRegistry) -> Setup:
        """Build a setup from the first mount and guider found.

        Each camera becomes a telescope; covers, focusers, filter wheels
        and switches are attached by position to the telescopes.

        Wrappers already built are disposed again when a later one fails.

        Raises:
            DeviceNotFoundError: No mount, guider or camera was enumerated.
            DriverInstantiationError: A driver could not be created.
        """
        mounts = registry.find_all(DeviceClass.MOUNT)
        guiders = registry.find_all(DeviceClass.GUIDER)
        cameras = registry.find_all(DeviceClass.CAMERA)
        if not mounts or not guiders or not cameras:
            raise DeviceNotFoundError(
                "Default setup needs a mount, a guider and at least one camera"
            )

        built: list[ControllableDevice] = []

        def make(identity: DeviceIdentity) -> ControllableDevice:
            device = self.create_device(identity, registry)
            built.append(device)
            return device

        def nth(kind: DeviceClass, index: int) -> ControllableDevice | None:
            found = registry.find_all(kind)
            if index < len(found):
                return make(found[index])
            return None

        try:
            telescopes = [
                Telescope(
                    name=camera.label,
                    focal_length=self.config.focal_length_mm,
                    camera=make(camera),
                    cover=nth(DeviceClass.COVER, i),
                    focuser=nth(DeviceClass.FOCUSER, i),
                    filter_wheel=nth(DeviceClass.FILTER_WHEEL, i),
                    switch=nth(DeviceClass.SWITCH, i),
                )
                for i, camera in enumerate(cameras)
            ]
            return Setup(
                mount=make(mounts[0]),
                guider=make(guiders[0]),
                telescopes=telescopes,
            )
        except Exception:
            _dispose_partial(built)
            raise


def _dispose_partial(devices: list[ControllableDevice]) -> None:
    for device in reversed(devices):
        try:
            device.dispose()
        except Exception as e:
            logger.warning(
                "Dispose after failed setup failed", device=device.name, error=str(e)
            )


# Thread Safety: these globals are not thread-safe. Configure once at
# startup before spawning threads.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Global factory, created in DIGITAL_TWIN mode on first access."""
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory."""
    global _factory
    _factory = DriverFactory(config)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch the global factory to simulated drivers.

    Args:
        preserve_config: Keep data_dir, twin settings and installers.
    """
    if preserve_config:
        configure(replace(get_factory().config, mode=DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(
    *backends: BackendInstaller, preserve_config: bool = False
) -> None:
    """Switch the global factory to hardware backends.

    Args:
        *backends: Installers to add to the configuration.
        preserve_config: Keep data_dir, twin settings and earlier installers.
    """
    base = get_factory().config if preserve_config else DriverConfig()
    configure(
        replace(
            base,
            mode=DriverMode.HARDWARE,
            backends=[*base.backends, *backends],
        )
    )


def set_data_dir(data_dir: Path | str) -> None:
    """Change the frame output root, keeping the rest of the configuration."""
    configure(replace(get_factory().config, data_dir=Path(data_dir)))
