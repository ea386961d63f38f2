"""Device registry: backend factories, device enumeration and lookup.

Backends plug into a DeviceRegistry in two ways:

- a *factory* per ``(backend_key, DeviceClass)`` turns an identity into
  a live driver, or returns None when the backend does not recognise
  the id;
- a *device source* enumerates the identities the backend can serve,
  which the registry caches as its device map.

Example:
    from astro_sequencer.devices import DeviceClass, DeviceRegistry
    from astro_sequencer.drivers.twin import register_twin_backend

    with DeviceRegistry() as registry:
        register_twin_backend(registry)
        cameras = registry.find_all(DeviceClass.CAMERA)
        driver = registry.instantiate(cameras[0])
    # Drivers created by the registry are closed on exit
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from astro_sequencer.devices.identity import DeviceClass, DeviceIdentity
from astro_sequencer.observability import get_logger

logger = get_logger(__name__)

DriverFactory = Callable[[DeviceIdentity], Any]
"""Returns a driver for the identity, or None to reject it."""


class DriverInstantiationError(Exception):
    """No driver could be created for an identity."""

    def __init__(self, identity: DeviceIdentity, reason: str) -> None:
        super().__init__(f"Cannot instantiate {identity.encode()}: {reason}")
        self.identity = identity
        self.reason = reason


class DeviceNotFoundError(LookupError):
    """No enumerated device matches the lookup."""


@runtime_checkable
class DeviceSource(Protocol):  # pragma: no cover
    """Enumerates the devices one backend can serve."""

    backend_key: str

    def enumerate_devices(self) -> Iterable[DeviceIdentity]:
        """Return identities currently available from the backend."""
        ...


class DeviceRegistry:
    """Maps identities to backend factories and caches enumerated devices.

    Thread Safety:
        Registration and discovery are expected to happen during startup
        on one thread. Lookups after discovery only read the cache.
    """

    def __init__(self) -> None:
        self._factories: dict[tuple[str, DeviceClass], DriverFactory] = {}
        self._sources: list[DeviceSource] = []
        self._discovery_cache: list[DeviceIdentity] | None = None
        self._created: list[Any] = []

    # -- registration --------------------------------------------------------

    def register_backend(
        self, backend_key: str, kind: DeviceClass, factory: DriverFactory
    ) -> None:
        """Register (or replace) the factory for one backend and kind."""
        key = (backend_key, kind)
        if key in self._factories:
            logger.warning(
                "Replacing driver factory", backend=backend_key, kind=kind.value
            )
        self._factories[key] = factory

    def register_source(self, source: DeviceSource) -> None:
        """Add a device source and invalidate the discovery cache."""
        self._sources.append(source)
        self._discovery_cache = None

    def has_backend(self, backend_key: str, kind: DeviceClass) -> bool:
        return (backend_key, kind) in self._factories

    # -- device map ----------------------------------------------------------

    def discover(self, refresh: bool = False) -> list[DeviceIdentity]:
        """Enumerate all sources, caching the result.

        A source that raises is logged and skipped so one broken backend
        does not hide the devices of the others.

        Args:
            refresh: Ignore the cache and enumerate again.

        Returns:
            Identities in source registration order, duplicates removed.
        """
        if self._discovery_cache is None or refresh:
            found: list[DeviceIdentity] = []
            for source in self._sources:
                try:
                    devices = list(source.enumerate_devices())
                except Exception as e:
                    logger.error(
                        "Device enumeration failed",
                        backend=source.backend_key,
                        error=str(e),
                    )
                    continue
                found.extend(d for d in devices if d not in found)
            self._discovery_cache = found
            logger.info("Devices discovered", count=len(found))
        return list(self._discovery_cache)

    def find(self, backend_id: str, backend_key: str | None = None) -> DeviceIdentity:
        """Look up an enumerated device by its backend id.

        Raises:
            DeviceNotFoundError: Nothing matches.
        """
        for identity in self.discover():
            if identity.backend_id == backend_id and (
                backend_key is None or identity.backend_key == backend_key
            ):
                return identity
        raise DeviceNotFoundError(f"No device with id {backend_id!r}")

    def find_all(self, kind: DeviceClass) -> list[DeviceIdentity]:
        """All enumerated devices of one kind."""
        return [d for d in self.discover() if d.kind is kind]

    # -- instantiation -------------------------------------------------------

    def instantiate(self, identity: DeviceIdentity) -> Any:
        """Create the driver for ``identity`` via its backend factory.

        The factory is called exactly once per call.

        Raises:
            DriverInstantiationError: No factory for the backend and kind,
                the factory returned None, or the factory raised.
        """
        factory = self._factories.get((identity.backend_key, identity.kind))
        if factory is None:
            raise DriverInstantiationError(
                identity,
                f"no {identity.kind.value} factory for backend "
                f"{identity.backend_key!r}",
            )
        try:
            driver = factory(identity)
        except Exception as e:
            raise DriverInstantiationError(identity, f"backend raised: {e}") from e
        if driver is None:
            raise DriverInstantiationError(identity, "backend rejected the id")

        self._created.append(driver)
        logger.debug("Driver instantiated", device=identity.encode())
        return driver

    # -- shutdown ------------------------------------------------------------

    def clear(self) -> None:
        """Close every driver this registry created and drop the cache.

        Best effort: close failures are logged and the remaining drivers
        are still closed. Safe to call repeatedly.
        """
        for driver in self._created:
            try:
                driver.close()
            except Exception as e:
                logger.warning("Driver close failed during clear", error=str(e))
        self._created.clear()
        self._discovery_cache = None

    def __enter__(self) -> DeviceRegistry:
        return self

    def __exit__(self, *exc: object) -> None:
        self.clear()

    def __repr__(self) -> str:
        backends = sorted({key for key, _ in self._factories})
        return f"DeviceRegistry(backends={backends}, sources={len(self._sources)})"


# =============================================================================
# Module-level registry
# =============================================================================

_default_registry: DeviceRegistry | None = None


def init_registry(registry: DeviceRegistry | None = None) -> DeviceRegistry:
    """Install the process-wide registry, replacing any previous one.

    Args:
        registry: Registry to install. A new empty one when omitted.

    Returns:
        The installed registry.
    """
    global _default_registry
    _default_registry = registry if registry is not None else DeviceRegistry()
    return _default_registry


def get_registry() -> DeviceRegistry:
    """Return the registry installed by :func:`init_registry`.

    Raises:
        RuntimeError: No registry has been installed.
    """
    if _default_registry is None:
        raise RuntimeError("Registry not initialized; call init_registry() first")
    return _default_registry


def shutdown_registry() -> None:
    """Clear and uninstall the process-wide registry. No-op if none."""
    global _default_registry
    if _default_registry is not None:
        _default_registry.clear()
        _default_registry = None
