"""Connection lifecycle shared by driver implementations.

DeviceDriverBase owns the ``connected`` property so that every backend
gets the same ordering guarantees:

1. ``connected = True`` runs the backend ``_connect`` hook, then
   ``_refresh_capabilities``, then notifies listeners. Capability fields
   are therefore populated by the time anyone hears about the connect.
2. ``connected = False`` runs ``_disconnect``, resets capabilities to
   their zero values, then notifies listeners.
3. Listeners only fire on real transitions; assigning the current value
   again is a no-op.

Subclasses keep capability state in ``self._caps`` (a dict seeded from
:attr:`CAPABILITY_DEFAULTS`) and expose it through properties.
"""

from __future__ import annotations

import threading
from typing import Any, ClassVar

from astro_sequencer.drivers.types import ConnectionListener
from astro_sequencer.observability import get_logger

logger = get_logger(__name__)


class DriverError(Exception):
    """Raised by a driver when the backend refuses an operation."""


class NotConnectedError(DriverError):
    """Operation requires an established connection."""


class DeviceDriverBase:
    """Base class implementing the DeviceDriver lifecycle.

    Attributes:
        CAPABILITY_DEFAULTS: Zero value of every capability field. Copied
            into ``_caps`` at construction and after each disconnect.
    """

    CAPABILITY_DEFAULTS: ClassVar[dict[str, Any]] = {}

    def __init__(self, name: str) -> None:
        self._name = name
        self._connected = False
        self._closed = False
        self._listeners: list[ConnectionListener] = []
        self._lock = threading.RLock()
        self._caps: dict[str, Any] = dict(self.CAPABILITY_DEFAULTS)

    # -- lifecycle -----------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def connected(self) -> bool:
        return self._connected

    @connected.setter
    def connected(self, value: bool) -> None:
        value = bool(value)
        with self._lock:
            if value == self._connected:
                return
            if value:
                if self._closed:
                    raise DriverError(f"{self._name}: driver already closed")
                self._connect()
                self._connected = True
                self._caps = dict(self.CAPABILITY_DEFAULTS)
                self._refresh_capabilities()
            else:
                try:
                    self._disconnect()
                finally:
                    self._connected = False
                    self._caps = dict(self.CAPABILITY_DEFAULTS)
            listeners = list(self._listeners)

        logger.debug("Driver connection changed", device=self._name, connected=value)
        for listener in listeners:
            listener(value)

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_connection_listener(self, listener: ConnectionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def capabilities(self) -> dict[str, Any]:
        """Copy of the current capability fields."""
        return dict(self._caps)

    def close(self) -> None:
        """Release the backend handle. Later calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._release()

    def _require_connected(self) -> None:
        if not self._connected:
            raise NotConnectedError(f"{self._name}: not connected")

    # -- backend hooks -------------------------------------------------------

    def _connect(self) -> None:
        """Open the backend link. Raise to refuse the connection."""

    def _disconnect(self) -> None:
        """Close the backend link."""

    def _refresh_capabilities(self) -> None:
        """Populate ``self._caps`` from the freshly connected backend."""

    def _release(self) -> None:
        """Free backend resources after :meth:`close`."""
