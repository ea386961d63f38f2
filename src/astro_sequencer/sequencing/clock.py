"""Injectable time source for the session engine.

Every wait in a session goes through a Clock so tests can replace real
time with a virtual clock and run a night's worth of slews and
exposures in milliseconds.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing).

    Example:
        class VirtualClock:
            def __init__(self):
                self._time = 0.0

            def now(self) -> datetime:
                return EPOCH + timedelta(seconds=self._time)

            def monotonic(self) -> float:
                return self._time

            def sleep(self, seconds, cancel=None) -> bool:
                self._time += seconds
                return not (cancel and cancel.is_set())
    """

    def now(self) -> datetime:
        """Current wall-clock time, timezone-aware UTC."""
        ...

    def monotonic(self) -> float:
        """Seconds on a clock that never goes backwards."""
        ...

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Block for ``seconds`` or until ``cancel`` is set.

        Returns:
            False when the sleep was cut short by ``cancel``, else True.
        """
        ...


class SystemClock:
    """Clock backed by the time module.

    Sleeping waits on the cancel event when one is given, so a session
    that is cancelled mid-exposure wakes up immediately.
    """

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if seconds <= 0:
            return not (cancel is not None and cancel.is_set())
        if cancel is None:
            time.sleep(seconds)
            return True
        return not cancel.wait(seconds)
