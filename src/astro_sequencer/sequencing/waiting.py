"""Bounded polling.

All waiting on devices (slews, guider settling, cover travel, image
readout, parking) goes through :func:`wait_until`, which evaluates its
condition at most ``max_polls`` times. There are no unbounded loops in
the session engine.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from astro_sequencer.sequencing.clock import Clock


class WaitOutcome(Enum):
    """How a bounded wait ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WaitResult:
    """Outcome of :func:`wait_until` and the number of condition checks."""

    outcome: WaitOutcome
    polls: int

    @property
    def completed(self) -> bool:
        return self.outcome is WaitOutcome.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.outcome is WaitOutcome.CANCELLED


def wait_until(
    condition: Callable[[], bool],
    *,
    clock: Clock,
    poll_interval: float,
    max_polls: int,
    cancel: threading.Event | None = None,
    backoff: float = 1.0,
    max_interval: float | None = None,
) -> WaitResult:
    """Poll ``condition`` until it holds, the budget runs out, or cancel.

    The condition is checked first and the clock only sleeps between
    checks, so a condition that already holds costs one poll and no
    sleep. Exceptions raised by ``condition`` propagate to the caller.

    Args:
        condition: Zero-argument predicate.
        clock: Time source used for sleeping.
        poll_interval: Seconds between the first two checks.
        max_polls: Maximum number of condition checks, at least 1.
        cancel: Stops the wait with CANCELLED as soon as it is set.
        backoff: Interval multiplier applied after every sleep.
        max_interval: Upper bound for the grown interval.

    Returns:
        WaitResult with the outcome and the number of checks made.

    Raises:
        ValueError: ``max_polls`` < 1, negative interval, or backoff < 1.
    """
    if max_polls < 1:
        raise ValueError(f"max_polls must be >= 1, got {max_polls}")
    if poll_interval < 0:
        raise ValueError(f"poll_interval must be >= 0, got {poll_interval}")
    if backoff < 1.0:
        raise ValueError(f"backoff must be >= 1, got {backoff}")

    interval = poll_interval
    for poll in range(1, max_polls + 1):
        if cancel is not None and cancel.is_set():
            return WaitResult(WaitOutcome.CANCELLED, poll - 1)
        if condition():
            return WaitResult(WaitOutcome.COMPLETED, poll)
        if poll == max_polls:
            break
        if not clock.sleep(interval, cancel):
            return WaitResult(WaitOutcome.CANCELLED, poll)
        interval *= backoff
        if max_interval is not None:
            interval = min(interval, max_interval)

    return WaitResult(WaitOutcome.TIMED_OUT, max_polls)
