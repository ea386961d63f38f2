"""Session error taxonomy and per-step results.

Recoverable errors skip the current target; fatal errors end the target
loop. Neither escapes a step as an exception: steps return a StepResult
and the engine decides what to do with it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionError(Exception):
    """Base for errors raised or reported by the session engine."""


class RecoverableSessionError(SessionError):
    """The current target cannot be imaged; later targets may be."""


class FatalSessionError(SessionError):
    """The session cannot continue."""


class SlewRejectedError(RecoverableSessionError):
    """The mount refused the slew request."""


class SlewTimeoutError(RecoverableSessionError):
    """The slew did not finish within the poll budget, or polling failed."""


class GuideStartError(RecoverableSessionError):
    """Guiding did not settle after all attempts."""


class StepCancelledError(RecoverableSessionError):
    """The step was abandoned because the session was cancelled."""


class ClockUnavailableError(FatalSessionError):
    """The mount could not provide a UTC time reference."""


class ExposureTimeoutError(FatalSessionError):
    """A camera never reported a ready image."""


class CoverError(FatalSessionError):
    """A telescope cover did not reach the requested state."""


class SessionStartError(FatalSessionError):
    """Equipment could not be brought online before the first target."""


class ParkTimeoutError(SessionError):
    """The mount did not reach its park position during teardown."""


class StepOutcome(Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    FATAL = "fatal"


@dataclass(frozen=True)
class StepResult:
    """What a step wants the engine to do next."""

    outcome: StepOutcome
    error: SessionError | None = None

    @classmethod
    def ok(cls) -> StepResult:
        return cls(StepOutcome.CONTINUE)

    @classmethod
    def skip(cls, error: RecoverableSessionError) -> StepResult:
        return cls(StepOutcome.SKIP, error)

    @classmethod
    def fatal(cls, error: FatalSessionError) -> StepResult:
        return cls(StepOutcome.FATAL, error)

    @property
    def proceed(self) -> bool:
        return self.outcome is StepOutcome.CONTINUE
