"""Session engine: targets, bounded waits, the imaging state machine.

Example:
    from astro_sequencer.sequencing import Session, SessionConfig, Target

    targets = [Target(ra=0.712, dec=41.27, name="M31")]
    report = Session(setup, targets, config=SessionConfig()).run()
"""

from astro_sequencer.sequencing.clock import Clock, SystemClock
from astro_sequencer.sequencing.config import SessionConfig
from astro_sequencer.sequencing.cooling import (
    CoolDirection,
    CoolingState,
    RampResult,
    ramp_cameras,
)
from astro_sequencer.sequencing.errors import (
    ClockUnavailableError,
    CoverError,
    ExposureTimeoutError,
    FatalSessionError,
    GuideStartError,
    ParkTimeoutError,
    RecoverableSessionError,
    SessionError,
    SessionStartError,
    SlewRejectedError,
    SlewTimeoutError,
    StepCancelledError,
    StepOutcome,
    StepResult,
)
from astro_sequencer.sequencing.report import SessionReport
from astro_sequencer.sequencing.session import Session, SessionState
from astro_sequencer.sequencing.target import Target
from astro_sequencer.sequencing.waiting import WaitOutcome, WaitResult, wait_until

__all__ = [
    # Engine
    "Session",
    "SessionConfig",
    "SessionReport",
    "SessionState",
    "Target",
    # Cooling
    "CoolDirection",
    "CoolingState",
    "RampResult",
    "ramp_cameras",
    # Time
    "Clock",
    "SystemClock",
    "WaitOutcome",
    "WaitResult",
    "wait_until",
    # Errors
    "ClockUnavailableError",
    "CoverError",
    "ExposureTimeoutError",
    "FatalSessionError",
    "GuideStartError",
    "ParkTimeoutError",
    "RecoverableSessionError",
    "SessionError",
    "SessionStartError",
    "SlewRejectedError",
    "SlewTimeoutError",
    "StepCancelledError",
    "StepOutcome",
    "StepResult",
]
