"""Session tuning.

The defaults are empirically chosen values for a typical amateur
setup: a slew is polled once a second, guider settling every ten
seconds, and each settle criterion is loosened on every retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

# Bounded waits
DEFAULT_MAX_FAILSAFE = 1000
DEFAULT_SLEW_POLL_INTERVAL = 1.0
DEFAULT_SETTLE_POLL_INTERVAL = 10.0
DEFAULT_COVER_POLL_INTERVAL = 3.0
DEFAULT_PARK_POLL_INTERVAL = 0.1

# Guide start, attempt n (1-based) uses base + n * step
DEFAULT_GUIDE_ATTEMPTS = 2
DEFAULT_SETTLE_PIXELS = 0.3
DEFAULT_SETTLE_PIXELS_STEP = 0.2
DEFAULT_SETTLE_TIME = 15.0
DEFAULT_SETTLE_TIME_STEP = 5.0
DEFAULT_SETTLE_TIMEOUT = 75.0
DEFAULT_SETTLE_TIMEOUT_STEP = 25.0
DEFAULT_GUIDE_RETRY_DELAY = 60.0  # seconds, multiplied by the attempt number

# Exposure
DEFAULT_EXPOSURE_SECONDS = 120.0
DEFAULT_IMAGE_READY_POLLS = 100
DEFAULT_IMAGE_READY_POLL_INTERVAL = 0.1
DEFAULT_IMAGE_READY_BACKOFF = 1.5
DEFAULT_IMAGE_READY_MAX_INTERVAL = 10.0

# Dithering
DEFAULT_DITHER_PIXELS = 5.0

# Cooler ramps: one degree per interval, at most DEFAULT_MAX_RAMP_STEPS steps
DEFAULT_COOLDOWN_RAMP_INTERVAL = 20.0
DEFAULT_COOLUP_RAMP_INTERVAL = 30.0
DEFAULT_COOLDOWN_POWER_LIMIT = 80.0  # percent; stop cooling further above this
DEFAULT_COOLUP_POWER_LIMIT = 0.1  # percent; cooler idle, sensor at ambient
DEFAULT_MAX_RAMP_STEPS = 100


@dataclass
class SessionConfig:
    """Timing, retry and output settings for one session.

    Attributes:
        max_failsafe: Poll budget for slews, settling, covers and parking.
        slew_poll_interval: Seconds between slew completion checks.
        settle_poll_interval: Seconds between guider settling checks.
        cover_poll_interval: Seconds between cover state checks.
        park_poll_interval: Seconds between park checks during teardown.
        guide_attempts: Guide starts tried before skipping a target.
        settle_pixels: Base settle tolerance in guide-camera pixels.
        settle_pixels_step: Added per attempt number.
        settle_time: Base seconds the error must stay within tolerance.
        settle_time_step: Added per attempt number.
        settle_timeout: Base seconds the guider may take to settle.
        settle_timeout_step: Added per attempt number.
        guide_retry_delay: Pause after failed attempt n is n times this.
        exposure_seconds: Light frame duration.
        image_ready_polls: Readout poll budget after the exposure time.
        image_ready_poll_interval: First readout poll interval.
        image_ready_backoff: Interval multiplier between readout polls.
        image_ready_max_interval: Upper bound for the readout interval.
        frames_per_target: Light frames per target and telescope.
        dither_every: Dither after every n-th frame; 0 disables.
        dither_pixels: Dither amplitude in guide-camera pixels.
        cooler_setpoint: CCD setpoint in Celsius, None to keep the
            camera's current setpoint.
        cooldown_ramp_interval: Seconds between setpoint steps while cooling.
        coolup_ramp_interval: Seconds between setpoint steps while warming
            back to ambient at the end of the session.
        cooldown_power_limit: Cooler power at which cooling stops early.
        coolup_power_limit: Cooler power below which warming counts as done.
        max_ramp_steps: Checks allowed for either ramp.
        park_on_finish: Park the mount during teardown.
        output_dir: Root directory for frames, None for the driver
            configuration's data_dir.
    """

    max_failsafe: int = DEFAULT_MAX_FAILSAFE
    slew_poll_interval: float = DEFAULT_SLEW_POLL_INTERVAL
    settle_poll_interval: float = DEFAULT_SETTLE_POLL_INTERVAL
    cover_poll_interval: float = DEFAULT_COVER_POLL_INTERVAL
    park_poll_interval: float = DEFAULT_PARK_POLL_INTERVAL

    guide_attempts: int = DEFAULT_GUIDE_ATTEMPTS
    settle_pixels: float = DEFAULT_SETTLE_PIXELS
    settle_pixels_step: float = DEFAULT_SETTLE_PIXELS_STEP
    settle_time: float = DEFAULT_SETTLE_TIME
    settle_time_step: float = DEFAULT_SETTLE_TIME_STEP
    settle_timeout: float = DEFAULT_SETTLE_TIMEOUT
    settle_timeout_step: float = DEFAULT_SETTLE_TIMEOUT_STEP
    guide_retry_delay: float = DEFAULT_GUIDE_RETRY_DELAY

    exposure_seconds: float = DEFAULT_EXPOSURE_SECONDS
    image_ready_polls: int = DEFAULT_IMAGE_READY_POLLS
    image_ready_poll_interval: float = DEFAULT_IMAGE_READY_POLL_INTERVAL
    image_ready_backoff: float = DEFAULT_IMAGE_READY_BACKOFF
    image_ready_max_interval: float = DEFAULT_IMAGE_READY_MAX_INTERVAL

    frames_per_target: int = 1
    dither_every: int = 0
    dither_pixels: float = DEFAULT_DITHER_PIXELS

    cooler_setpoint: float | None = None
    cooldown_ramp_interval: float = DEFAULT_COOLDOWN_RAMP_INTERVAL
    coolup_ramp_interval: float = DEFAULT_COOLUP_RAMP_INTERVAL
    cooldown_power_limit: float = DEFAULT_COOLDOWN_POWER_LIMIT
    coolup_power_limit: float = DEFAULT_COOLUP_POWER_LIMIT
    max_ramp_steps: int = DEFAULT_MAX_RAMP_STEPS
    park_on_finish: bool = True
    output_dir: Path | None = field(default=None)

    def __post_init__(self) -> None:
        for name in (
            "max_failsafe",
            "guide_attempts",
            "image_ready_polls",
            "max_ramp_steps",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.frames_per_target < 1:
            raise ValueError(
                f"frames_per_target must be >= 1, got {self.frames_per_target}"
            )
        if self.dither_every < 0:
            raise ValueError(f"dither_every must be >= 0, got {self.dither_every}")
        if self.exposure_seconds < 0:
            raise ValueError(
                f"exposure_seconds must be >= 0, got {self.exposure_seconds}"
            )
        for name in ("cooldown_ramp_interval", "coolup_ramp_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.image_ready_backoff < 1.0:
            raise ValueError(
                f"image_ready_backoff must be >= 1, got {self.image_ready_backoff}"
            )
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)

    def settle_for_attempt(self, attempt: int) -> tuple[float, float, float]:
        """Settle pixels, time and timeout for a 1-based attempt number."""
        return (
            self.settle_pixels + attempt * self.settle_pixels_step,
            self.settle_time + attempt * self.settle_time_step,
            self.settle_timeout + attempt * self.settle_timeout_step,
        )
