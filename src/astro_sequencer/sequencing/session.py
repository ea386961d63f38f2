"""Imaging session engine.

A Session walks an ordered list of targets on one Setup. For every
target it runs slew, then guide start (with retries and loosening
settle criteria), then expose, then persist. Every wait is bounded.
Recoverable failures skip the target, fatal ones end the loop, and the
equipment is always brought back to a safe state at the end.

Lifecycle:

    NOT_STARTED -> INITIALISING -> (SLEWING -> GUIDING -> EXPOSING ->
    PERSISTING [-> DITHERING])* -> FINALISING -> FINISHED | ABORTED |
    CANCELLED

Example:
    setup = get_factory().create_default_setup(registry)
    session = Session(setup, targets, config=SessionConfig(exposure_seconds=60))
    report = session.run()
    print(report.completed, report.skipped, report.aborted_at)

Business context: the engine runs unattended through the night. The
mount, covers and coolers must never be left running after the session
ends, whatever went wrong, so teardown is attempted step by step even
when earlier steps fail.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import Enum

import numpy as np

from astro_sequencer.data.frames import AsdfFrameWriter, FrameWriter, frame_folder
from astro_sequencer.devices.controllable import (
    ControllableDevice,
    DeviceConnectionError,
)
from astro_sequencer.devices.setup import Setup, Telescope
from astro_sequencer.drivers.types import CameraDriver, CoverStatus, TrackingSpeed
from astro_sequencer.observability import LogContext, get_logger
from astro_sequencer.sequencing.clock import Clock, SystemClock
from astro_sequencer.sequencing.config import SessionConfig
from astro_sequencer.sequencing.cooling import (
    CoolDirection,
    ambient_target,
    ramp_cameras,
)
from astro_sequencer.sequencing.errors import (
    ClockUnavailableError,
    CoverError,
    ExposureTimeoutError,
    FatalSessionError,
    GuideStartError,
    ParkTimeoutError,
    SessionStartError,
    SlewRejectedError,
    SlewTimeoutError,
    StepCancelledError,
    StepOutcome,
    StepResult,
)
from astro_sequencer.sequencing.report import SessionReport
from astro_sequencer.sequencing.target import Target
from astro_sequencer.sequencing.waiting import WaitResult, wait_until

logger = get_logger(__name__)

Captured = list[tuple[int, Telescope, np.ndarray]]


class SessionState(Enum):
    NOT_STARTED = "not_started"
    INITIALISING = "initialising"
    SLEWING = "slewing"
    GUIDING = "guiding"
    EXPOSING = "exposing"
    PERSISTING = "persisting"
    DITHERING = "dithering"
    FINALISING = "finalising"
    FINISHED = "finished"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class Session:
    """Runs one imaging plan on one setup.

    Args:
        setup: Equipment to use. Claimed for the duration of :meth:`run`.
        targets: Targets in imaging order. At least one.
        config: Timing, retry and output settings.
        writer: Frame persistence. Defaults to an AsdfFrameWriter rooted
            at ``config.output_dir`` or the driver configuration's
            data_dir.
        clock: Time source for every wait.
        name: Label added to every log record of this session.

    Raises:
        ValueError: ``targets`` is empty.
    """

    def __init__(
        self,
        setup: Setup,
        targets: Sequence[Target],
        *,
        config: SessionConfig | None = None,
        writer: FrameWriter | None = None,
        clock: Clock | None = None,
        name: str | None = None,
    ) -> None:
        if not targets:
            raise ValueError("A session needs at least one target")

        self.setup = setup
        self.targets: tuple[Target, ...] = tuple(targets)
        self.config = config or SessionConfig()
        self.clock: Clock = clock or SystemClock()
        self.writer: FrameWriter = writer or self._default_writer()
        self.name = name or self.clock.now().strftime("session-%Y%m%dT%H%M%S")

        self._lock = threading.Lock()
        self._active_index = -1
        self._state = SessionState.NOT_STARTED
        self._started = False
        self._finalised = False
        self._frame_numbers = [0] * len(self.setup.telescopes)

    def _default_writer(self) -> FrameWriter:
        root = self.config.output_dir
        if root is None:
            from astro_sequencer.drivers.config import get_factory

            root = get_factory().config.data_dir
        return AsdfFrameWriter(root)

    # -- progress ------------------------------------------------------------

    @property
    def active_index(self) -> int:
        """-1 before the first target, ``len(targets)`` once finished."""
        return self._active_index

    @property
    def current_target(self) -> Target | None:
        index = self._active_index
        if 0 <= index < len(self.targets):
            return self.targets[index]
        return None

    @property
    def state(self) -> SessionState:
        return self._state

    def _enter(self, state: SessionState) -> None:
        self._state = state
        logger.debug("Session state", state=state.value)

    def move_next(self) -> bool:
        """Advance to the next target.

        Atomic: concurrent callers each move the index by exactly one
        until it reaches ``len(targets)``, where it stays.

        Returns:
            True when the new index names a target to process.
        """
        with self._lock:
            if self._active_index >= len(self.targets):
                return False
            self._active_index += 1
            return self._active_index < len(self.targets)

    # -- run -----------------------------------------------------------------

    def run(self, cancel: threading.Event | None = None) -> SessionReport:
        """Image every target, then tear down.

        Never raises for equipment failures; what happened is in the
        report and the log.

        Args:
            cancel: Set from another thread to stop the session. The step
                in progress is abandoned and teardown still runs.

        Returns:
            The session report.

        Raises:
            RuntimeError: The session was already run.
            SetupInUseError: Another session holds the setup.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("Session has already been run")
            self.setup.claim(self)
            self._started = True

        cancel = cancel or threading.Event()
        report = SessionReport(total_targets=len(self.targets))
        try:
            with LogContext(session=self.name):
                logger.info("Session started", targets=len(self.targets))
                try:
                    self._run_targets(report, cancel)
                except Exception as e:
                    logger.exception("Unhandled error, ending session", error=str(e))
                    report.error = f"{type(e).__name__}: {e}"
                    if report.aborted_at is None and self.current_target is not None:
                        report.aborted_at = self._active_index + 1
                finally:
                    report.teardown = self._finalise()
                    report.cancelled = report.cancelled or cancel.is_set()
                    self._enter(self._final_state(report))
                    logger.info("Session ended", **report.as_dict())
        finally:
            self.setup.release(self)
        return report

    @staticmethod
    def _final_state(report: SessionReport) -> SessionState:
        if report.error is not None:
            return SessionState.ABORTED
        if report.cancelled:
            return SessionState.CANCELLED
        return SessionState.FINISHED

    def _run_targets(self, report: SessionReport, cancel: threading.Event) -> None:
        while not cancel.is_set() and self.move_next():
            index = self._active_index
            number = index + 1
            target = self.targets[index]

            if index == 0 and not self._start(report, cancel):
                return

            with LogContext(target=target.name, target_number=number):
                logger.info("Target started", position=str(target))
                result = self._process_target(target, cancel, report)

                if result.outcome is StepOutcome.SKIP:
                    report.skipped[number] = str(result.error)
                    logger.warning("Target skipped", reason=str(result.error))
                elif result.outcome is StepOutcome.FATAL:
                    report.aborted_at = number
                    report.error = f"{type(result.error).__name__}: {result.error}"
                    logger.error("Session aborted", reason=str(result.error))
                    return
                else:
                    report.completed.append(number)
                    logger.info("Target completed")

        if cancel.is_set():
            report.cancelled = True
            logger.warning("Session cancelled", active_index=self._active_index)

    def _start(self, report: SessionReport, cancel: threading.Event) -> bool:
        """Run the entry actions; False when the session cannot continue."""
        try:
            self._initialise(cancel)
        except StepCancelledError as e:
            report.cancelled = True
            logger.warning("Session cancelled during start", reason=str(e))
            return False
        except (FatalSessionError, DeviceConnectionError) as e:
            report.error = f"{type(e).__name__}: {e}"
            logger.error("Session could not start", error=str(e))
            return False
        return True

    def _process_target(
        self, target: Target, cancel: threading.Event, report: SessionReport
    ) -> StepResult:
        result = self._slew(target, cancel)
        if not result.proceed:
            return result
        result = self._start_guiding(cancel)
        if not result.proceed:
            return result

        frames = self.config.frames_per_target
        for frame in range(1, frames + 1):
            try:
                timestamp = self._mount_time()
            except ClockUnavailableError as e:
                return StepResult.fatal(e)

            result, captured = self._expose(cancel)
            if not result.proceed:
                return result
            self._persist(target, timestamp, captured, report)

            if frame < frames and self._dither_due(frame):
                if not self._dither(cancel):
                    logger.warning("Dither failed, ending target early", frame=frame)
                    break
            if cancel.is_set():
                return StepResult.skip(StepCancelledError("cancelled between frames"))
        return StepResult.ok()

    # -- entry actions -------------------------------------------------------

    def _initialise(self, cancel: threading.Event) -> None:
        """Connect equipment, unpark, open covers and start cooling.

        Raises:
            DeviceConnectionError: A device did not connect.
            SessionStartError: The mount is parked and cannot unpark.
            CoverError: A cover did not open.
            StepCancelledError: Cancelled while waiting on covers or
                cooling.
        """
        self._enter(SessionState.INITIALISING)
        setup = self.setup

        _ensure_connected(setup.mount)
        _ensure_connected(setup.guider)
        try:
            equipment = setup.guider.driver.connect_equipment()
        except Exception as e:
            raise DeviceConnectionError(
                setup.guider.device, f"guider equipment did not connect: {e}"
            ) from e
        if equipment is False:
            raise DeviceConnectionError(
                setup.guider.device, "guider equipment did not connect"
            )
        for camera in setup.cameras():
            _ensure_connected(camera)

        mount = setup.mount.driver
        if mount.at_park:
            if not mount.can_unpark:
                raise SessionStartError("Mount is parked and cannot be unparked")
            try:
                mount.unpark()
            except Exception as e:
                raise SessionStartError(f"Mount failed to unpark: {e}") from e

        self._open_covers(cancel)
        self._start_cooling(cancel)
        logger.info("Equipment ready", telescopes=len(setup.telescopes))

    def _open_covers(self, cancel: threading.Event) -> None:
        for telescope in self.setup.telescopes:
            cover = telescope.cover
            if cover is None:
                continue
            _ensure_connected(cover)
            driver = cover.driver
            try:
                if driver.max_brightness > 0:
                    driver.calibrator_off()
                if driver.cover_state is CoverStatus.NOT_PRESENT:
                    continue
                if driver.open() is False:
                    raise CoverError(f"{telescope.name}: cover refused to open")
            except CoverError:
                raise
            except Exception as e:
                raise CoverError(f"{telescope.name}: cover failed to open: {e}") from e

            waited = wait_until(
                lambda: driver.cover_state
                not in (CoverStatus.MOVING, CoverStatus.UNKNOWN),
                clock=self.clock,
                poll_interval=self.config.cover_poll_interval,
                max_polls=self.config.max_failsafe,
                cancel=cancel,
            )
            if waited.cancelled:
                raise StepCancelledError("cancelled while opening covers")
            state = driver.cover_state
            if not waited.completed or state is not CoverStatus.OPEN:
                raise CoverError(
                    f"{telescope.name}: cover did not open (state={state.value})"
                )
            logger.info("Cover open", telescope=telescope.name, polls=waited.polls)

    def _start_cooling(self, cancel: threading.Event) -> None:
        """Ramp every cooled camera down to the configured setpoint.

        Without a setpoint the coolers are only switched on. Missing the
        setpoint is logged; imaging goes ahead at whatever was reached.

        Raises:
            StepCancelledError: Cancelled during the ramp.
        """
        setpoint = self.config.cooler_setpoint
        if setpoint is None:
            self._coolers_on()
            return
        result = ramp_cameras(
            self._connected_cameras(),
            lambda camera: setpoint,
            CoolDirection.DOWN,
            power_limit=self.config.cooldown_power_limit,
            clock=self.clock,
            interval=self.config.cooldown_ramp_interval,
            max_steps=self.config.max_ramp_steps,
            cancel=cancel,
        )
        if result.wait.cancelled:
            raise StepCancelledError("cancelled while cooling")
        if not result.reached:
            logger.warning(
                "Cooling setpoint not reached",
                setpoint=setpoint,
                checks=result.wait.polls,
            )

    def _coolers_on(self) -> None:
        for telescope in self.setup.telescopes:
            camera = telescope.camera.driver
            if not camera.can_set_cooler_on:
                continue
            try:
                camera.cooler_on = True
            except Exception as e:
                logger.warning(
                    "Cooling could not be enabled",
                    telescope=telescope.name,
                    error=str(e),
                )

    def _connected_cameras(self) -> list[tuple[str, CameraDriver]]:
        return [
            (telescope.name, telescope.camera.driver)
            for telescope in self.setup.telescopes
            if telescope.camera.connected
        ]

    # -- per-target steps ----------------------------------------------------

    def _slew(self, target: Target, cancel: threading.Event) -> StepResult:
        self._enter(SessionState.SLEWING)
        mount = self.setup.mount
        driver = mount.driver
        try:
            _ensure_connected(mount)
            if driver.can_set_tracking:
                driver.tracking_speed = TrackingSpeed.SIDEREAL
                driver.tracking = True
            accepted = driver.slew_async(target.ra, target.dec)
        except Exception as e:
            return StepResult.skip(SlewRejectedError(f"slew request failed: {e}"))
        if not accepted:
            return StepResult.skip(SlewRejectedError("mount rejected the slew"))

        try:
            waited = wait_until(
                lambda: not driver.is_slewing(),
                clock=self.clock,
                poll_interval=self.config.slew_poll_interval,
                max_polls=self.config.max_failsafe,
                cancel=cancel,
            )
        except Exception as e:
            return StepResult.skip(SlewTimeoutError(f"slew polling failed: {e}"))
        if waited.cancelled:
            return StepResult.skip(StepCancelledError("cancelled while slewing"))
        if not waited.completed:
            return StepResult.skip(
                SlewTimeoutError(f"slew still running after {waited.polls} polls")
            )
        logger.info("Slew complete", polls=waited.polls)
        return StepResult.ok()

    def _start_guiding(self, cancel: threading.Event) -> StepResult:
        self._enter(SessionState.GUIDING)
        config = self.config
        guider = self.setup.guider.driver
        reason = "no attempt made"

        for attempt in range(1, config.guide_attempts + 1):
            pixels, settle_time, timeout = config.settle_for_attempt(attempt)
            try:
                guider.stop_capture()
                if guider.guide(pixels, settle_time, timeout) is False:
                    reason = "guider refused to start"
                else:
                    waited = self._wait_settled(cancel)
                    if waited.cancelled:
                        return StepResult.skip(
                            StepCancelledError("cancelled while guiding")
                        )
                    if waited.completed and guider.is_guiding():
                        logger.info(
                            "Guiding settled",
                            attempt=attempt,
                            settle_pixels=pixels,
                            polls=waited.polls,
                        )
                        return StepResult.ok()
                    reason = (
                        "settle timed out" if not waited.completed else "not guiding"
                    )
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            logger.warning("Guide attempt failed", attempt=attempt, reason=reason)
            if attempt < config.guide_attempts:
                delay = config.guide_retry_delay * attempt
                if not self.clock.sleep(delay, cancel):
                    cancelled = StepCancelledError("cancelled while guiding")
                    return StepResult.skip(cancelled)

        return StepResult.skip(
            GuideStartError(
                f"guiding failed after {config.guide_attempts} attempts: {reason}"
            )
        )

    def _wait_settled(self, cancel: threading.Event | None) -> WaitResult:
        guider = self.setup.guider.driver
        return wait_until(
            lambda: not guider.is_settling(),
            clock=self.clock,
            poll_interval=self.config.settle_poll_interval,
            max_polls=self.config.max_failsafe,
            cancel=cancel,
        )

    def _mount_time(self) -> datetime:
        """UTC time reported by the mount.

        Raises:
            ClockUnavailableError: No time, or reading it failed.
        """
        try:
            utc = self.setup.mount.driver.utc_date
        except Exception as e:
            raise ClockUnavailableError(f"mount clock read failed: {e}") from e
        if utc is None:
            raise ClockUnavailableError("mount did not report a UTC time")
        if utc.tzinfo is None:
            utc = utc.replace(tzinfo=UTC)
        return utc

    def _expose(self, cancel: threading.Event) -> tuple[StepResult, Captured]:
        self._enter(SessionState.EXPOSING)
        config = self.config
        telescopes = list(enumerate(self.setup.telescopes))

        try:
            for _, telescope in telescopes:
                telescope.camera.driver.start_exposure(
                    config.exposure_seconds, light=True
                )
        except Exception:
            # exposures already started on other cameras must not keep running
            self._abort_exposures()
            raise
        logger.info("Exposure started", duration=config.exposure_seconds)

        if not self.clock.sleep(config.exposure_seconds, cancel):
            self._abort_exposures()
            return StepResult.skip(StepCancelledError("cancelled during exposure")), []

        captured: Captured = []
        for index, telescope in telescopes:
            camera = telescope.camera.driver
            waited = wait_until(
                lambda camera=camera: bool(camera.image_ready),
                clock=self.clock,
                poll_interval=config.image_ready_poll_interval,
                max_polls=config.image_ready_polls,
                cancel=cancel,
                backoff=config.image_ready_backoff,
                max_interval=config.image_ready_max_interval,
            )
            if waited.cancelled:
                self._abort_exposures()
                return StepResult.skip(StepCancelledError("cancelled in readout")), []
            image = camera.image if waited.completed else None
            if image is None:
                return (
                    StepResult.fatal(
                        ExposureTimeoutError(
                            f"{telescope.name}: no image after {waited.polls} polls"
                        )
                    ),
                    [],
                )
            captured.append((index, telescope, image))
        return StepResult.ok(), captured

    def _abort_exposures(self) -> None:
        for camera in self.setup.cameras():
            try:
                camera.driver.stop_exposure()
            except Exception as e:
                logger.warning(
                    "Stopping exposure failed", device=camera.name, error=str(e)
                )

    def _persist(
        self,
        target: Target,
        timestamp: datetime,
        captured: Captured,
        report: SessionReport,
    ) -> None:
        self._enter(SessionState.PERSISTING)
        folder = frame_folder(target, timestamp)
        for index, telescope, image in captured:
            self._frame_numbers[index] += 1
            frame_index = self._frame_numbers[index]
            try:
                path = self.writer.write_frame(
                    image,
                    target=target,
                    timestamp=timestamp,
                    folder=folder,
                    frame_index=frame_index,
                    telescope=telescope.name,
                    metadata={
                        "exposure_seconds": self.config.exposure_seconds,
                        "focal_length": telescope.focal_length,
                        "camera": telescope.camera.name,
                    },
                )
            except Exception as e:
                report.write_failures += 1
                logger.error(
                    "Frame write failed",
                    telescope=telescope.name,
                    frame_index=frame_index,
                    error=str(e),
                )
                continue
            report.frames_written.append(path)

    def _dither_due(self, frame: int) -> bool:
        every = self.config.dither_every
        return every > 0 and frame % every == 0

    def _dither(self, cancel: threading.Event) -> bool:
        self._enter(SessionState.DITHERING)
        guider = self.setup.guider.driver
        dither_pixels = self.config.dither_pixels
        pixels, settle_time, timeout = self.config.settle_for_attempt(1)
        try:
            if guider.dither(dither_pixels, pixels, settle_time, timeout) is False:
                return False
            waited = self._wait_settled(cancel)
            return waited.completed and bool(guider.is_guiding())
        except Exception as e:
            logger.warning("Dither raised", error=str(e))
            return False

    # -- exit actions --------------------------------------------------------

    def _finalise(self) -> dict[str, bool]:
        """Return the equipment to a safe state, exactly once.

        Each step runs even when an earlier one failed.

        Returns:
            Step name -> success.
        """
        if self._finalised:
            return {}
        self._finalised = True
        self._enter(SessionState.FINALISING)

        steps: list[tuple[str, Callable[[], None]]] = [
            ("stop_guiding", self._stop_guiding),
            ("tracking_off", self._tracking_off),
            ("close_covers", self._close_covers),
            ("warm_to_ambient", self._warm_to_ambient),
            ("cooling_off", self._cooling_off),
            ("disconnect_guider", lambda: _disconnect(self.setup.guider)),
            ("park", self._park),
            ("disconnect_mount", lambda: _disconnect(self.setup.mount)),
        ]
        results: dict[str, bool] = {}
        for name, step in steps:
            try:
                step()
                results[name] = True
            except Exception as e:
                results[name] = False
                logger.error("Teardown step failed", step=name, error=str(e))

        failed = [name for name, ok in results.items() if not ok]
        if failed:
            logger.warning("Equipment shutdown incomplete", failed=failed)
        else:
            logger.info("Equipment shut down")
        return results

    def _stop_guiding(self) -> None:
        if self.setup.guider.connected:
            self.setup.guider.driver.stop_capture()

    def _tracking_off(self) -> None:
        mount = self.setup.mount
        if mount.connected and mount.driver.can_set_tracking:
            mount.driver.tracking = False

    def _close_covers(self) -> None:
        errors: list[str] = []
        for telescope in self.setup.telescopes:
            cover = telescope.cover
            if cover is None or not cover.connected:
                continue
            driver = cover.driver
            if driver.cover_state in (CoverStatus.NOT_PRESENT, CoverStatus.CLOSED):
                continue
            try:
                driver.close_cover()
                waited = wait_until(
                    lambda: driver.cover_state
                    not in (CoverStatus.MOVING, CoverStatus.UNKNOWN),
                    clock=self.clock,
                    poll_interval=self.config.cover_poll_interval,
                    max_polls=self.config.max_failsafe,
                )
                if driver.cover_state is not CoverStatus.CLOSED:
                    errors.append(
                        f"{telescope.name}: not closed after {waited.polls} polls"
                    )
            except Exception as e:
                errors.append(f"{telescope.name}: {e}")
        if errors:
            raise CoverError("; ".join(errors))

    def _warm_to_ambient(self) -> None:
        """Ramp the cameras back up to their heat sink temperature.

        Runs to completion even after a cancel request.
        """
        result = ramp_cameras(
            self._connected_cameras(),
            ambient_target,
            CoolDirection.UP,
            power_limit=self.config.coolup_power_limit,
            clock=self.clock,
            interval=self.config.coolup_ramp_interval,
            max_steps=self.config.max_ramp_steps,
        )
        if not result.reached:
            raise RuntimeError(
                f"cameras not at ambient after {result.wait.polls} checks"
            )

    def _cooling_off(self) -> None:
        errors: list[str] = []
        for camera in self.setup.cameras():
            if not camera.connected or not camera.driver.can_set_cooler_on:
                continue
            try:
                camera.driver.cooler_on = False
            except Exception as e:
                errors.append(f"{camera.name}: {e}")
        if errors:
            raise RuntimeError("; ".join(errors))

    def _park(self) -> None:
        mount = self.setup.mount
        if not self.config.park_on_finish or not mount.connected:
            return
        driver = mount.driver
        if not driver.can_park or driver.at_park:
            return
        if driver.park() is False:
            raise ParkTimeoutError("mount refused to park")
        waited = wait_until(
            lambda: bool(driver.at_park),
            clock=self.clock,
            poll_interval=self.config.park_poll_interval,
            max_polls=self.config.max_failsafe,
        )
        if not waited.completed:
            raise ParkTimeoutError(f"mount not parked after {waited.polls} polls")
        logger.info("Mount parked", polls=waited.polls)


def _ensure_connected(device: ControllableDevice) -> None:
    if not device.connected:
        device.set_connected(True)


def _disconnect(device: ControllableDevice) -> None:
    if device.connected:
        device.set_connected(False)
