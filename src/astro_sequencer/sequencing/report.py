"""Session outcome summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class SessionReport:
    """What happened to each target, numbered from 1.

    Attributes:
        total_targets: Number of targets in the session.
        completed: Targets imaged and persisted.
        skipped: Target number -> reason for targets skipped after a
            recoverable failure or cancellation.
        aborted_at: Target during which a fatal error ended the loop.
        error: Message of the fatal error, if any.
        cancelled: Whether the session was cancelled.
        frames_written: Paths returned by the frame writer.
        write_failures: Frames the writer failed to persist.
        teardown: Teardown step -> success.
    """

    total_targets: int
    completed: list[int] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)
    aborted_at: int | None = None
    error: str | None = None
    cancelled: bool = False
    frames_written: list[Path] = field(default_factory=list)
    write_failures: int = 0
    teardown: dict[str, bool] = field(default_factory=dict)

    @property
    def not_attempted(self) -> list[int]:
        """Targets the loop never reached."""
        seen = set(self.completed) | set(self.skipped)
        if self.aborted_at is not None:
            seen.add(self.aborted_at)
        last = max(seen, default=0)
        return list(range(last + 1, self.total_targets + 1))

    @property
    def succeeded(self) -> bool:
        """True when nothing was aborted, cancelled or left unattempted."""
        return (
            self.aborted_at is None
            and self.error is None
            and not self.cancelled
            and not self.not_attempted
        )

    @property
    def clean_shutdown(self) -> bool:
        return all(self.teardown.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_targets": self.total_targets,
            "completed": list(self.completed),
            "skipped": sorted(self.skipped),
            "skip_reasons": dict(self.skipped),
            "aborted_at": self.aborted_at,
            "not_attempted": self.not_attempted,
            "error": self.error,
            "cancelled": self.cancelled,
            "frames_written": [str(p) for p in self.frames_written],
            "write_failures": self.write_failures,
            "teardown": dict(self.teardown),
        }
