"""Frame persistence: ASDF and FITS writers.

Example:
    from pathlib import Path

    from astro_sequencer.data import AsdfFrameWriter

    writer = AsdfFrameWriter(Path("/data/frames"))
    session = Session(setup, targets, writer=writer)
"""

from astro_sequencer.data.frames import (
    AsdfFrameWriter,
    FitsFrameWriter,
    FrameWriter,
    fits_text,
    frame_folder,
    frame_metadata,
    safe_filename,
)

__all__ = [
    "AsdfFrameWriter",
    "FitsFrameWriter",
    "FrameWriter",
    "fits_text",
    "frame_folder",
    "frame_metadata",
    "safe_filename",
]
