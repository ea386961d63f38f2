"""Frame persistence.

The session engine hands every captured frame to a FrameWriter. Two
writers ship with the package:

- AsdfFrameWriter: one ASDF file per frame, pixel data plus a ``meta``
  tree (the package's native format);
- FitsFrameWriter: one FITS file per frame with the usual observation
  keywords, for stacking software that only reads FITS.

Files are laid out as::

    <root>/<target>/<YYYY-MM-DD>/<telescope>_<YYYYmmddTHHMMSS>_<nnnn>.<ext>

where the ``<target>/<YYYY-MM-DD>`` folder is supplied by the caller
already sanitized with :func:`safe_filename`.

Example:
    writer = FitsFrameWriter(Path("/data/frames"))
    path = writer.write_frame(
        image,
        target=Target(ra=0.712, dec=41.27, name="M31"),
        timestamp=datetime.now(UTC),
        folder=frame_folder(target, timestamp),
        frame_index=1,
        telescope="Redcat 51",
    )
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import asdf
import numpy as np
from astropy.io import fits

from astro_sequencer.observability import get_logger

if TYPE_CHECKING:
    from astro_sequencer.sequencing.target import Target

logger = get_logger(__name__)

# Characters rejected in file names by at least one common filesystem
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def safe_filename(name: str) -> str:
    """Replace characters that are invalid in file names with ``_``.

    Example:
        >>> safe_filename("NGC 7000: North America?")
        'NGC 7000_ North America_'
    """
    cleaned = _INVALID_FILENAME_CHARS.sub("_", name).strip()
    if cleaned in {"", ".", ".."}:
        return "_"
    return cleaned


def frame_folder(target: Target, timestamp: datetime) -> PurePath:
    """Relative, sanitized ``<target>/<date>`` folder for a frame."""
    return PurePath(
        safe_filename(target.name or "unnamed"),
        safe_filename(timestamp.strftime("%Y-%m-%d")),
    )


def frame_stem(telescope: str, timestamp: datetime, frame_index: int) -> str:
    return safe_filename(
        f"{telescope}_{timestamp.strftime('%Y%m%dT%H%M%S')}_{frame_index:04d}"
    )


def frame_metadata(
    target: Target,
    timestamp: datetime,
    frame_index: int,
    telescope: str,
    extra: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Common metadata recorded by every writer."""
    meta: dict[str, Any] = {
        "target": target.name,
        "ra_hours": target.ra,
        "dec_degrees": target.dec,
        "date_obs": timestamp.isoformat(),
        "frame_index": frame_index,
        "telescope": telescope,
    }
    if extra:
        meta.update(extra)
    return meta


@runtime_checkable
class FrameWriter(Protocol):  # pragma: no cover
    """Persists one captured frame and returns where it went."""

    def write_frame(
        self,
        image: np.ndarray,
        *,
        target: Target,
        timestamp: datetime,
        folder: PurePath,
        frame_index: int,
        telescope: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Path:
        """Write ``image`` under ``folder`` relative to the writer's root.

        Raises:
            OSError: The file could not be written.
        """
        ...


class _FileFrameWriter:
    """Shared path handling for the file-based writers."""

    extension = ""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _output_path(
        self,
        folder: PurePath,
        telescope: str,
        timestamp: datetime,
        frame_index: int,
    ) -> Path:
        if folder.is_absolute() or ".." in folder.parts:
            raise ValueError(f"Frame folder must be relative, got {folder}")
        directory = self.root / folder
        directory.mkdir(parents=True, exist_ok=True)
        stem = frame_stem(telescope, timestamp, frame_index)
        return directory / f"{stem}.{self.extension}"


class AsdfFrameWriter(_FileFrameWriter):
    """Writes each frame as an ASDF file with ``data`` and ``meta`` keys."""

    extension = "asdf"

    def write_frame(
        self,
        image: np.ndarray,
        *,
        target: Target,
        timestamp: datetime,
        folder: PurePath,
        frame_index: int,
        telescope: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Path:
        path = self._output_path(folder, telescope, timestamp, frame_index)
        meta = frame_metadata(target, timestamp, frame_index, telescope, metadata)
        tree = {
            "meta": meta,
            "data": np.asarray(image),
        }
        asdf.AsdfFile(tree).write_to(path)
        logger.info("Frame written", path=str(path), format="asdf")
        return path


def fits_text(value: str) -> str:
    """Printable-ASCII form of ``value`` for a FITS header card.

    FITS header values allow printable ASCII only. Other characters are
    written as backslash escapes so names stay recognisable.

    Example:
        >>> fits_text("η Carinae")
        '\\\\u03b7 Carinae'
    """
    text = value.encode("ascii", "backslashreplace").decode("ascii")
    return "".join(c if c.isprintable() else f"\\x{ord(c):02x}" for c in text)


# FITS keyword for each metadata key; keys not listed are stored as HIERARCH
_FITS_KEYWORDS = {
    "target": "OBJECT",
    "date_obs": "DATE-OBS",
    "telescope": "TELESCOP",
    "frame_index": "FRAMENUM",
    "exposure_seconds": "EXPTIME",
    "focal_length": "FOCALLEN",
    "camera": "INSTRUME",
    "ccd_temperature": "CCD-TEMP",
}


class FitsFrameWriter(_FileFrameWriter):
    """Writes each frame as a single-HDU FITS file."""

    extension = "fits"

    def write_frame(
        self,
        image: np.ndarray,
        *,
        target: Target,
        timestamp: datetime,
        folder: PurePath,
        frame_index: int,
        telescope: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Path:
        path = self._output_path(folder, telescope, timestamp, frame_index)
        hdu = fits.PrimaryHDU(np.asarray(image))
        header = hdu.header
        meta = frame_metadata(target, timestamp, frame_index, telescope, metadata)
        header["RA"] = (target.ra * 15.0, "[deg] J2000 right ascension")
        header["DEC"] = (target.dec, "[deg] J2000 declination")
        header["IMAGETYP"] = "Light Frame"
        for key, value in meta.items():
            if value is None or key in ("ra_hours", "dec_degrees"):
                continue
            keyword = _FITS_KEYWORDS.get(key, f"HIERARCH {key.upper()}")
            if not isinstance(value, int | float):
                value = fits_text(str(value))
            header[keyword] = value
        hdu.writeto(path, overwrite=False)
        logger.info("Frame written", path=str(path), format="fits")
        return path
