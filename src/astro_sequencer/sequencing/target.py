"""Observation targets."""

from __future__ import annotations

import math
from dataclasses import dataclass

import astropy.units as u
from astropy.coordinates import Angle


@dataclass(frozen=True)
class Target:
    """A named J2000 position.

    Attributes:
        ra: Right ascension in hours, ``0 <= ra < 24``.
        dec: Declination in degrees, ``-90 <= dec <= 90``.
        name: Catalogue designation or free text.

    Raises:
        ValueError: Coordinates out of range or not finite.

    Example:
        >>> str(Target(ra=5.5881, dec=-5.3911, name="M42"))
        '(M42; 05h35m17.16s, -05d23m27.96s)'
    """

    ra: float
    dec: float
    name: str = ""

    def __post_init__(self) -> None:
        if not (math.isfinite(self.ra) and 0.0 <= self.ra < 24.0):
            raise ValueError(f"ra must be in [0, 24) hours, got {self.ra}")
        if not (math.isfinite(self.dec) and -90.0 <= self.dec <= 90.0):
            raise ValueError(f"dec must be in [-90, 90] degrees, got {self.dec}")

    @property
    def ra_hms(self) -> str:
        return Angle(self.ra, unit=u.hourangle).to_string(
            unit=u.hourangle, precision=2, pad=True
        )

    @property
    def dec_dms(self) -> str:
        return Angle(self.dec, unit=u.deg).to_string(
            unit=u.deg, precision=2, pad=True, alwayssign=True
        )

    def __str__(self) -> str:
        return f"({self.name}; {self.ra_hms}, {self.dec_dms})"
