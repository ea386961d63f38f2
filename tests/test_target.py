"""Tests for observation targets."""

from __future__ import annotations

import math

import pytest

from astro_sequencer.sequencing import Target


class TestTarget:
    """Validation and sexagesimal rendering."""

    def test_str_includes_name_and_sexagesimal(self) -> None:
        target = Target(ra=5.5881, dec=-5.3911, name="M42")
        assert str(target) == "(M42; 05h35m17.16s, -05d23m27.96s)"

    def test_positive_dec_signed(self) -> None:
        assert Target(ra=0.712, dec=41.27).dec_dms.startswith("+41d16m")

    def test_ra_hms_zero_padded(self) -> None:
        assert Target(ra=1.5, dec=0.0).ra_hms == "01h30m00.00s"

    @pytest.mark.parametrize(
        "ra, dec",
        [
            (24.0, 0.0),
            (-0.1, 0.0),
            (1.0, 90.5),
            (1.0, -91.0),
            (math.nan, 0.0),
            (1.0, math.inf),
        ],
    )
    def test_out_of_range_rejected(self, ra: float, dec: float) -> None:
        with pytest.raises(ValueError):
            Target(ra=ra, dec=dec)

    def test_frozen(self) -> None:
        target = Target(ra=1.0, dec=2.0, name="x")
        with pytest.raises(AttributeError):
            target.ra = 3.0  # type: ignore[misc]
