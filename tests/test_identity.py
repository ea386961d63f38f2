"""Tests for device identities and their URI form."""

from __future__ import annotations

import pytest

from astro_sequencer.devices import (
    DeviceClass,
    DeviceIdentity,
    IdentityError,
    MalformedIdentityError,
    UnknownKindError,
    encode_identity,
    new_identity,
    parse_identity,
)


class TestDeviceClass:
    """DeviceClass.parse lookups."""

    @pytest.mark.parametrize("token", ["mount", "MOUNT", " Mount "])
    def test_parse_ignores_case_and_whitespace(self, token: str) -> None:
        assert DeviceClass.parse(token) is DeviceClass.MOUNT

    def test_filter_wheel_serialized_name(self) -> None:
        assert DeviceClass.parse("filterwheel") is DeviceClass.FILTER_WHEEL

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(UnknownKindError, match="telescope"):
            DeviceClass.parse("telescope")


class TestEncode:
    """Serialization to device:// URIs."""

    def test_encode_documented_form(self) -> None:
        """Encoding matches the documented URI layout.

        Arrangement:
        1. Identity with a display name containing a space.

        Action:
        Encode it.

        Assertion Strategy:
        Validates layout by confirming scheme, backend key, id, the
        percent-encoded display name and the kind fragment.
        """
        ident = DeviceIdentity(DeviceClass.MOUNT, "EQ6-R", "EQ6-R Pro", "twin")
        assert ident.encode() == "device://twin/EQ6-R?displayName=EQ6-R%20Pro#mount"

    def test_encode_escapes_reserved_characters(self) -> None:
        ident = DeviceIdentity(DeviceClass.CAMERA, "usb/1?x#y", "A&B", "ascom")
        encoded = ident.encode()
        assert encoded.count("/") == 3
        assert encoded.count("?") == 1
        assert encoded.count("#") == 1

    def test_module_helpers_match_methods(self) -> None:
        ident = new_identity(DeviceClass.GUIDER, "phd2", "PHD2")
        assert encode_identity(ident) == ident.encode()
        assert parse_identity(ident.encode()) == ident


class TestRoundTrip:
    """parse(encode(x)) == x for awkward identities."""

    @pytest.mark.parametrize(
        "ident",
        [
            DeviceIdentity(DeviceClass.CAMERA, "ZWO ASI2600MM", "Main cam", "zwo"),
            DeviceIdentity(DeviceClass.COVER, "com3/flat?panel", "", "alpaca"),
            DeviceIdentity(DeviceClass.FILTER_WHEEL, "efw#1", "EFW 7x36", "zwo"),
            DeviceIdentity(DeviceClass.SWITCH, "pb-ä", "Powerbox ü", "pegasus"),
        ],
    )
    def test_round_trip(self, ident: DeviceIdentity) -> None:
        parsed = DeviceIdentity.parse(ident.encode())
        assert parsed == ident
        assert parsed.display_name == ident.display_name
        assert parsed.backend_key == ident.backend_key

    def test_missing_display_name_parses_empty(self) -> None:
        parsed = DeviceIdentity.parse("device://twin/m1#mount")
        assert parsed.display_name == ""
        assert parsed.label == "m1"


class TestEquality:
    """Display name is informational only."""

    def test_display_name_ignored(self) -> None:
        a = DeviceIdentity(DeviceClass.MOUNT, "m1", "Mount", "twin")
        b = DeviceIdentity(DeviceClass.MOUNT, "m1", "Renamed", "twin")
        assert a == b
        assert hash(a) == hash(b)

    def test_kind_backend_and_id_significant(self) -> None:
        base = DeviceIdentity(DeviceClass.MOUNT, "m1", "", "twin")
        assert base != DeviceIdentity(DeviceClass.CAMERA, "m1", "", "twin")
        assert base != DeviceIdentity(DeviceClass.MOUNT, "m2", "", "twin")
        assert base != DeviceIdentity(DeviceClass.MOUNT, "m1", "", "ascom")


class TestValidation:
    """Construction and parse failures."""

    def test_empty_backend_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            DeviceIdentity(DeviceClass.MOUNT, "")

    def test_kind_must_be_enum(self) -> None:
        with pytest.raises(TypeError):
            DeviceIdentity("mount", "m1")  # type: ignore[arg-type]

    @pytest.mark.parametrize(
        "encoded",
        [
            "",
            "http://twin/m1#mount",
            "device:///m1#mount",
            "device://twin/#mount",
            "device://twin/m1",
        ],
    )
    def test_malformed(self, encoded: str) -> None:
        with pytest.raises(MalformedIdentityError):
            DeviceIdentity.parse(encoded)

    def test_unknown_kind(self) -> None:
        with pytest.raises(UnknownKindError):
            DeviceIdentity.parse("device://twin/m1#telescope")

    def test_errors_share_base(self) -> None:
        assert issubclass(MalformedIdentityError, IdentityError)
        assert issubclass(UnknownKindError, IdentityError)
        assert issubclass(IdentityError, ValueError)
