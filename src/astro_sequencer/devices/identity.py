"""Backend-neutral device identity.

A DeviceIdentity names one physical or simulated device without holding
any live handle to it. Identities are produced by a backend's device
source (or parsed from their persisted form) and later turned into a
driver by the registry.

The persisted form is a URI:

    device://<backend_key>/<backend_id>?displayName=<display_name>#<kind>

Every component is percent-encoded, so ids containing ``/``, ``?`` or
spaces survive the round trip. The display name is informational: two
identities that differ only in display name are the same device.

Example:
    >>> ident = DeviceIdentity(DeviceClass.MOUNT, "EQ6-R", "EQ6-R Pro", "twin")
    >>> ident.encode()
    'device://twin/EQ6-R?displayName=EQ6-R%20Pro#mount'
    >>> DeviceIdentity.parse(ident.encode()) == ident
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import parse_qs, quote, unquote, urlsplit

IDENTITY_SCHEME = "device"


class IdentityError(ValueError):
    """Base for identity parsing failures."""


class MalformedIdentityError(IdentityError):
    """The string is not a well-formed device identity URI."""


class UnknownKindError(IdentityError):
    """The kind component does not name a known device class."""


class DeviceClass(Enum):
    """Kinds of equipment a backend can expose."""

    MOUNT = "mount"
    CAMERA = "camera"
    GUIDER = "guider"
    FOCUSER = "focuser"
    FILTER_WHEEL = "filterwheel"
    COVER = "cover"
    SWITCH = "switch"
    NONE = "none"

    @classmethod
    def parse(cls, token: str) -> DeviceClass:
        """Look up a kind by its serialized name, ignoring case.

        Raises:
            UnknownKindError: ``token`` is not one of the enum values.
        """
        try:
            return cls(token.strip().lower())
        except ValueError:
            raise UnknownKindError(f"Unknown device kind: {token!r}") from None


@dataclass(frozen=True)
class DeviceIdentity:
    """Immutable handle-free description of a device.

    Attributes:
        kind: Device class the backend serves this id as.
        backend_id: Backend-scoped id (driver ProgID, serial number, ...).
        display_name: Human friendly label, excluded from equality.
        backend_key: Registry key of the backend that owns the id.
    """

    kind: DeviceClass
    backend_id: str
    display_name: str = field(default="", compare=False)
    backend_key: str = "twin"

    def __post_init__(self) -> None:
        if not isinstance(self.kind, DeviceClass):
            raise TypeError(f"kind must be a DeviceClass, got {self.kind!r}")
        if not self.backend_id:
            raise ValueError("backend_id must not be empty")
        if not self.backend_key:
            raise ValueError("backend_key must not be empty")

    @property
    def label(self) -> str:
        """Display name, falling back to the backend id."""
        return self.display_name or self.backend_id

    def encode(self) -> str:
        """Serialize to the ``device://`` URI form."""
        return (
            f"{IDENTITY_SCHEME}://{quote(self.backend_key, safe='')}"
            f"/{quote(self.backend_id, safe='')}"
            f"?displayName={quote(self.display_name, safe='')}"
            f"#{self.kind.value}"
        )

    @classmethod
    def parse(cls, encoded: str) -> DeviceIdentity:
        """Rebuild an identity from :meth:`encode` output.

        Raises:
            MalformedIdentityError: Wrong scheme, or the backend key, id
                or kind component is missing.
            UnknownKindError: The kind component is not a DeviceClass.
        """
        if not isinstance(encoded, str) or not encoded:
            raise MalformedIdentityError("Identity string is empty")

        try:
            parts = urlsplit(encoded)
        except ValueError as e:
            raise MalformedIdentityError(f"Not a URI: {encoded!r}") from e

        if parts.scheme != IDENTITY_SCHEME:
            raise MalformedIdentityError(
                f"Expected scheme {IDENTITY_SCHEME!r}, got {parts.scheme!r}"
            )
        if not parts.netloc:
            raise MalformedIdentityError(f"Missing backend key in {encoded!r}")

        backend_id = unquote(parts.path.lstrip("/"))
        if not backend_id:
            raise MalformedIdentityError(f"Missing backend id in {encoded!r}")
        if not parts.fragment:
            raise MalformedIdentityError(f"Missing device kind in {encoded!r}")

        query = parse_qs(parts.query, keep_blank_values=True)
        display_name = query.get("displayName", [""])[0]

        return cls(
            kind=DeviceClass.parse(unquote(parts.fragment)),
            backend_id=backend_id,
            display_name=display_name,
            backend_key=unquote(parts.netloc),
        )


def new_identity(
    kind: DeviceClass,
    backend_id: str,
    display_name: str = "",
    backend_key: str = "twin",
) -> DeviceIdentity:
    """Create an identity; same as calling the dataclass directly."""
    return DeviceIdentity(kind, backend_id, display_name, backend_key)


def encode_identity(identity: DeviceIdentity) -> str:
    """Serialize ``identity``; see :meth:`DeviceIdentity.encode`."""
    return identity.encode()


def parse_identity(encoded: str) -> DeviceIdentity:
    """Parse an encoded identity; see :meth:`DeviceIdentity.parse`."""
    return DeviceIdentity.parse(encoded)
