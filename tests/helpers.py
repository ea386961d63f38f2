"""Test helper functions for astro-sequencer.

Provides utilities for protocol compliance verification.

Example:
    from tests.helpers import assert_implements_protocol
    from astro_sequencer.drivers.types import MountDriver

    def test_my_mount_implements_protocol():
        mount = MyMount("EQ6-R")
        assert_implements_protocol(mount, MountDriver)
"""

from __future__ import annotations

from typing import Any


def assert_implements_protocol(instance: object, protocol: type) -> None:
    """Assert that an instance implements a Protocol interface.

    Uses isinstance() (requires @runtime_checkable on the Protocol) and,
    on failure, lists the protocol members the instance lacks.

    Business context: fakes used by the session tests and the digital
    twin drivers must stay interchangeable with real backends. Catching
    a missing member here is cheaper than a confusing AttributeError in
    the middle of a session test.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: If instance doesn't implement protocol.
        TypeError: If protocol is not @runtime_checkable.

    Example:
        >>> assert_implements_protocol(DigitalTwinCamera("A"), CameraDriver)
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_members = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(m for m in protocol_members if not hasattr(instance, m))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(instances: list[Any], protocol: type) -> None:
    """Assert that all instances in a list implement a Protocol.

    Raises:
        AssertionError: If any instance doesn't implement protocol.
    """
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e
