"""Derive the remote resource model from a device snapshot."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from devicelink.cloud.base import CloudResource
from devicelink.core.model import CloudDefinition, DeviceSnapshot, Operation, ResourceDescriptor

LOGGER = logging.getLogger(__name__)


def simplify_snapshot(snapshot: DeviceSnapshot) -> dict[str, dict[str, Any]]:
    """Reduce every characteristic of *snapshot* to its current value."""
    return {
        service: {char: state.value for char, state in characteristics.items()}
        for service, characteristics in snapshot.items()
    }


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return str(value)


def build_descriptors(
    snapshot: DeviceSnapshot,
    definition: CloudDefinition,
    remote_resources: Mapping[str, CloudResource] | None = None,
) -> list[ResourceDescriptor]:
    """Build one descriptor per resource key of *definition*, reads first.

    A reader that fails or yields nothing falls back to the value the remote
    service currently holds for the path, else to an empty string.
    """
    remote_resources = remote_resources or {}
    simplified = simplify_snapshot(snapshot)

    descriptors: list[ResourceDescriptor] = []
    for key in definition.resource_keys():
        path = "/" + key
        reader = definition.read.get(key)

        operation: list[Operation] = []
        if reader is not None:
            operation.append(Operation.GET)
        if key in definition.write:
            operation.append(Operation.PUT)

        value = ""
        if reader is not None:
            try:
                value = _stringify(reader(simplified))
            except Exception as exc:
                LOGGER.debug("Reader for %s failed: %r", path, exc)

        if not value and path in remote_resources:
            value = remote_resources[path].value

        descriptors.append(
            ResourceDescriptor(
                path=path,
                operation=tuple(operation),
                value=value,
                observable=True if reader is not None else None,
            )
        )
    return descriptors
