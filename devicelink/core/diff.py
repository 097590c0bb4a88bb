"""Classify the difference between a freshly built model and the remote one."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from devicelink.cloud.base import CloudResource
from devicelink.core.model import ResourceDescriptor, ValueChange


class DiffKind(str, Enum):
    SCHEMA_CHANGED = "schema-changed"
    VALUES_CHANGED = "values-changed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ModelDiff:
    schema_changed: bool
    value_changes: tuple[ValueChange, ...]

    @property
    def kind(self) -> DiffKind:
        if self.schema_changed:
            return DiffKind.SCHEMA_CHANGED
        if self.value_changes:
            return DiffKind.VALUES_CHANGED
        return DiffKind.UNCHANGED


def _operation_names(operation: Iterable[Any]) -> list[str]:
    return [op.value if isinstance(op, Enum) else str(op) for op in operation]


def schema_fingerprint(resources: Iterable[ResourceDescriptor | CloudResource]) -> str:
    """Serialize the value-independent shape of *resources*, in order."""
    shape: list[dict[str, Any]] = []
    for resource in resources:
        entry: dict[str, Any] = {
            "path": resource.path,
            "operation": _operation_names(resource.operation),
        }
        observable = getattr(resource, "observable", None)
        if observable is not None:
            entry["observable"] = observable
        shape.append(entry)
    return json.dumps(shape, sort_keys=True, separators=(",", ":"))


def diff_models(
    current: Sequence[ResourceDescriptor],
    last_reconciled: Sequence[ResourceDescriptor],
    remote_resources: Mapping[str, CloudResource],
) -> ModelDiff:
    schema_changed = schema_fingerprint(current) != schema_fingerprint(remote_resources.values())

    previous = {descriptor.path: descriptor.value for descriptor in last_reconciled}
    changes: list[ValueChange] = []
    for descriptor in current:
        if descriptor.path in previous:
            old_value = previous[descriptor.path]
        elif descriptor.path in remote_resources:
            old_value = remote_resources[descriptor.path].value
        else:
            old_value = None
        if descriptor.value != old_value:
            changes.append(ValueChange(path=descriptor.path, value=descriptor.value))

    return ModelDiff(schema_changed=schema_changed, value_changes=tuple(changes))
