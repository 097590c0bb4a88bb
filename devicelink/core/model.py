"""Core data models shared by the schema builder, engine, loader and CLI."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from devicelink.transports.base import CharacteristicHandle

VALUE_TYPE = "dynamic"

WriteBack = Callable[[str, Any], None]
Reader = Callable[[Mapping[str, Mapping[str, Any]]], Any]
Writer = Callable[[Any, WriteBack], None]


class Operation(str, Enum):
    GET = "GET"
    PUT = "PUT"


class ConnectivityState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RegistrationState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED_UNREGISTERED = "connected-unregistered"
    CONNECTED_REGISTERED = "connected-registered"


@dataclass(frozen=True)
class CharacteristicState:
    """Current value of one characteristic plus the handle used to write it back."""

    value: Any
    handle: CharacteristicHandle | None = None


DeviceSnapshot = Mapping[str, Mapping[str, CharacteristicState]]


@dataclass(frozen=True)
class ResourceDescriptor:
    path: str
    operation: tuple[Operation, ...]
    value: str = ""
    observable: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "valueType": VALUE_TYPE,
            "operation": [op.value for op in self.operation],
            "value": self.value,
        }
        if self.observable is not None:
            data["observable"] = self.observable
        return data


@dataclass(frozen=True)
class MatchRules:
    name_contains: tuple[str, ...] = ()
    mac_prefix: tuple[str, ...] = ()


@dataclass(frozen=True)
class CloudDefinition:
    """Read/write mapping that bridges one kind of device into the remote service.

    ``read`` maps a path suffix to a function of the simplified snapshot;
    ``write`` maps a path suffix to a function receiving the written value and
    a write-back callable. Both mappings are frozen on construction.
    """

    id: str
    name: str
    read: Mapping[str, Reader] = field(default_factory=dict)
    write: Mapping[str, Writer] = field(default_factory=dict)
    match: MatchRules = field(default_factory=MatchRules)

    def __post_init__(self) -> None:
        object.__setattr__(self, "read", MappingProxyType(dict(self.read)))
        object.__setattr__(self, "write", MappingProxyType(dict(self.write)))

    def resource_keys(self) -> list[str]:
        keys: list[str] = []
        for key in (*self.read, *self.write):
            if key not in keys:
                keys.append(key)
        return keys


@dataclass(frozen=True)
class DetectedDevice:
    mac: str
    name: str
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValueChange:
    path: str
    value: str
