"""Stable public API for hosting device links in another process.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from devicelink.cloud.base import CloudDevice, CloudResource
from devicelink.core.bridge import CloudFactory, DeviceLinkBridge
from devicelink.core.definition_loader import LoadedDefinitions, build_definition, load_definitions
from devicelink.core.diff import DiffKind, ModelDiff, diff_models, schema_fingerprint
from devicelink.core.engine import DeviceLink, LinkEvent, LinkListener, ReconcileOutcome
from devicelink.core.errors import (
    DefinitionLoadError,
    DefinitionSelectionError,
    DefinitionValidationError,
    DevicelinkError,
    DeviceNotFoundError,
    PayloadError,
    TransportConnectError,
    TransportError,
    TransportWriteError,
)
from devicelink.core.formats import ReadRule, WriteRule
from devicelink.core.model import (
    CharacteristicState,
    CloudDefinition,
    ConnectivityState,
    DetectedDevice,
    DeviceSnapshot,
    MatchRules,
    Operation,
    RegistrationState,
    ResourceDescriptor,
    ValueChange,
)
from devicelink.core.schema import build_descriptors
from devicelink.transports.base import CharacteristicHandle
from devicelink.transports.ble_gatt import BLEGATTSession, read_device_snapshot

__all__ = [
    "DevicelinkError",
    "DefinitionLoadError",
    "DefinitionSelectionError",
    "DefinitionValidationError",
    "DeviceNotFoundError",
    "PayloadError",
    "TransportError",
    "TransportConnectError",
    "TransportWriteError",
    "CharacteristicHandle",
    "CharacteristicState",
    "CloudDefinition",
    "CloudDevice",
    "CloudFactory",
    "CloudResource",
    "ConnectivityState",
    "DetectedDevice",
    "DeviceSnapshot",
    "MatchRules",
    "Operation",
    "RegistrationState",
    "ResourceDescriptor",
    "ValueChange",
    "ReadRule",
    "WriteRule",
    "LoadedDefinitions",
    "build_definition",
    "load_definitions",
    "DiffKind",
    "ModelDiff",
    "diff_models",
    "schema_fingerprint",
    "build_descriptors",
    "DeviceLink",
    "LinkEvent",
    "LinkListener",
    "ReconcileOutcome",
    "DeviceLinkBridge",
    "BLEGATTSession",
    "read_device_snapshot",
]
