"""Pick the cloud definition a discovered BLE device is bridged with."""

from __future__ import annotations

from collections.abc import Mapping

from devicelink.core.errors import DefinitionSelectionError
from devicelink.core.model import CloudDefinition, DetectedDevice

# Generic Access and Generic Attribute are hosted by every peripheral.
GENERIC_SERVICES = frozenset(
    {
        "00001800-0000-1000-8000-00805f9b34fb",
        "00001801-0000-1000-8000-00805f9b34fb",
    }
)

SERVICE_WEIGHT = 4
MAC_PREFIX_WEIGHT = 2
NAME_WEIGHT = 1


def definition_services(definition: CloudDefinition) -> frozenset[str]:
    """GATT services the definition's rules read from or write to.

    Plain callables carry no service and are skipped.
    """
    rules = (*definition.read.values(), *definition.write.values())
    services = {getattr(rule, "service", None) for rule in rules}
    return frozenset(service.lower() for service in services if service) - GENERIC_SERVICES


def match_score(device: DetectedDevice, definition: CloudDefinition) -> int:
    """Rank how well *definition* fits *device*; 0 means it does not fit at all.

    An advertised service the definition talks to outweighs a vendor MAC
    prefix, which outweighs a name token.
    """
    score = 0
    advertised = {uuid.lower() for uuid in device.service_uuids}
    if advertised & definition_services(definition):
        score += SERVICE_WEIGHT
    if any(device.mac.upper().startswith(prefix) for prefix in definition.match.mac_prefix):
        score += MAC_PREFIX_WEIGHT
    lower_name = device.name.lower()
    if any(token.lower() in lower_name for token in definition.match.name_contains):
        score += NAME_WEIGHT
    return score


def best_definition_for_device(
    device: DetectedDevice,
    definitions: Mapping[str, CloudDefinition],
) -> CloudDefinition | None:
    # max() keeps the first of equally scored definitions
    best = max(definitions.values(), key=lambda definition: match_score(device, definition), default=None)
    if best is None or match_score(device, best) == 0:
        return None
    return best


def resolve_definition(
    definitions: Mapping[str, CloudDefinition],
    device: DetectedDevice,
    definition_id: str | None = None,
) -> CloudDefinition:
    if definition_id:
        definition = definitions.get(definition_id)
        if definition is None:
            raise DefinitionSelectionError(
                f"Unknown definition '{definition_id}'. Use 'devicelink definitions' to inspect available definitions."
            )
        return definition

    definition = best_definition_for_device(device, definitions)
    if definition is None:
        raise DefinitionSelectionError(
            f"No definition matched {device.mac} ({device.name}). Use --definition to target explicitly."
        )
    return definition
