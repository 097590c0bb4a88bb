"""Loading and validation of YAML-based cloud definitions."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from devicelink.core.errors import DefinitionLoadError, DefinitionValidationError
from devicelink.core.formats import ReadRule, WriteRule
from devicelink.core.model import CloudDefinition, MatchRules

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_BLUETOOTH_BASE_UUID = "-0000-1000-8000-00805f9b34fb"
_MAX_PAYLOAD_BYTES = 512
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise DefinitionValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedDefinitions:
    definitions: dict[str, CloudDefinition]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("devicelink.schemas").joinpath("definition.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _definition_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    # later directories override earlier ones
    return xdg_data / "devicelink/definitions", xdg_config / "devicelink/definitions"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DefinitionLoadError(f"Could not read definition file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise DefinitionValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise DefinitionValidationError(f"Definition file {path} must contain a mapping at root")
    return loaded


def _normalize_hex(value: Any, *, context: str) -> bytes:
    normalized = str(value).strip().lower().replace(" ", "")
    if len(normalized) == 0:
        raise DefinitionValidationError(f"{context} must not be empty")
    if len(normalized) % 2 != 0:
        raise DefinitionValidationError(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise DefinitionValidationError(f"{context} must contain only [0-9a-f]")
    payload = bytes.fromhex(normalized)
    if len(payload) > _MAX_PAYLOAD_BYTES:
        raise DefinitionValidationError(
            f"{context} exceeds max payload size {_MAX_PAYLOAD_BYTES} bytes"
        )
    return payload


def _normalize_mac_prefix(prefix: str) -> str:
    return prefix.strip().upper()


def normalize_uuid(value: str, *, context: str) -> str:
    """Return the lowercase 128-bit form of a 16-, 32- or 128-bit UUID string."""
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise DefinitionValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    if len(normalized) == 4:
        return f"0000{normalized}{_BLUETOOTH_BASE_UUID}"
    if len(normalized) == 8:
        return f"{normalized}{_BLUETOOTH_BASE_UUID}"
    return normalized


def _split_characteristic_path(value: str, *, context: str) -> tuple[str, str]:
    service, _, char = value.partition("/")
    return (
        normalize_uuid(service, context=f"{context} service"),
        normalize_uuid(char, context=f"{context} characteristic"),
    )


def _build_read_rule(spec: dict[str, Any], *, context: str) -> ReadRule:
    service, char = _split_characteristic_path(spec["source"], context=f"{context}.source")
    labels = {
        _normalize_hex(payload, context=f"{context}.values.{payload}").hex(): str(label)
        for payload, label in spec.get("values", {}).items()
    }
    divisor = spec.get("divisor")
    return ReadRule(
        service=service,
        characteristic=char,
        format=spec.get("format", "hex"),
        divisor=float(divisor) if divisor is not None else None,
        labels=labels,
    )


def _build_write_rule(spec: dict[str, Any], *, context: str) -> WriteRule:
    service, char = _split_characteristic_path(spec["target"], context=f"{context}.target")
    payloads = {
        str(label): _normalize_hex(payload, context=f"{context}.values.{label}")
        for label, payload in spec.get("values", {}).items()
    }
    return WriteRule(
        service=service,
        characteristic=char,
        format=spec.get("format", "raw"),
        payloads=payloads,
    )


def build_definition(doc: dict[str, Any], source: Path | Traversable | str) -> CloudDefinition:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise DefinitionValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    read = {
        str(key): _build_read_rule(spec, context=f"{doc['id']}.read.{key}")
        for key, spec in doc.get("read", {}).items()
    }
    write = {
        str(key): _build_write_rule(spec, context=f"{doc['id']}.write.{key}")
        for key, spec in doc.get("write", {}).items()
    }

    return CloudDefinition(
        id=doc["id"],
        name=doc["name"],
        read=read,
        write=write,
        match=MatchRules(
            name_contains=tuple(doc["match"].get("name_contains", [])),
            mac_prefix=tuple(_normalize_mac_prefix(p) for p in doc["match"].get("mac_prefix", [])),
        ),
    )


def _iter_packaged_definition_paths() -> list[Traversable]:
    definition_root = resources.files("devicelink.definitions")
    return [item for item in definition_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_definition_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _definition_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_definitions() -> LoadedDefinitions:
    definitions: dict[str, CloudDefinition] = {}
    user_sources: dict[str, Path] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_definition_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        definition = build_definition(doc, path)
        definitions[definition.id] = definition

    for path in _iter_user_definition_paths():
        doc = _read_yaml(path)
        definition = build_definition(doc, path)
        if definition.id in user_sources:
            warning = f"User definition '{definition.id}' in {path} overrides {user_sources[definition.id]}"
        elif definition.id in definitions:
            warning = f"User definition '{definition.id}' overrides packaged definition"
        else:
            warning = None
        if warning:
            LOGGER.warning(warning)
            warnings.append(warning)
        definitions[definition.id] = definition
        user_sources[definition.id] = path

    return LoadedDefinitions(definitions=definitions, warnings=tuple(warnings))
