"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer

from devicelink.core.definition_loader import load_definitions, normalize_uuid
from devicelink.core.device_match import best_definition_for_device, resolve_definition
from devicelink.core.errors import DevicelinkError
from devicelink.core.model import CharacteristicState, CloudDefinition, DetectedDevice, DeviceSnapshot
from devicelink.core.schema import build_descriptors
from devicelink.transports.ble_gatt import read_device_snapshot

app = typer.Typer(help="Bridge BLE devices into a remote device-management service")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log reconciliation details"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_definitions() -> dict[str, CloudDefinition]:
    loaded = load_definitions()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded.definitions


def _normalize_key(value: str) -> str:
    try:
        return normalize_uuid(value, context=value)
    except DevicelinkError:
        return value.strip().lower()


def _snapshot_from_json(doc: Any) -> DeviceSnapshot:
    if not isinstance(doc, dict):
        raise DevicelinkError("Snapshot file must contain a mapping of services at root")
    snapshot: dict[str, dict[str, CharacteristicState]] = {}
    for service, characteristics in doc.items():
        if not isinstance(characteristics, dict):
            raise DevicelinkError(f"Service {service} must map characteristics to hex values")
        chars: dict[str, CharacteristicState] = {}
        for char, value in characteristics.items():
            try:
                raw = bytes.fromhex(value) if value is not None else None
            except (TypeError, ValueError) as exc:
                raise DevicelinkError(f"Value of {service}/{char} is not hex: {exc}") from exc
            chars[_normalize_key(char)] = CharacteristicState(value=raw)
        snapshot[_normalize_key(service)] = chars
    return snapshot


def _echo_model(snapshot: DeviceSnapshot, definition: CloudDefinition) -> None:
    descriptors = build_descriptors(snapshot, definition)
    typer.echo(json.dumps([d.to_dict() for d in descriptors], indent=2))


@app.command("definitions")
def list_definitions() -> None:
    """List available cloud definitions and their resources."""
    try:
        definitions = _load_definitions()
        if not definitions:
            typer.echo("No definitions loaded")
            raise typer.Exit(code=1)

        for definition in sorted(definitions.values(), key=lambda d: d.id):
            typer.echo(f"{definition.id}: {definition.name}")
            for descriptor in build_descriptors({}, definition):
                operations = ", ".join(op.value for op in descriptor.operation)
                typer.echo(f"  {descriptor.path}: {operations}")
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("match")
def match_device(
    address: str,
    name: str,
    service: list[str] | None = typer.Option(None, "--service", help="Advertised service UUID; repeatable"),
) -> None:
    """Show which definition a device would be bridged with."""
    try:
        definitions = _load_definitions()
        services = tuple(normalize_uuid(uuid, context="--service") for uuid in service or ())
        device = DetectedDevice(mac=address, name=name, service_uuids=services)
        definition = best_definition_for_device(device, definitions)
        matched = definition.id if definition else "<no-match>"
        typer.echo(f"{address} {name} -> {matched}")
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("describe")
def describe(definition: str, snapshot_file: Path) -> None:
    """Render the resource model for a JSON snapshot file.

    SNAPSHOT_FILE maps service UUIDs to characteristic UUIDs to hex values.
    """
    try:
        definitions = _load_definitions()
        selected = resolve_definition(definitions, DetectedDevice(mac="", name=""), definition)
        try:
            doc = json.loads(snapshot_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise DevicelinkError(f"Could not read snapshot file {snapshot_file}: {exc}") from exc
        _echo_model(_snapshot_from_json(doc), selected)
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read_device(
    address: str,
    definition: str | None = typer.Option(None, "--definition", help="Definition ID"),
    name: str = typer.Option("", "--name", help="Advertised name used for matching"),
    timeout: float = typer.Option(10.0, "--timeout", help="Connect timeout in seconds"),
) -> None:
    """Connect to a device, read one snapshot and print its resource model."""
    try:
        definitions = _load_definitions()
        snapshot = asyncio.run(read_device_snapshot(address, timeout_s=timeout))
        device = DetectedDevice(mac=address, name=name, service_uuids=tuple(snapshot))
        selected = resolve_definition(definitions, device, definition)
        _echo_model(snapshot, selected)
    except DevicelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
