"""Bridge layer owning one device link per attached BLE address."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from devicelink.cloud.base import CloudDevice
from devicelink.core.definition_loader import load_definitions
from devicelink.core.device_match import resolve_definition
from devicelink.core.engine import DeviceLink, ReconcileOutcome
from devicelink.core.errors import DeviceNotFoundError
from devicelink.core.model import CloudDefinition, ConnectivityState, DetectedDevice, DeviceSnapshot

CloudFactory = Callable[[str, CloudDefinition], CloudDevice]
LOGGER = logging.getLogger(__name__)


class DeviceLinkBridge:
    def __init__(
        self,
        cloud_factory: CloudFactory,
        *,
        definitions: Mapping[str, CloudDefinition] | None = None,
    ) -> None:
        if definitions is None:
            loaded = load_definitions()
            self.definitions = loaded.definitions
            self.load_warnings = loaded.warnings
        else:
            self.definitions = dict(definitions)
            self.load_warnings = ()
        self._cloud_factory = cloud_factory
        self.devices: dict[str, DeviceLink] = {}

    def list_definitions(self) -> list[CloudDefinition]:
        return sorted(self.definitions.values(), key=lambda d: d.id)

    async def attach(
        self,
        address: str,
        name: str,
        *,
        service_uuids: Sequence[str] = (),
        definition_id: str | None = None,
    ) -> DeviceLink:
        """Create and start the link for a discovered device; idempotent per address.

        *service_uuids* are the services the device advertises; they take part
        in definition matching when no *definition_id* is given.
        """
        existing = self.devices.get(address)
        if existing is not None:
            return existing

        device = DetectedDevice(mac=address, name=name, service_uuids=tuple(service_uuids))
        definition = resolve_definition(self.definitions, device, definition_id)
        LOGGER.info("[%s] Attaching %s via definition %s", address, name, definition.id)
        link = DeviceLink(address, definition, self._cloud_factory(address, definition))
        self.devices[address] = link
        link.on_local_name_changed(name)
        await link.start()
        return link

    async def detach(self, address: str) -> None:
        link = self.get(address)
        await link.on_connectivity_changed(ConnectivityState.DISCONNECTED)
        del self.devices[address]
        LOGGER.info("[%s] Detached", address)

    def get(self, address: str) -> DeviceLink:
        link = self.devices.get(address)
        if link is None:
            raise DeviceNotFoundError(f"No device attached for address {address}")
        return link

    async def connectivity_changed(
        self,
        address: str,
        state: ConnectivityState | str,
        error: Any = None,
    ) -> None:
        await self.get(address).on_connectivity_changed(state, error)

    async def snapshot_updated(self, address: str, snapshot: DeviceSnapshot) -> ReconcileOutcome:
        return await self.get(address).on_snapshot_updated(snapshot)

    async def remote_write(self, address: str, path: str, value: Any) -> bool:
        return await self.get(address).on_remote_write(path, value)

    def local_name_changed(self, address: str, name: str) -> None:
        self.get(address).on_local_name_changed(name)
