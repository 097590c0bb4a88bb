"""BLE GATT transport adapter on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from devicelink.core.engine import DeviceLink, ReconcileOutcome
from devicelink.core.errors import TransportConnectError, TransportError, TransportWriteError
from devicelink.core.model import CharacteristicState, ConnectivityState, DeviceSnapshot

_WRITE_PROPERTIES = ("write", "write-without-response")
LOGGER = logging.getLogger(__name__)


def _bleak_client_cls() -> Callable[..., Any]:
    try:
        from bleak import BleakClient  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return BleakClient


class BleakCharacteristic:
    """Write handle for one characteristic of a connected BleakClient."""

    def __init__(self, client: Any, char_uuid: str, *, response: bool = True) -> None:
        self._client = client
        self.uuid = char_uuid
        self.response = response

    async def write(self, data: bytes) -> None:
        try:
            await self._client.write_gatt_char(self.uuid, data, response=self.response)
        except Exception as exc:
            raise TransportWriteError(f"BLE write to {self.uuid} failed: {exc}") from exc


async def read_snapshot(client: Any) -> DeviceSnapshot:
    """Read every readable characteristic of a connected client.

    Characteristics that cannot be read keep a ``None`` value; writable ones
    carry a :class:`BleakCharacteristic` handle.
    """
    snapshot: dict[str, dict[str, CharacteristicState]] = {}
    for service in client.services:
        characteristics: dict[str, CharacteristicState] = {}
        for char in service.characteristics:
            value: bytes | None = None
            if "read" in char.properties:
                try:
                    value = bytes(await client.read_gatt_char(char.uuid))
                except Exception as exc:
                    LOGGER.debug("Reading %s/%s failed: %s", service.uuid, char.uuid, exc)

            handle = None
            if any(prop in char.properties for prop in _WRITE_PROPERTIES):
                handle = BleakCharacteristic(client, char.uuid, response="write" in char.properties)
            characteristics[char.uuid] = CharacteristicState(value=value, handle=handle)
        snapshot[service.uuid] = characteristics
    return snapshot


async def read_device_snapshot(
    address: str,
    *,
    timeout_s: float = 10.0,
    client_factory: Callable[..., Any] | None = None,
) -> DeviceSnapshot:
    """Connect once, read a snapshot and disconnect. Handles are not usable afterwards."""
    client_cls = client_factory or _bleak_client_cls()
    try:
        async with client_cls(address, timeout=timeout_s) as client:
            if not client.is_connected:
                raise TransportConnectError(f"BLE connect failed for {address}")
            return await read_snapshot(client)
    except TransportError:
        raise
    except Exception as exc:
        raise TransportConnectError(f"BLE snapshot read failed for {address}: {exc}") from exc


class BLEGATTSession:
    """Keeps one device connected and feeds its link with connectivity and snapshots."""

    def __init__(
        self,
        link: DeviceLink,
        *,
        timeout_s: float = 10.0,
        poll_interval_s: float = 5.0,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.link = link
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self._client_factory = client_factory
        self._client: Any = None
        self._connected = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        client_cls = self._client_factory or _bleak_client_cls()
        self._client = client_cls(
            self.link.address,
            disconnected_callback=self._on_disconnected,
            timeout=self.timeout_s,
        )
        try:
            await self._client.connect()
        except Exception as exc:
            await self.link.on_connectivity_changed(ConnectivityState.DISCONNECTED, exc)
            raise TransportConnectError(f"BLE connect failed for {self.link.address}: {exc}") from exc

        self._connected = True
        await self.link.on_connectivity_changed(ConnectivityState.CONNECTED)

    async def poll_once(self) -> ReconcileOutcome:
        snapshot = await read_snapshot(self._client)
        return await self.link.on_snapshot_updated(snapshot)

    async def run(self) -> None:
        """Connect and poll until the device goes away."""
        await self.connect()
        try:
            while self._connected:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval_s)
        finally:
            await self.close()

    async def close(self) -> None:
        was_connected = self._connected
        self._connected = False
        if self._client is not None and self._client.is_connected:
            try:
                await self._client.disconnect()
            except Exception as exc:
                LOGGER.warning("[%s] BLE disconnect failed: %s", self.link.address, exc)
        if was_connected:
            await self.link.on_connectivity_changed(ConnectivityState.DISCONNECTED)

    def _on_disconnected(self, _client: Any) -> None:
        if not self._connected:
            return
        self._connected = False
        task = asyncio.get_running_loop().create_task(
            self.link.on_connectivity_changed(ConnectivityState.DISCONNECTED)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
