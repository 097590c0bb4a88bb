"""Per-device reconciliation between a BLE device and its remote resource model."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from devicelink.cloud.base import CloudDevice
from devicelink.core.diff import DiffKind, diff_models
from devicelink.core.model import (
    CloudDefinition,
    ConnectivityState,
    DeviceSnapshot,
    RegistrationState,
    ResourceDescriptor,
)
from devicelink.core.registration import RegistrationController
from devicelink.core.schema import build_descriptors
from devicelink.core.writes import WriteRouter

LOGGER = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    DROPPED = "dropped"
    SCHEMA_RESYNCED = "schema-resynced"
    VALUES_PUSHED = "values-pushed"
    UNCHANGED = "unchanged"
    UNREGISTERED = "unregistered"
    FAILED = "failed"


class LinkEvent(str, Enum):
    CONNECTIVITY_CHANGED = "connectivity-changed"
    SNAPSHOT_RECEIVED = "snapshot-received"
    LOCAL_NAME_CHANGED = "local-name-changed"


LinkListener = Callable[[LinkEvent, Any], None]


class SingleFlight:
    """Token allowing at most one reconciliation per device at a time."""

    def __init__(self) -> None:
        self._held = False

    @property
    def busy(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


class DeviceLink:
    """Keeps the remote resource model of one device in sync with its snapshots.

    The transport adapter calls :meth:`on_connectivity_changed` and
    :meth:`on_snapshot_updated`; the remote service adapter calls
    :meth:`on_remote_write`. None of them raise: failures are logged and the
    next event acts as the retry.

    Observers register with :meth:`subscribe` and get a :class:`LinkEvent`
    with its payload: ``(state, error)`` for connectivity, the raw snapshot
    before it is reconciled, and the new advertised name.
    """

    def __init__(self, address: str, definition: CloudDefinition, cloud_device: CloudDevice) -> None:
        self.address = address
        self.definition = definition
        self.cloud_device = cloud_device

        self.connectivity = ConnectivityState.DISCONNECTED
        self.connectivity_error: Any = None
        self.snapshot: DeviceSnapshot = {}
        self.model: list[ResourceDescriptor] = []
        self.local_name: str | None = None

        self._registration = RegistrationController(address, cloud_device)
        self._writes = WriteRouter(address, definition, lambda: self.snapshot)
        self._single_flight = SingleFlight()
        self._listeners: list[LinkListener] = []

    @property
    def registered(self) -> bool:
        return self._registration.registered

    @property
    def registration_state(self) -> RegistrationState:
        return self._registration.state

    @property
    def reconciling(self) -> bool:
        return self._single_flight.busy

    async def start(self) -> None:
        await self._registration.reset_stale_registration()

    def subscribe(self, listener: LinkListener) -> Callable[[], None]:
        """Call *listener* for every link event; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, event: LinkEvent, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as exc:
                LOGGER.warning("[%s] Listener for %s failed: %s", self.address, event.value, exc)

    async def on_connectivity_changed(self, state: ConnectivityState | str, error: Any = None) -> None:
        state = ConnectivityState(state)
        self.connectivity = state
        self.connectivity_error = error
        if error is not None:
            LOGGER.warning("[%s] Connectivity changed to %s with error: %s", self.address, state.value, error)
        self._emit(LinkEvent.CONNECTIVITY_CHANGED, (state, error))

        if state is ConnectivityState.CONNECTED:
            await self._registration.connect()
        else:
            await self._registration.disconnect()

    async def on_snapshot_updated(self, snapshot: DeviceSnapshot) -> ReconcileOutcome:
        self._emit(LinkEvent.SNAPSHOT_RECEIVED, snapshot)
        current = build_descriptors(snapshot, self.definition, self.cloud_device.resources)
        self.snapshot = snapshot

        if not self._single_flight.acquire():
            LOGGER.info("[%s] Model update came in for device that is already updating", self.address)
            return ReconcileOutcome.DROPPED

        try:
            return await self._reconcile(current)
        except Exception as exc:
            LOGGER.warning("[%s] Model update failed: %s", self.address, exc)
            return ReconcileOutcome.FAILED
        finally:
            self.model = current
            self._single_flight.release()

    async def on_remote_write(self, path: str, value: Any) -> bool:
        return await self._writes.route(path, value)

    def on_local_name_changed(self, name: str) -> None:
        if name == self.local_name:
            return
        self.local_name = name
        LOGGER.info("[%s] Local name changed to %s", self.address, name)
        self._emit(LinkEvent.LOCAL_NAME_CHANGED, name)

    async def _reconcile(self, current: list[ResourceDescriptor]) -> ReconcileOutcome:
        resources = self.cloud_device.resources
        diff = diff_models(current, self.model, resources)

        if diff.kind is DiffKind.SCHEMA_CHANGED and self.registered:
            if await self._registration.resync_schema(current):
                return ReconcileOutcome.SCHEMA_RESYNCED
            return ReconcileOutcome.FAILED

        if not diff.value_changes:
            return ReconcileOutcome.UNCHANGED

        pushed = 0
        for change in diff.value_changes:
            if not self.registered:
                continue
            LOGGER.info("[%s] Update value for %s to %s", self.address, change.path, change.value)
            try:
                await resources[change.path].set_value(change.value)
            except Exception as exc:
                LOGGER.warning("[%s] Update value for %s failed: %s", self.address, change.path, exc)
                continue
            pushed += 1
            LOGGER.info("[%s] OK Update value for %s", self.address, change.path)

        if pushed:
            return ReconcileOutcome.VALUES_PUSHED
        if not self.registered:
            return ReconcileOutcome.UNREGISTERED
        return ReconcileOutcome.FAILED
