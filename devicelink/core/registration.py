"""Registration lifecycle of one device with the remote service."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from devicelink.cloud.base import CloudDevice
from devicelink.core.model import RegistrationState, ResourceDescriptor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Step:
    name: str
    call: Callable[[], Awaitable[None]]
    on_success: RegistrationState
    on_failure: RegistrationState


class RegistrationController:
    """Owns the registration state of one device.

    Transitions are serialized by a lock; the state checks keep register and
    deregister idempotent across repeated connectivity events.
    """

    def __init__(self, address: str, cloud_device: CloudDevice) -> None:
        self.address = address
        self._cloud = cloud_device
        self._state = RegistrationState.DISCONNECTED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RegistrationState:
        return self._state

    @property
    def registered(self) -> bool:
        return self._state is RegistrationState.CONNECTED_REGISTERED

    async def reset_stale_registration(self) -> None:
        """Deregister a registration left behind by a previous run."""
        async with self._lock:
            try:
                status = await self._cloud.get_registration_status()
                LOGGER.info("[%s] Registration status is %s", self.address, status)
                if status is True:
                    LOGGER.info("[%s] Deregistering stale registration", self.address)
                    await self._cloud.deregister()
                    LOGGER.info("[%s] Deregistering OK", self.address)
            except Exception as exc:
                LOGGER.warning("[%s] Retrieving registration status failed: %s", self.address, exc)
            self._state = RegistrationState.DISCONNECTED

    async def connect(self) -> None:
        async with self._lock:
            if self.registered:
                return
            LOGGER.info("[%s] Registering", self.address)
            try:
                await self._cloud.register()
            except Exception as exc:
                self._state = RegistrationState.CONNECTED_UNREGISTERED
                LOGGER.warning("[%s] Registration failed: %s", self.address, exc)
                return
            self._state = RegistrationState.CONNECTED_REGISTERED
            LOGGER.info("[%s] Registered", self.address)

    async def disconnect(self) -> None:
        async with self._lock:
            if not self.registered:
                self._state = RegistrationState.DISCONNECTED
                return
            LOGGER.info("[%s] Deregistering", self.address)
            try:
                await self._cloud.deregister()
                LOGGER.info("[%s] Deregistered", self.address)
            except Exception as exc:
                LOGGER.warning("[%s] Deregistration failed: %s", self.address, exc)
            finally:
                self._state = RegistrationState.DISCONNECTED

    async def resync_schema(self, descriptors: Sequence[ResourceDescriptor]) -> bool:
        """Push a new resource model and re-register so the remote side picks it up.

        Returns True when every step succeeded. A failing step aborts the
        remaining ones and leaves the state its ``on_failure`` names.
        """
        payload = [descriptor.to_dict() for descriptor in descriptors]
        steps = (
            _Step(
                "setResourceModel",
                lambda: self._cloud.set_resource_model(payload),
                on_success=RegistrationState.CONNECTED_REGISTERED,
                on_failure=RegistrationState.CONNECTED_REGISTERED,
            ),
            _Step(
                "deregister",
                self._cloud.deregister,
                on_success=RegistrationState.CONNECTED_UNREGISTERED,
                on_failure=RegistrationState.CONNECTED_REGISTERED,
            ),
            _Step(
                "register",
                self._cloud.register,
                on_success=RegistrationState.CONNECTED_REGISTERED,
                on_failure=RegistrationState.CONNECTED_UNREGISTERED,
            ),
        )

        async with self._lock:
            if not self.registered:
                LOGGER.info("[%s] Schema changed while not registered, skipping resync", self.address)
                return False
            LOGGER.info("[%s] Schema change to %s", self.address, payload)
            for step in steps:
                LOGGER.info("[%s] %s", self.address, step.name)
                try:
                    await step.call()
                except Exception as exc:
                    self._state = step.on_failure
                    LOGGER.warning("[%s] %s failed: %s", self.address, step.name, exc)
                    return False
                self._state = step.on_success
                LOGGER.info("[%s] OK %s", self.address, step.name)
            return True
