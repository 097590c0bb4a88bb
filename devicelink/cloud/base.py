"""Remote device-management service interfaces."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol


class CloudResource(Protocol):
    path: str
    operation: Sequence[str]
    observable: bool | None
    value: str

    async def set_value(self, value: str) -> None:
        """Push a new value for this resource to the remote service."""


class CloudDevice(Protocol):
    """Binding of one device to the remote service.

    Every coroutine fails by raising; callers in the core catch and log.
    """

    @property
    def resources(self) -> Mapping[str, CloudResource]: ...

    async def get_registration_status(self) -> bool: ...

    async def register(self) -> None: ...

    async def deregister(self) -> None: ...

    async def set_resource_model(self, resources: Sequence[dict[str, Any]]) -> None: ...
