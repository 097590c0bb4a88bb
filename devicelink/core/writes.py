"""Route remote writes to device writers and on to the transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from devicelink.core.formats import to_payload
from devicelink.core.model import CloudDefinition, DeviceSnapshot

LOGGER = logging.getLogger(__name__)


class WriteRouter:
    def __init__(
        self,
        address: str,
        definition: CloudDefinition,
        snapshot: Callable[[], DeviceSnapshot],
    ) -> None:
        self.address = address
        self._definition = definition
        self._snapshot = snapshot
        self._transport_lock = asyncio.Lock()

    async def route(self, path: str, value: Any) -> bool:
        """Run the writer registered for *path*; False when there is none."""
        writer = self._definition.write.get(path[1:] if path.startswith("/") else path)
        if writer is None:
            LOGGER.warning("[%s] Write for %s came in, but no 'write' rule", self.address, path)
            return False

        LOGGER.info("[%s] Write from remote for %s, value %s", self.address, path, value)
        issued: list[asyncio.Task[None]] = []

        def write(target: str, data: Any) -> None:
            issued.append(asyncio.create_task(self._dispatch(target, to_payload(data))))

        try:
            writer(value, write)
        except Exception as exc:
            LOGGER.warning("[%s] Write rule for %s failed: %s", self.address, path, exc)

        # writes issued before a writer failure still go out
        await asyncio.gather(*issued)
        return True

    async def _dispatch(self, target: str, payload: bytes) -> None:
        LOGGER.info("[%s] Writing to characteristic %s, value %s", self.address, target, payload.hex())
        service, _, char = target.partition("/")
        state = self._snapshot().get(service, {}).get(char)
        if state is None or state.handle is None:
            LOGGER.warning("[%s] Could not find characteristic for %s", self.address, target)
            return
        # one GATT write at a time, in the order the writer issued them
        async with self._transport_lock:
            try:
                await state.handle.write(payload)
            except Exception as exc:
                LOGGER.warning("[%s] Writing to %s failed: %s", self.address, target, exc)
