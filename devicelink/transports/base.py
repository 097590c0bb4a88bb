"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class CharacteristicHandle(Protocol):
    async def write(self, data: bytes) -> None:
        """Write a raw payload to the characteristic this handle refers to."""
