from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from devicelink.core.model import CharacteristicState


class FakeResource:
    def __init__(self, cloud: "FakeCloudDevice", spec: dict[str, Any]) -> None:
        self._cloud = cloud
        self.path = spec["path"]
        self.operation = list(spec["operation"])
        self.observable = spec.get("observable")
        self.value = spec["value"]

    async def set_value(self, value: str) -> None:
        await self._cloud._call("set_value", self.path, value)
        if self._cloud.gate is not None:
            await self._cloud.gate.wait()
        self.value = value


class FakeCloudDevice:
    def __init__(self, *, registration_status: bool = False) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.failing: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.held: dict[str, asyncio.Event] = {}
        self.registration_status = registration_status
        self.resources: dict[str, FakeResource] = {}

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.held:
            await self.held[name].wait()
        await asyncio.sleep(0)
        target = args[0] if args and isinstance(args[0], str) else None
        if name in self.failing or (name, target) in self.failing:
            raise RuntimeError(f"{name} rejected")

    async def get_registration_status(self) -> bool:
        await self._call("get_registration_status")
        return self.registration_status

    async def register(self) -> None:
        await self._call("register")
        self.registration_status = True

    async def deregister(self) -> None:
        await self._call("deregister")
        self.registration_status = False

    async def set_resource_model(self, resources: list[dict[str, Any]]) -> None:
        await self._call("set_resource_model", resources)
        self.resources = {spec["path"]: FakeResource(self, spec) for spec in resources}


class FakeHandle:
    def __init__(self, *, fail: bool = False) -> None:
        self.writes: list[bytes] = []
        self.fail = fail

    async def write(self, data: bytes) -> None:
        if self.fail:
            raise OSError("GATT write rejected")
        self.writes.append(data)


@pytest.fixture
def cloud() -> FakeCloudDevice:
    return FakeCloudDevice()


@pytest.fixture
def cloud_factory() -> Callable[..., FakeCloudDevice]:
    created: dict[str, FakeCloudDevice] = {}

    def factory(address: str, definition: Any) -> FakeCloudDevice:
        created[address] = FakeCloudDevice()
        return created[address]

    factory.created = created  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def handle_factory() -> Callable[..., FakeHandle]:
    return FakeHandle


@pytest.fixture
def make_snapshot() -> Callable[..., dict[str, dict[str, CharacteristicState]]]:
    def build(values: dict[str, dict[str, Any]], handles: dict[str, Any] | None = None):
        handles = handles or {}
        return {
            service: {
                char: CharacteristicState(value=value, handle=handles.get(f"{service}/{char}"))
                for char, value in chars.items()
            }
            for service, chars in values.items()
        }

    return build
