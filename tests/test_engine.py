from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping

from devicelink.core.engine import DeviceLink, LinkEvent, ReconcileOutcome
from devicelink.core.model import CloudDefinition, ConnectivityState, RegistrationState

ADDRESS = "AA:BB:CC:11:22:33"


def _writer(value, write):
    write("svc/c3", int(value))


DEFINITION = CloudDefinition(
    id="thermo",
    name="Thermo",
    read={
        "temp": lambda snap: snap["svc"]["c1"],
        "humidity": lambda snap: snap["svc"]["c2"],
    },
    write={"led": _writer},
)


def _values(temp: int, humidity: int) -> dict[str, dict[str, int]]:
    return {"svc": {"c1": temp, "c2": humidity, "c3": 0}}


async def _registered_link(cloud, make_snapshot) -> DeviceLink:
    link = DeviceLink(ADDRESS, DEFINITION, cloud)
    await link.on_connectivity_changed(ConnectivityState.CONNECTED)
    assert await link.on_snapshot_updated(make_snapshot(_values(20, 40))) is ReconcileOutcome.SCHEMA_RESYNCED
    cloud.calls.clear()
    return link


def test_first_snapshot_pushes_schema(cloud, make_snapshot) -> None:
    async def scenario() -> None:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        await link.on_connectivity_changed("connected")
        outcome = await link.on_snapshot_updated(make_snapshot(_values(20, 40)))
        assert outcome is ReconcileOutcome.SCHEMA_RESYNCED
        assert link.registered
        assert [d.path for d in link.model] == ["/temp", "/humidity", "/led"]

    asyncio.run(scenario())
    assert cloud.names() == ["register", "set_resource_model", "deregister", "register"]
    assert set(cloud.resources) == {"/temp", "/humidity", "/led"}


def test_same_schema_only_pushes_changed_values(cloud, make_snapshot) -> None:
    async def scenario() -> ReconcileOutcome:
        link = await _registered_link(cloud, make_snapshot)
        return await link.on_snapshot_updated(make_snapshot(_values(21, 40)))

    assert asyncio.run(scenario()) is ReconcileOutcome.VALUES_PUSHED
    assert cloud.calls == [("set_value", "/temp", "21")]


def test_changed_values_are_pushed_in_model_order(cloud, make_snapshot) -> None:
    async def scenario() -> None:
        link = await _registered_link(cloud, make_snapshot)
        await link.on_snapshot_updated(make_snapshot(_values(22, 45)))

    asyncio.run(scenario())
    assert cloud.calls == [("set_value", "/temp", "22"), ("set_value", "/humidity", "45")]


def test_identical_snapshot_makes_no_remote_calls(cloud, make_snapshot) -> None:
    async def scenario() -> ReconcileOutcome:
        link = await _registered_link(cloud, make_snapshot)
        return await link.on_snapshot_updated(make_snapshot(_values(20, 40)))

    assert asyncio.run(scenario()) is ReconcileOutcome.UNCHANGED
    assert cloud.calls == []


def test_snapshot_during_reconciliation_is_dropped(cloud, make_snapshot) -> None:
    async def scenario() -> None:
        link = await _registered_link(cloud, make_snapshot)
        cloud.gate = asyncio.Event()

        first = asyncio.create_task(link.on_snapshot_updated(make_snapshot(_values(21, 40))))
        while not cloud.calls:
            await asyncio.sleep(0)
        assert link.reconciling

        dropped = await link.on_snapshot_updated(make_snapshot(_values(30, 50)))
        assert dropped is ReconcileOutcome.DROPPED
        assert link.snapshot["svc"]["c1"].value == 30
        assert [d.value for d in link.model if d.path == "/temp"] == ["20"]

        cloud.gate.set()
        assert await first is ReconcileOutcome.VALUES_PUSHED
        assert not link.reconciling

    asyncio.run(scenario())
    assert cloud.calls == [("set_value", "/temp", "21")]


def test_failed_value_push_does_not_abort_others(cloud, make_snapshot) -> None:
    async def scenario() -> ReconcileOutcome:
        link = await _registered_link(cloud, make_snapshot)
        cloud.failing.add(("set_value", "/temp"))
        return await link.on_snapshot_updated(make_snapshot(_values(25, 55)))

    assert asyncio.run(scenario()) is ReconcileOutcome.VALUES_PUSHED
    assert cloud.calls == [("set_value", "/temp", "25"), ("set_value", "/humidity", "55")]


def test_unregistered_device_updates_model_without_pushing(cloud, make_snapshot) -> None:
    async def scenario() -> None:
        link = await _registered_link(cloud, make_snapshot)
        await link.on_connectivity_changed(ConnectivityState.DISCONNECTED)
        cloud.calls.clear()

        outcome = await link.on_snapshot_updated(make_snapshot(_values(26, 41)))
        assert outcome is ReconcileOutcome.UNREGISTERED
        assert [d.value for d in link.model] == ["26", "41", ""]

    asyncio.run(scenario())
    assert cloud.calls == []


def test_schema_change_while_unregistered_is_a_noop(cloud, make_snapshot) -> None:
    async def scenario() -> ReconcileOutcome:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        return await link.on_snapshot_updated(make_snapshot(_values(20, 40)))

    assert asyncio.run(scenario()) is ReconcileOutcome.UNREGISTERED
    assert cloud.calls == []


class _ExplodingResources(Mapping):
    def __getitem__(self, key: str):
        raise KeyError(key)

    def __len__(self) -> int:
        return 0

    def __iter__(self) -> Iterator[str]:
        raise RuntimeError("remote service unavailable")


def test_unexpected_failure_releases_single_flight(cloud, make_snapshot, caplog) -> None:
    async def scenario() -> DeviceLink:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        cloud.resources = _ExplodingResources()
        assert await link.on_snapshot_updated(make_snapshot(_values(20, 40))) is ReconcileOutcome.FAILED
        return link

    link = asyncio.run(scenario())
    assert not link.reconciling
    assert [d.path for d in link.model] == ["/temp", "/humidity", "/led"]
    assert "Model update failed" in caplog.text


def test_start_resets_stale_registration(cloud) -> None:
    cloud.registration_status = True
    link = DeviceLink(ADDRESS, DEFINITION, cloud)

    asyncio.run(link.start())
    assert cloud.names() == ["get_registration_status", "deregister"]
    assert link.registration_state is RegistrationState.DISCONNECTED


def test_connectivity_error_is_recorded(cloud, caplog) -> None:
    link = DeviceLink(ADDRESS, DEFINITION, cloud)
    asyncio.run(link.on_connectivity_changed("disconnected", "link loss"))

    assert link.connectivity is ConnectivityState.DISCONNECTED
    assert link.connectivity_error == "link loss"
    assert "link loss" in caplog.text
    assert cloud.calls == []


def test_remote_write_reaches_characteristic(cloud, make_snapshot, handle_factory) -> None:
    handle = handle_factory()

    async def scenario() -> bool:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        await link.on_snapshot_updated(make_snapshot(_values(20, 40), handles={"svc/c3": handle}))
        return await link.on_remote_write("/led", "1")

    assert asyncio.run(scenario()) is True
    assert handle.writes == [b"\x01"]


def test_disconnect_during_schema_resync_waits_for_it(cloud, make_snapshot) -> None:
    async def scenario() -> tuple[DeviceLink, ReconcileOutcome]:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        await link.on_connectivity_changed(ConnectivityState.CONNECTED)
        cloud.calls.clear()
        cloud.held["set_resource_model"] = asyncio.Event()

        resync = asyncio.create_task(link.on_snapshot_updated(make_snapshot(_values(20, 40))))
        while not cloud.calls:
            await asyncio.sleep(0)
        disconnect = asyncio.create_task(link.on_connectivity_changed(ConnectivityState.DISCONNECTED))
        for _ in range(5):
            await asyncio.sleep(0)
        assert cloud.names() == ["set_resource_model"]

        cloud.held["set_resource_model"].set()
        await disconnect
        return link, await resync

    link, outcome = asyncio.run(scenario())
    assert outcome is ReconcileOutcome.SCHEMA_RESYNCED
    assert cloud.names() == ["set_resource_model", "deregister", "register", "deregister"]
    assert link.registration_state is RegistrationState.DISCONNECTED


def test_failed_model_push_is_retried_on_next_snapshot(cloud, make_snapshot) -> None:
    async def scenario() -> tuple[ReconcileOutcome, RegistrationState, ReconcileOutcome]:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        await link.on_connectivity_changed(ConnectivityState.CONNECTED)
        cloud.failing.add("set_resource_model")
        first = await link.on_snapshot_updated(make_snapshot(_values(20, 40)))
        state = link.registration_state

        cloud.failing.clear()
        second = await link.on_snapshot_updated(make_snapshot(_values(20, 40)))
        return first, state, second

    first, state, second = asyncio.run(scenario())
    assert first is ReconcileOutcome.FAILED
    assert state is RegistrationState.CONNECTED_REGISTERED
    assert second is ReconcileOutcome.SCHEMA_RESYNCED
    assert cloud.names() == ["register", "set_resource_model", "set_resource_model", "deregister", "register"]


def test_listeners_see_link_events(cloud, make_snapshot) -> None:
    events: list[tuple[LinkEvent, object]] = []
    link = DeviceLink(ADDRESS, DEFINITION, cloud)
    unsubscribe = link.subscribe(lambda event, payload: events.append((event, payload)))
    snapshot = make_snapshot(_values(20, 40))

    async def scenario() -> None:
        await link.on_connectivity_changed(ConnectivityState.CONNECTED)
        await link.on_snapshot_updated(snapshot)
        link.on_local_name_changed("Thermo 2")
        link.on_local_name_changed("Thermo 2")

    asyncio.run(scenario())
    assert events == [
        (LinkEvent.CONNECTIVITY_CHANGED, (ConnectivityState.CONNECTED, None)),
        (LinkEvent.SNAPSHOT_RECEIVED, snapshot),
        (LinkEvent.LOCAL_NAME_CHANGED, "Thermo 2"),
    ]
    assert link.local_name == "Thermo 2"

    unsubscribe()
    link.on_local_name_changed("Thermo 3")
    assert len(events) == 3


def test_failing_listener_does_not_stop_reconciliation(cloud, make_snapshot, caplog) -> None:
    def broken(event, payload):
        raise ValueError("listener broke")

    async def scenario() -> ReconcileOutcome:
        link = DeviceLink(ADDRESS, DEFINITION, cloud)
        link.subscribe(broken)
        await link.on_connectivity_changed(ConnectivityState.CONNECTED)
        return await link.on_snapshot_updated(make_snapshot(_values(20, 40)))

    assert asyncio.run(scenario()) is ReconcileOutcome.SCHEMA_RESYNCED
    assert "listener broke" in caplog.text
