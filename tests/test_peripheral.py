from __future__ import annotations

import asyncio

import pytest

from blesim.core.errors import (
    ActivationCancelledError,
    ActivationInProgressError,
    AdvertisingError,
    ServiceRegistrationError,
    SwitchTimeoutError,
    UnknownCharacteristicError,
)
from blesim.core.model import CharacteristicConfig, DeviceConfig, GattTree, NotifyStatus, ServiceConfig
from blesim.core.peripheral import PeripheralController, PeripheralState
from blesim.transports.base import ErrorCallback
from blesim.transports.loopback import LoopbackTransport


def _device(name: str, *char_names: str, initial: str = "") -> DeviceConfig:
    return DeviceConfig(
        name=name,
        services=(
            ServiceConfig(
                uuid="180f",
                characteristics=tuple(
                    CharacteristicConfig(
                        uuid=f"2a{index:02x}",
                        name=char_name,
                        properties=frozenset({"read", "write", "notify"}),
                        initial=f"{name}:{char_name}{initial}",
                    )
                    for index, char_name in enumerate(char_names)
                ),
            ),
        ),
    )


async def _drain(turns: int = 50) -> None:
    for _ in range(turns):
        await asyncio.sleep(0)


class RecordingTransport(LoopbackTransport):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.probe = None
        self.names_at_advertise: list[list[str]] = []
        self.names_at_services: list[list[str]] = []
        self.stop_calls = 0
        self.disconnect_calls = 0

    def set_advertising_state(self, device_name: str, service_uuids: list[str], callback: ErrorCallback) -> None:
        if self.probe is not None:
            self.names_at_advertise.append(sorted(self.probe.names()))
        super().set_advertising_state(device_name, service_uuids, callback)

    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        if self.probe is not None:
            self.names_at_services.append(sorted(self.probe.names()))
        super().set_services(tree, callback)

    def stop_advertising(self, callback=None) -> None:
        self.stop_calls += 1
        super().stop_advertising(callback)

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        super().disconnect()


class AdvertisingFailsTransport(RecordingTransport):
    def set_advertising_state(self, device_name: str, service_uuids: list[str], callback: ErrorCallback) -> None:
        callback(RuntimeError("adapter busy"))


class ServicesFailTransport(RecordingTransport):
    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        callback(RuntimeError("attribute table full"))


class SilentAdvertisingTransport(RecordingTransport):
    def set_advertising_state(self, device_name: str, service_uuids: list[str], callback: ErrorCallback) -> None:
        self.advertising = (device_name, tuple(service_uuids))


class SilentServicesTransport(RecordingTransport):
    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        self.tree = tree


class HeldServicesTransport(RecordingTransport):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.held: list[ErrorCallback] = []

    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        self.tree = tree
        self.held.append(callback)


class FlakyAdvertisingTransport(RecordingTransport):
    def __init__(self) -> None:
        super().__init__()
        self.silent = True

    def set_advertising_state(self, device_name: str, service_uuids: list[str], callback: ErrorCallback) -> None:
        if self.silent:
            return
        super().set_advertising_state(device_name, service_uuids, callback)


def test_activate_publishes_services_then_calls_ready_once() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)
        ready: list[str] = []
        config = _device("Sensor", "status", "battery")

        await controller.activate(config, lambda: ready.append(config.name))

        assert ready == ["Sensor"]
        assert controller.state is PeripheralState.ADVERTISING
        assert controller.current() is config
        assert sorted(controller.registry.names()) == ["battery", "status"]
        assert transport.advertising == ("Sensor", ("180f",))
        assert [c.name for c in transport.tree.characteristics()] == ["status", "battery"]

    asyncio.run(scenario())


def test_activation_waits_for_power_on() -> None:
    async def scenario() -> None:
        transport = RecordingTransport(powered_on=False)
        controller = PeripheralController(transport)
        ready: list[bool] = []

        task = asyncio.get_running_loop().create_task(
            controller.activate(_device("Sensor", "status"), lambda: ready.append(True))
        )
        await _drain()
        assert not ready
        assert transport.advertising is None
        assert len(controller.registry) == 0
        assert controller.state is PeripheralState.STARTING

        transport.set_power(True)
        await task
        assert ready == [True]
        assert controller.state is PeripheralState.ADVERTISING

    asyncio.run(scenario())


def test_advertising_failure_abandons_activation() -> None:
    async def scenario() -> None:
        transport = AdvertisingFailsTransport()
        controller = PeripheralController(transport)
        ready: list[bool] = []

        with pytest.raises(AdvertisingError):
            await controller.activate(_device("Sensor", "status"), lambda: ready.append(True))

        assert not ready
        assert controller.state is PeripheralState.IDLE
        assert controller.current() is None
        assert len(controller.registry) == 0

    asyncio.run(scenario())


def test_set_services_failure_stops_advertising_and_clears_registry() -> None:
    async def scenario() -> None:
        transport = ServicesFailTransport()
        controller = PeripheralController(transport)

        with pytest.raises(ServiceRegistrationError):
            await controller.activate(_device("Sensor", "status"))

        assert transport.stop_calls == 1
        assert len(controller.registry) == 0
        assert controller.current() is None

    asyncio.run(scenario())


def test_concurrent_activation_is_rejected() -> None:
    async def scenario() -> None:
        transport = SilentAdvertisingTransport()
        controller = PeripheralController(transport)

        first = asyncio.get_running_loop().create_task(controller.activate(_device("A", "a1")))
        await _drain(5)

        with pytest.raises(ActivationInProgressError):
            await controller.activate(_device("B", "b1"))
        assert controller.current().name == "A"

        await controller.deactivate()
        with pytest.raises(ActivationCancelledError):
            await first
        assert controller.state is PeripheralState.IDLE

    asyncio.run(scenario())


def test_activate_while_active_is_rejected() -> None:
    async def scenario() -> None:
        controller = PeripheralController(RecordingTransport())
        await controller.activate(_device("A", "a1"))

        with pytest.raises(ActivationInProgressError):
            await controller.activate(_device("B", "b1"))
        assert controller.current().name == "A"

    asyncio.run(scenario())


def test_deactivate_is_idempotent() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)

        await controller.deactivate()
        assert transport.stop_calls == 0

        await controller.activate(_device("A", "a1"))
        await controller.deactivate()
        await controller.deactivate()

        assert transport.stop_calls == 1
        assert len(controller.registry) == 0
        assert controller.current() is None
        assert controller.state is PeripheralState.IDLE

    asyncio.run(scenario())


def test_switch_never_overlaps_old_and_new_handles() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)
        transport.probe = controller.registry
        old = _device("Old", "old-only", "shared")
        new = _device("New", "new-only", "shared")

        await controller.activate(old)
        controller.dispatcher.on_write("shared", b"stale")
        await controller.switch_to(new, timeout=1.0)

        assert transport.names_at_advertise == [[], []]
        assert transport.names_at_services == [["old-only", "shared"], ["new-only", "shared"]]
        assert sorted(controller.registry.names()) == ["new-only", "shared"]
        assert controller.dispatcher.on_read("shared") == b"New:shared"
        with pytest.raises(UnknownCharacteristicError):
            controller.dispatcher.on_read("old-only")
        with pytest.raises(UnknownCharacteristicError):
            transport.read("old-only")
        assert controller.current() is new

    asyncio.run(scenario())


def test_switch_timeout_before_advertising_confirms() -> None:
    async def scenario() -> None:
        transport = SilentAdvertisingTransport()
        controller = PeripheralController(transport)

        with pytest.raises(SwitchTimeoutError):
            await controller.switch_to(_device("Stuck", "status"), timeout=0.05)

        assert len(controller.registry) == 0
        assert controller.current() is None
        assert controller.state is PeripheralState.IDLE

    asyncio.run(scenario())


def test_switch_timeout_during_service_registration_leaves_registry_empty() -> None:
    async def scenario() -> None:
        transport = SilentServicesTransport()
        controller = PeripheralController(transport)
        ready: list[bool] = []

        with pytest.raises(SwitchTimeoutError):
            await controller.switch_to(
                _device("Stuck", "status", "battery"),
                timeout=0.05,
                on_ready=lambda: ready.append(True),
            )

        assert not ready
        assert len(controller.registry) == 0
        assert transport.stop_calls >= 1
        assert controller.state is PeripheralState.IDLE
    asyncio.run(scenario())


def test_switch_can_be_retried_after_timeout() -> None:
    async def scenario() -> None:
        transport = FlakyAdvertisingTransport()
        controller = PeripheralController(transport)

        with pytest.raises(SwitchTimeoutError):
            await controller.switch_to(_device("Stuck", "status"), timeout=0.05)

        transport.silent = False
        await controller.switch_to(_device("Retry", "status"), timeout=1.0)
        assert controller.state is PeripheralState.ADVERTISING
        assert controller.current().name == "Retry"

    asyncio.run(scenario())


def test_power_loss_stops_and_power_on_resumes() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)
        await controller.activate(_device("Sensor", "status"))

        transport.set_power(False)
        await _drain()
        assert controller.state is PeripheralState.IDLE
        assert len(controller.registry) == 0
        assert transport.advertising is None
        assert controller.current().name == "Sensor"

        transport.set_power(True)
        await _drain()
        assert controller.state is PeripheralState.ADVERTISING
        assert controller.registry.names() == ["status"]

    asyncio.run(scenario())


def test_client_traffic_through_published_tree() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)
        await controller.activate(_device("Sensor", "status"))

        transport.connect("AA:BB:CC:DD:EE:FF")
        await _drain(5)
        assert controller.clients == {"AA:BB:CC:DD:EE:FF"}

        assert transport.read("status") == b"Sensor:status"
        transport.write("status", b"armed")
        assert controller.dispatcher.on_read("status") == b"armed"

        received = transport.subscribe("status")
        assert controller.dispatcher.notify("status", b"\x01").status is NotifyStatus.DELIVERED
        assert received == [b"\x01"]

        transport.unsubscribe("status")
        assert controller.dispatcher.notify("status", b"\x02").status is NotifyStatus.NO_SUBSCRIBER
        assert received == [b"\x01"]

        transport.drop("AA:BB:CC:DD:EE:FF")
        await _drain(5)
        assert controller.clients == frozenset()

    asyncio.run(scenario())


def test_shutdown_deactivates_and_disconnects() -> None:
    async def scenario() -> None:
        transport = RecordingTransport()
        controller = PeripheralController(transport)
        await controller.activate(_device("Sensor", "status"))

        await controller.shutdown()

        assert transport.stop_calls == 1
        assert transport.disconnect_calls == 1
        assert controller.current() is None

    asyncio.run(scenario())


def test_switch_while_activation_pending_is_rejected() -> None:
    async def scenario() -> None:
        transport = HeldServicesTransport()
        controller = PeripheralController(transport)

        first = asyncio.get_running_loop().create_task(
            controller.switch_to(_device("A", "a1"), timeout=1.0)
        )
        await _drain()
        assert len(transport.held) == 1

        with pytest.raises(ActivationInProgressError):
            await controller.switch_to(_device("B", "b1"), timeout=1.0)

        transport.held[0](None)
        await first
        assert controller.current().name == "A"
        assert controller.state is PeripheralState.ADVERTISING
        assert controller.registry.names() == ["a1"]

    asyncio.run(scenario())


def test_power_loss_while_publishing_retries_on_power_on() -> None:
    async def scenario() -> None:
        transport = HeldServicesTransport()
        controller = PeripheralController(transport)
        ready: list[bool] = []

        task = asyncio.get_running_loop().create_task(
            controller.activate(_device("Sensor", "status"), lambda: ready.append(True))
        )
        await _drain()
        assert len(transport.held) == 1

        transport.set_power(False)
        await _drain()
        transport.held[0](None)
        await _drain()

        assert not ready
        assert controller.state is PeripheralState.STARTING
        assert transport.advertising is None
        assert len(controller.registry) == 0
        assert controller.current().name == "Sensor"

        transport.set_power(True)
        await _drain()
        assert len(transport.held) == 2
        transport.held[1](None)
        await task

        assert ready == [True]
        assert controller.state is PeripheralState.ADVERTISING
        assert transport.advertising == ("Sensor", ("180f",))
        assert controller.registry.names() == ["status"]

    asyncio.run(scenario())
