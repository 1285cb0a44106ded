"""Service layer used by the CLI and by command shells built on blesim."""

from __future__ import annotations

import difflib
from collections.abc import Callable, Sequence
from pathlib import Path

from blesim.core.config_loader import load_device_config, load_devices
from blesim.core.dispatcher import GattDispatcher
from blesim.core.encoder_args import parse_encoder_args
from blesim.core.encoders import encode, list_encoders
from blesim.core.errors import BlesimError, DeviceSelectionError
from blesim.core.model import (
    CharacteristicHandle,
    DeviceConfig,
    DeviceEntry,
    EncoderInfo,
    NotifyResult,
    UpdateValueCallback,
    WriteResult,
)
from blesim.core.peripheral import DEFAULT_SWITCH_TIMEOUT_S, PeripheralController
from blesim.core.registry import CharacteristicRegistry
from blesim.transports.base import Transport
from blesim.transports.bless_peripheral import BlessTransport
from blesim.transports.loopback import LoopbackTransport

TRANSPORTS: dict[str, Callable[[], Transport]] = {
    "loopback": LoopbackTransport,
    "bless": BlessTransport,
}


def build_transport(kind: str) -> Transport:
    factory = TRANSPORTS.get(kind)
    if factory is None:
        available = ", ".join(sorted(TRANSPORTS))
        raise BlesimError(f"Unknown transport '{kind}'. Available: {available}")
    return factory()


class SimulatorService:
    def __init__(self, *, transport: Transport | None = None) -> None:
        self.catalog = load_devices()
        self.devices = self.catalog.devices
        self.load_warnings = self.catalog.warnings
        self.transport = transport if transport is not None else LoopbackTransport()
        self.registry = CharacteristicRegistry()
        self.dispatcher = GattDispatcher(self.registry)
        self.controller = PeripheralController(self.transport, self.registry, self.dispatcher)

    def list_devices(self) -> list[DeviceEntry]:
        return sorted(self.devices.values(), key=lambda entry: entry.number)

    def resolve_device(self, arg: str) -> DeviceEntry:
        if not arg:
            raise DeviceSelectionError("Missing argument: device name or number")
        entry = self.catalog.by_number(int(arg)) if arg.isdecimal() else None
        if entry is None:
            entry = self.devices.get(arg)
        if entry is not None:
            return entry

        message = f"Unknown device '{arg}'"
        suggestions = difflib.get_close_matches(arg, list(self.devices), n=3)
        if suggestions:
            message += f". Did you mean: {', '.join(suggestions)}?"
        raise DeviceSelectionError(message)

    def load_device(self, arg: str) -> DeviceConfig:
        """Resolve ``arg`` as a YAML path, a catalog number or a catalog key."""
        path = Path(arg)
        if path.suffix in (".yml", ".yaml") and path.is_file():
            return load_device_config(path)
        return self.resolve_device(arg).config

    def current(self) -> DeviceConfig | None:
        return self.controller.current()

    def list_characteristics(self) -> list[CharacteristicHandle]:
        return self.registry.handles()

    def read(self, name: str) -> bytes:
        return self.dispatcher.on_read(name)

    def write(self, name: str, values: Sequence[str]) -> WriteResult:
        return self.dispatcher.write_values(name, values)

    def write_raw(self, name: str, data: bytes) -> None:
        self.dispatcher.on_write(name, data)

    def notify(self, name: str, values: Sequence[str]) -> NotifyResult:
        return self.dispatcher.notify_values(name, values)

    def subscribe(self, name: str, callback: UpdateValueCallback) -> None:
        self.dispatcher.on_subscribe(name, callback)

    def unsubscribe(self, name: str) -> None:
        self.dispatcher.on_unsubscribe(name)

    def list_encoders(self) -> list[EncoderInfo]:
        return list(list_encoders())

    def encode(self, encoder_type: str, values: Sequence[str]) -> bytes:
        return encode(encoder_type, parse_encoder_args(encoder_type, values))

    async def start(
        self,
        device: DeviceConfig,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        await self.controller.activate(device, on_ready)

    async def switch(
        self,
        device: DeviceConfig,
        *,
        timeout: float = DEFAULT_SWITCH_TIMEOUT_S,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        await self.controller.switch_to(device, timeout=timeout, on_ready=on_ready)

    async def stop(self) -> None:
        await self.controller.deactivate()

    async def shutdown(self) -> None:
        await self.controller.shutdown()
