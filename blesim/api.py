"""Stable public API for building tooling on top of blesim.

This module is the supported integration surface for third-party callers
such as command shells, test harnesses and GUIs. Avoid importing from
private/internal modules unless intentionally depending on non-stable
internals.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from blesim.core.encoders import encode_sfloat
from blesim.core.errors import (
    ActivationCancelledError,
    ActivationInProgressError,
    AdapterPoweredOffError,
    AdvertisingError,
    BlesimError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceSelectionError,
    InsufficientArgumentsError,
    InvalidArgumentError,
    ServiceRegistrationError,
    SwitchTimeoutError,
    TransportError,
    UnknownCharacteristicError,
    UnknownEncoderError,
)
from blesim.core.model import (
    CharacteristicConfig,
    CharacteristicHandle,
    DeviceConfig,
    DeviceEntry,
    EncoderInfo,
    EncoderRef,
    NotifyResult,
    NotifyStatus,
    ServiceConfig,
    UpdateValueCallback,
    WriteResult,
)
from blesim.core.peripheral import DEFAULT_SWITCH_TIMEOUT_S, PeripheralState
from blesim.core.service import SimulatorService
from blesim.transports.base import Transport
from blesim.transports.loopback import LoopbackTransport

__all__ = [
    "BlesimError",
    "ActivationCancelledError",
    "ActivationInProgressError",
    "AdapterPoweredOffError",
    "AdvertisingError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceSelectionError",
    "InsufficientArgumentsError",
    "InvalidArgumentError",
    "ServiceRegistrationError",
    "SwitchTimeoutError",
    "TransportError",
    "UnknownCharacteristicError",
    "UnknownEncoderError",
    "CharacteristicConfig",
    "CharacteristicHandle",
    "DeviceConfig",
    "DeviceEntry",
    "EncoderInfo",
    "EncoderRef",
    "NotifyResult",
    "NotifyStatus",
    "ServiceConfig",
    "WriteResult",
    "PeripheralState",
    "Transport",
    "LoopbackTransport",
    "encode_sfloat",
    "Simulator",
]


class Simulator:
    """Public handle on a simulated peripheral.

    A `Simulator` wraps device catalog loading, the characteristic registry,
    GATT dispatch and the peripheral lifecycle behind a stable API. Lifecycle
    methods are coroutines and must run on the event loop that delivers the
    transport's callbacks.
    """

    def __init__(self, *, transport: Transport | None = None) -> None:
        self._service = SimulatorService(transport=transport)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def state(self) -> PeripheralState:
        return self._service.controller.state

    def list_devices(self) -> list[DeviceEntry]:
        return self._service.list_devices()

    def load_device(self, arg: str) -> DeviceConfig:
        return self._service.load_device(arg)

    def current(self) -> DeviceConfig | None:
        return self._service.current()

    async def activate(
        self,
        device: DeviceConfig,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        await self._service.start(device, on_ready)

    async def switch_to(
        self,
        device: DeviceConfig,
        *,
        timeout: float = DEFAULT_SWITCH_TIMEOUT_S,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        await self._service.switch(device, timeout=timeout, on_ready=on_ready)

    async def deactivate(self) -> None:
        await self._service.stop()

    async def shutdown(self) -> None:
        await self._service.shutdown()

    def list_characteristics(self) -> list[CharacteristicHandle]:
        return self._service.list_characteristics()

    def read(self, name: str) -> bytes:
        return self._service.read(name)

    def write(self, name: str, values: Sequence[str]) -> WriteResult:
        return self._service.write(name, values)

    def write_raw(self, name: str, data: bytes) -> None:
        self._service.write_raw(name, data)

    def notify(self, name: str, values: Sequence[str]) -> NotifyResult:
        return self._service.notify(name, values)

    def subscribe(self, name: str, callback: UpdateValueCallback) -> None:
        self._service.subscribe(name, callback)

    def unsubscribe(self, name: str) -> None:
        self._service.unsubscribe(name)

    def list_encoders(self) -> list[EncoderInfo]:
        return self._service.list_encoders()

    def encode(self, encoder_type: str, values: Sequence[str]) -> bytes:
        return self._service.encode(encoder_type, values)
