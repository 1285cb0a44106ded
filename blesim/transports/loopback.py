"""In-process transport with a simulated central on the other end."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from blesim.core.errors import UnknownCharacteristicError
from blesim.core.model import GattCharacteristic, GattTree
from blesim.transports.base import (
    ACCEPT,
    ADVERTISING_START,
    DISCONNECT,
    POWERED_ON,
    STATE_CHANGE,
    ErrorCallback,
)

LOGGER = logging.getLogger(__name__)

POWERED_OFF = "poweredOff"


class LoopbackTransport:
    """Transport that never touches a radio.

    Completions are delivered on the next loop iteration when an event loop is
    running, otherwise immediately. The ``connect``/``read``/``write``/
    ``subscribe`` methods act as a central talking to the published tree.
    """

    def __init__(self, *, powered_on: bool = True) -> None:
        self._state = POWERED_ON if powered_on else POWERED_OFF
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.advertising: tuple[str, tuple[str, ...]] | None = None
        self.tree: GattTree | None = None
        self.connected: set[str] = set()
        self.notifications: dict[str, list[bytes]] = {}

    @property
    def state(self) -> str:
        return self._state

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def set_power(self, powered_on: bool) -> None:
        self._state = POWERED_ON if powered_on else POWERED_OFF
        self.emit(STATE_CHANGE, self._state)

    def set_advertising_state(
        self,
        device_name: str,
        service_uuids: list[str],
        callback: ErrorCallback,
    ) -> None:
        self.advertising = (device_name, tuple(service_uuids))
        LOGGER.debug("Loopback advertising %s %s", device_name, service_uuids)
        self._later(callback, None)
        self._later(self.emit, ADVERTISING_START, None)

    def stop_advertising(self, callback: Callable[[], None] | None = None) -> None:
        self.advertising = None
        self.tree = None
        self.notifications.clear()
        if callback is not None:
            self._later(callback)

    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        self.tree = tree
        self.notifications.clear()
        self._later(callback, None)

    def disconnect(self) -> None:
        for address in sorted(self.connected):
            self.drop(address)

    def connect(self, address: str = "00:00:00:00:00:01") -> None:
        self.connected.add(address)
        self.emit(ACCEPT, address)

    def drop(self, address: str) -> None:
        self.connected.discard(address)
        self.emit(DISCONNECT, address)

    def read(self, name: str) -> bytes:
        return self._characteristic(name).on_read()

    def write(self, name: str, data: bytes) -> None:
        self._characteristic(name).on_write(data)

    def subscribe(self, name: str) -> list[bytes]:
        received: list[bytes] = []
        self._characteristic(name).on_subscribe(received.append)
        self.notifications[name] = received
        return received

    def unsubscribe(self, name: str) -> None:
        self._characteristic(name).on_unsubscribe()

    def _characteristic(self, name: str) -> GattCharacteristic:
        if self.tree is not None:
            for characteristic in self.tree.characteristics():
                if characteristic.name == name:
                    return characteristic
        raise UnknownCharacteristicError(name)

    @staticmethod
    def _later(fn: Callable[..., Any], *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            fn(*args)
            return
        loop.call_soon(fn, *args)
