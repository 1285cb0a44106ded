"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from blesim.core.model import GattTree

POWERED_ON = "poweredOn"

STATE_CHANGE = "stateChange"
ADVERTISING_START = "advertisingStart"
ACCEPT = "accept"
DISCONNECT = "disconnect"

ErrorCallback = Callable[[Exception | None], None]


class Transport(Protocol):
    """Radio stack seen by the peripheral controller.

    Completion is reported through callbacks receiving ``None`` on success or
    the exception describing the failure. Events are delivered to handlers
    registered with :meth:`on`.
    """

    @property
    def state(self) -> str:
        """Current adapter state, ``"poweredOn"`` when usable."""

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register a handler for stateChange, advertisingStart, accept or disconnect."""

    def set_advertising_state(
        self,
        device_name: str,
        service_uuids: list[str],
        callback: ErrorCallback,
    ) -> None:
        """Start advertising ``device_name`` with ``service_uuids``."""

    def stop_advertising(self, callback: Callable[[], None] | None = None) -> None:
        """Stop advertising."""

    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        """Publish the GATT tree, replacing any previous one."""

    def disconnect(self) -> None:
        """Drop connected clients."""
