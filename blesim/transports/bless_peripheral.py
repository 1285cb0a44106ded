"""Radio transport backed by the ``bless`` GATT server library."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from blesim.core.errors import TransportError
from blesim.core.model import GattCharacteristic, GattTree
from blesim.transports.base import ADVERTISING_START, POWERED_ON, ErrorCallback

LOGGER = logging.getLogger(__name__)

_PROPERTY_FLAGS = {
    "read": "read",
    "write": "write",
    "writeWithoutResponse": "write_without_response",
    "notify": "notify",
    "indicate": "indicate",
    "authenticatedSignedWrites": "authenticated_signed_writes",
    "extendedProperties": "extended_properties",
}


def _import_bless() -> Any:
    try:
        import bless  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportError(
            "Radio transport requires 'bless'. Install blesim[radio] and retry."
        ) from exc
    return bless


class BlessTransport:
    """Publishes the GATT tree through a ``BlessServer``.

    bless advertises the services it serves, so the server is only started
    once ``set_services`` delivers the tree. Clients subscribe through the
    platform stack without a hook, so every notify/indicate characteristic is
    given a sink that pushes values with ``update_value``.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._server: Any = None
        self._by_uuid: dict[str, tuple[str, GattCharacteristic]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> str:
        return POWERED_ON

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def set_advertising_state(
        self,
        device_name: str,
        service_uuids: list[str],
        callback: ErrorCallback,
    ) -> None:
        try:
            bless = _import_bless()
            self._server = bless.BlessServer(name=device_name, loop=asyncio.get_running_loop())
        except Exception as exc:
            callback(exc)
            self._emit(ADVERTISING_START, exc)
            return
        self._server.read_request_func = self._on_read_request
        self._server.write_request_func = self._on_write_request
        LOGGER.debug("bless server created for %s (%s)", device_name, ", ".join(service_uuids))
        callback(None)
        self._emit(ADVERTISING_START, None)

    def stop_advertising(self, callback: Callable[[], None] | None = None) -> None:
        server, self._server = self._server, None
        self._by_uuid.clear()

        async def _stop() -> None:
            try:
                if server is not None:
                    await server.stop()
            finally:
                if callback is not None:
                    callback()

        self._spawn(_stop())

    def set_services(self, tree: GattTree, callback: ErrorCallback) -> None:
        server = self._server
        if server is None:
            callback(TransportError("set_services called before advertising was requested"))
            return

        async def _publish() -> None:
            try:
                await self._add_tree(server, tree)
                await server.start()
            except Exception as exc:
                LOGGER.error("bless rejected the GATT tree: %s", exc)
                callback(exc)
                return
            self._attach_sinks(server, tree)
            callback(None)

        self._spawn(_publish())

    def disconnect(self) -> None:
        self.stop_advertising()

    async def _add_tree(self, server: Any, tree: GattTree) -> None:
        bless = _import_bless()
        props_cls = bless.GATTCharacteristicProperties
        perms_cls = bless.GATTAttributePermissions
        self._by_uuid.clear()
        for service in tree.services:
            await server.add_new_service(service.uuid)
            for characteristic in service.characteristics:
                flags = props_cls(0)
                for prop in characteristic.properties:
                    flags |= getattr(props_cls, _PROPERTY_FLAGS[prop])
                permissions = perms_cls(0)
                if "read" in characteristic.properties:
                    permissions |= perms_cls.readable
                if characteristic.properties & {"write", "writeWithoutResponse"}:
                    permissions |= perms_cls.writeable
                await server.add_new_characteristic(
                    service.uuid,
                    characteristic.uuid,
                    flags,
                    None,
                    permissions,
                )
                self._by_uuid[characteristic.uuid.lower()] = (service.uuid, characteristic)

    def _attach_sinks(self, server: Any, tree: GattTree) -> None:
        for service in tree.services:
            for characteristic in service.characteristics:
                if not characteristic.properties & {"notify", "indicate"}:
                    continue
                characteristic.on_subscribe(self._sink(server, service.uuid, characteristic.uuid))

    @staticmethod
    def _sink(server: Any, service_uuid: str, char_uuid: str) -> Callable[[bytes], None]:
        def _push(data: bytes) -> None:
            target = server.get_characteristic(char_uuid)
            if target is None:
                LOGGER.warning("bless has no characteristic %s to notify", char_uuid)
                return
            target.value = bytearray(data)
            server.update_value(service_uuid, char_uuid)

        return _push

    def _lookup(self, uuid: str) -> GattCharacteristic:
        entry = self._by_uuid.get(uuid.lower())
        if entry is None:
            raise TransportError(f"Characteristic {uuid} is not published")
        return entry[1]

    def _on_read_request(self, characteristic: Any, **kwargs: Any) -> bytearray:
        return bytearray(self._lookup(str(characteristic.uuid)).on_read())

    def _on_write_request(self, characteristic: Any, value: Any, **kwargs: Any) -> None:
        self._lookup(str(characteristic.uuid)).on_write(bytes(value))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
