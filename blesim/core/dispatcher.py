"""GATT access dispatch over a characteristic registry."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from blesim.core.encoder_args import parse_encoder_args
from blesim.core.encoders import encode
from blesim.core.model import (
    GattCharacteristic,
    NotifyResult,
    NotifyStatus,
    UpdateValueCallback,
    WriteResult,
)
from blesim.core.registry import CharacteristicRegistry

LOGGER = logging.getLogger(__name__)


def _preview(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


class GattDispatcher:
    """Services reads, writes and subscriptions from clients and the operator.

    Every value or subscription change goes through one of these methods; the
    handles are never mutated anywhere else.
    """

    def __init__(self, registry: CharacteristicRegistry) -> None:
        self.registry = registry

    def on_read(self, name: str) -> bytes:
        handle = self.registry.get(name)
        LOGGER.info("[READ] %s <- %s", name, _preview(handle.value))
        return handle.value

    def on_write(self, name: str, data: bytes) -> None:
        handle = self.registry.get(name)
        handle.value = bytes(data)
        LOGGER.info("[WRITE] %s -> %s", name, _preview(handle.value))

    def on_subscribe(self, name: str, callback: UpdateValueCallback) -> None:
        handle = self.registry.get(name)
        if handle.update_value_callback is not None:
            LOGGER.debug("Replacing existing subscriber on %s", name)
        handle.update_value_callback = callback
        LOGGER.info("[SUBSCRIBE] %s", name)

    def on_unsubscribe(self, name: str) -> None:
        if name not in self.registry:
            LOGGER.debug("Unsubscribe for unregistered characteristic %s ignored", name)
            return
        self.registry.get(name).update_value_callback = None
        LOGGER.info("[UNSUBSCRIBE] %s", name)

    def notify(self, name: str, data: bytes) -> NotifyResult:
        handle = self.registry.get(name)
        handle.value = bytes(data)
        callback = handle.update_value_callback
        if callback is None:
            LOGGER.warning("No clients subscribed to %s; value updated only", name)
            return NotifyResult(name=name, value=handle.value, status=NotifyStatus.NO_SUBSCRIBER)
        callback(handle.value)
        LOGGER.info("[NOTIFY] %s -> %s", name, handle.value.hex())
        return NotifyResult(name=name, value=handle.value, status=NotifyStatus.DELIVERED)

    def encode_values(self, name: str, tokens: Sequence[str]) -> bytes:
        """Encode operator tokens with the characteristic's configured encoder.

        Characteristics without an encoder take the tokens as space-joined text.
        """
        handle = self.registry.get(name)
        encoder_type = handle.config.encoder_type
        if encoder_type is None:
            return " ".join(tokens).encode("utf-8")
        return encode(encoder_type, parse_encoder_args(encoder_type, tokens))

    def write_values(self, name: str, tokens: Sequence[str]) -> WriteResult:
        payload = self.encode_values(name, tokens)
        self.on_write(name, payload)
        handle = self.registry.get(name)
        return WriteResult(name=name, value=handle.value, encoder_type=handle.config.encoder_type)

    def notify_values(self, name: str, tokens: Sequence[str]) -> NotifyResult:
        return self.notify(name, self.encode_values(name, tokens))

    def bind(self, name: str, uuid: str, properties: frozenset[str]) -> GattCharacteristic:
        """Build the transport-facing entry whose hooks dispatch to ``name``."""
        return GattCharacteristic(
            uuid=uuid,
            name=name,
            properties=properties,
            on_read=lambda: self.on_read(name),
            on_write=lambda data: self.on_write(name, data),
            on_subscribe=lambda callback: self.on_subscribe(name, callback),
            on_unsubscribe=lambda: self.on_unsubscribe(name),
        )
