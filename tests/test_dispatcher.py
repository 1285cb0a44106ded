from __future__ import annotations

import pytest

from blesim.core.dispatcher import GattDispatcher
from blesim.core.errors import (
    InsufficientArgumentsError,
    UnknownCharacteristicError,
    UnknownEncoderError,
)
from blesim.core.model import CharacteristicConfig, EncoderRef, NotifyStatus
from blesim.core.registry import CharacteristicRegistry


def _char(name: str, *, initial: str | None = None, encoder: str | None = None) -> CharacteristicConfig:
    return CharacteristicConfig(
        uuid="2a19",
        name=name,
        properties=frozenset({"read", "write", "notify"}),
        initial=initial,
        encoder=EncoderRef(type=encoder) if encoder else None,
    )


@pytest.fixture()
def dispatcher() -> GattDispatcher:
    registry = CharacteristicRegistry()
    registry.register(_char("status", initial="idle"))
    registry.register(_char("battery", encoder="battery-level"))
    registry.register(_char("custom", encoder="glucose"))
    return GattDispatcher(registry)


def test_register_uses_initial_value(dispatcher: GattDispatcher) -> None:
    assert dispatcher.on_read("status") == b"idle"
    assert dispatcher.on_read("battery") == b""
    assert not dispatcher.registry.get("status").subscribed


@pytest.mark.parametrize("payload", [b"", b"\x00\xff", b"running", bytes(range(20))])
def test_write_then_read_round_trip(dispatcher: GattDispatcher, payload: bytes) -> None:
    dispatcher.on_write("status", payload)
    assert dispatcher.on_read("status") == payload


def test_unknown_characteristic_is_reported(dispatcher: GattDispatcher) -> None:
    with pytest.raises(UnknownCharacteristicError):
        dispatcher.on_read("missing")
    with pytest.raises(UnknownCharacteristicError):
        dispatcher.on_write("missing", b"x")
    with pytest.raises(UnknownCharacteristicError):
        dispatcher.on_subscribe("missing", lambda data: None)
    with pytest.raises(UnknownCharacteristicError):
        dispatcher.notify("missing", b"x")
    assert "missing" not in dispatcher.registry


def test_subscribe_notify_unsubscribe(dispatcher: GattDispatcher) -> None:
    received: list[bytes] = []
    dispatcher.on_subscribe("status", received.append)

    result = dispatcher.notify("status", b"busy")
    assert result.status is NotifyStatus.DELIVERED
    assert received == [b"busy"]

    dispatcher.on_unsubscribe("status")
    assert dispatcher.registry.get("status").update_value_callback is None

    result = dispatcher.notify("status", b"done")
    assert result.status is NotifyStatus.NO_SUBSCRIBER
    assert not result.delivered
    assert received == [b"busy"]
    assert dispatcher.on_read("status") == b"done"


def test_second_subscriber_replaces_first(dispatcher: GattDispatcher) -> None:
    first: list[bytes] = []
    second: list[bytes] = []
    dispatcher.on_subscribe("status", first.append)
    dispatcher.on_subscribe("status", second.append)

    dispatcher.notify("status", b"x")
    assert first == []
    assert second == [b"x"]


def test_unsubscribe_without_subscriber_is_noop(dispatcher: GattDispatcher) -> None:
    dispatcher.on_unsubscribe("status")
    dispatcher.on_unsubscribe("missing")
    assert not dispatcher.registry.get("status").subscribed


def test_write_values_uses_configured_encoder(dispatcher: GattDispatcher) -> None:
    result = dispatcher.write_values("battery", ["150"])
    assert result.value == bytes([100])
    assert result.encoder_type == "battery-level"
    assert dispatcher.on_read("battery") == bytes([100])


def test_write_values_without_encoder_joins_text(dispatcher: GattDispatcher) -> None:
    dispatcher.write_values("status", ["all", "good"])
    assert dispatcher.on_read("status") == b"all good"


def test_failed_encoding_leaves_value_unchanged(dispatcher: GattDispatcher) -> None:
    dispatcher.write_values("battery", ["50"])
    with pytest.raises(InsufficientArgumentsError):
        dispatcher.write_values("battery", [])
    assert dispatcher.on_read("battery") == bytes([50])


def test_unregistered_configured_encoder_is_reported(dispatcher: GattDispatcher) -> None:
    with pytest.raises(UnknownEncoderError):
        dispatcher.write_values("custom", ["5.5", "mmol"])
    assert dispatcher.on_read("custom") == b""


def test_notify_values_updates_value_without_subscriber(dispatcher: GattDispatcher) -> None:
    result = dispatcher.notify_values("battery", ["85"])
    assert result.status is NotifyStatus.NO_SUBSCRIBER
    assert dispatcher.on_read("battery") == bytes([85])


def test_duplicate_name_last_registration_wins() -> None:
    registry = CharacteristicRegistry()
    registry.register(CharacteristicConfig(uuid="2a00", name="dup", initial="first"))
    registry.register(CharacteristicConfig(uuid="2a01", name="dup", initial="second"))

    assert len(registry) == 1
    assert registry.get("dup").config.uuid == "2a01"
    assert registry.get("dup").value == b"second"


def test_clear_is_idempotent() -> None:
    registry = CharacteristicRegistry()
    registry.register(_char("status"))
    registry.clear()
    registry.clear()
    assert len(registry) == 0
    assert registry.names() == []
