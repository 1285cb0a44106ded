"""Core data models used across the registry, controller, loader and CLI."""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass, field

UpdateValueCallback = Callable[[bytes], None]


@dataclass(frozen=True)
class EncoderRef:
    type: str


@dataclass(frozen=True)
class CharacteristicConfig:
    uuid: str
    name: str
    properties: frozenset[str] = frozenset()
    initial: str | None = None
    encoder: EncoderRef | None = None

    @property
    def encoder_type(self) -> str | None:
        return self.encoder.type if self.encoder else None


@dataclass(frozen=True)
class ServiceConfig:
    uuid: str
    characteristics: tuple[CharacteristicConfig, ...]


@dataclass(frozen=True)
class DeviceConfig:
    name: str
    services: tuple[ServiceConfig, ...]
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def service_uuids(self) -> tuple[str, ...]:
        return tuple(service.uuid for service in self.services)


@dataclass
class CharacteristicHandle:
    """Runtime state for one characteristic of the active device."""

    config: CharacteristicConfig
    value: bytes = b""
    update_value_callback: UpdateValueCallback | None = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def subscribed(self) -> bool:
        return self.update_value_callback is not None


@dataclass(frozen=True)
class EncoderInfo:
    name: str
    description: str
    example: str


class NotifyStatus(enum.Enum):
    DELIVERED = "delivered"
    NO_SUBSCRIBER = "no-subscriber"


@dataclass(frozen=True)
class NotifyResult:
    name: str
    value: bytes
    status: NotifyStatus

    @property
    def delivered(self) -> bool:
        return self.status is NotifyStatus.DELIVERED


@dataclass(frozen=True)
class WriteResult:
    name: str
    value: bytes
    encoder_type: str | None


@dataclass(frozen=True)
class GattCharacteristic:
    uuid: str
    name: str
    properties: frozenset[str]
    on_read: Callable[[], bytes]
    on_write: Callable[[bytes], None]
    on_subscribe: Callable[[UpdateValueCallback], None]
    on_unsubscribe: Callable[[], None]


@dataclass(frozen=True)
class GattService:
    uuid: str
    characteristics: tuple[GattCharacteristic, ...]


@dataclass(frozen=True)
class GattTree:
    services: tuple[GattService, ...] = field(default_factory=tuple)

    def characteristics(self) -> list[GattCharacteristic]:
        return [char for service in self.services for char in service.characteristics]


@dataclass(frozen=True)
class DeviceEntry:
    key: str
    number: int
    source: str
    config: DeviceConfig
