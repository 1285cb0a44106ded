"""Device configuration loading and validation for YAML device files."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from blesim.core.encoders import is_registered
from blesim.core.errors import ConfigLoadError, ConfigValidationError
from blesim.core.model import (
    CharacteristicConfig,
    DeviceConfig,
    DeviceEntry,
    EncoderRef,
    ServiceConfig,
)

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_YAML_SUFFIXES = (".yml", ".yaml")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedDevices:
    devices: dict[str, DeviceEntry]
    warnings: tuple[str, ...]

    def by_number(self, number: int) -> DeviceEntry | None:
        for entry in self.devices.values():
            if entry.number == number:
                return entry
        return None


def _load_schema_validator() -> Any:
    schema_text = resources.files("blesim.schemas").joinpath("device.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _device_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    local = Path(os.environ.get("BLESIM_CONFIG_DIR", Path.cwd() / "configs"))
    return xdg_config / "blesim/devices", local


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read device file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Device file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ConfigValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _build_characteristic(doc: dict[str, Any], *, context: str) -> CharacteristicConfig:
    initial = doc.get("initial")
    encoder = doc.get("encoder")
    if encoder is not None and not is_registered(encoder["type"]):
        LOGGER.warning(
            "%s uses unregistered encoder '%s'; writes will be rejected", context, encoder["type"]
        )
    return CharacteristicConfig(
        uuid=_normalize_uuid(doc["uuid"], context=f"{context}.uuid"),
        name=doc["name"],
        properties=frozenset(doc["properties"]),
        initial=str(initial) if initial is not None else None,
        encoder=EncoderRef(type=encoder["type"]) if encoder is not None else None,
    )


def _build_device(doc: dict[str, Any], source: Path | Traversable) -> DeviceConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    seen: set[str] = set()
    services: list[ServiceConfig] = []
    for index, service_doc in enumerate(doc["services"]):
        context = f"{doc['name']}.services[{index}]"
        characteristics: list[CharacteristicConfig] = []
        for char_doc in service_doc["characteristics"]:
            characteristic = _build_characteristic(
                char_doc, context=f"{context}.{char_doc['name']}"
            )
            if characteristic.name in seen:
                raise ConfigValidationError(
                    f"Duplicate characteristic name '{characteristic.name}' in {source}"
                )
            seen.add(characteristic.name)
            characteristics.append(characteristic)
        services.append(
            ServiceConfig(
                uuid=_normalize_uuid(service_doc["uuid"], context=f"{context}.uuid"),
                characteristics=tuple(characteristics),
            )
        )

    return DeviceConfig(
        name=doc["name"],
        display_name=doc.get("displayName"),
        services=tuple(services),
    )


def load_device_config(path: Path | Traversable) -> DeviceConfig:
    return _build_device(_read_yaml(path), path)


def _device_key(name: str) -> str:
    for suffix in _YAML_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _iter_packaged_device_paths() -> list[Traversable]:
    device_root = resources.files("blesim.devices")
    return [item for item in device_root.iterdir() if item.name.endswith(_YAML_SUFFIXES)]


def _iter_user_device_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _device_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in _YAML_SUFFIXES))
    return paths


def load_devices() -> LoadedDevices:
    configs: dict[str, tuple[str, DeviceConfig]] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_device_paths(), key=lambda p: p.name):
        configs[_device_key(path.name)] = ("packaged", load_device_config(path))

    for path in _iter_user_device_paths():
        config = load_device_config(path)
        key = _device_key(path.name)
        if key in configs:
            warning = f"Device '{key}' from {path} overrides {configs[key][0]} device"
            LOGGER.warning(warning)
            warnings.append(warning)
        configs[key] = (str(path), config)

    devices = {
        key: DeviceEntry(key=key, number=number, source=source, config=config)
        for number, (key, (source, config)) in enumerate(sorted(configs.items()), start=1)
    }
    return LoadedDevices(devices=devices, warnings=tuple(warnings))
