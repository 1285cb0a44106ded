"""Characteristic registry for the active device."""

from __future__ import annotations

import logging

from blesim.core.errors import UnknownCharacteristicError
from blesim.core.model import CharacteristicConfig, CharacteristicHandle

LOGGER = logging.getLogger(__name__)


class CharacteristicRegistry:
    """Holds exactly one handle per characteristic name.

    Registering a name twice replaces the earlier handle (last registration
    wins). Device files are checked for duplicate names when they are loaded,
    so a collision here means the caller bypassed that check.
    """

    def __init__(self) -> None:
        self._handles: dict[str, CharacteristicHandle] = {}

    def register(self, config: CharacteristicConfig) -> CharacteristicHandle:
        handle = CharacteristicHandle(
            config=config,
            value=(config.initial or "").encode("utf-8"),
        )
        if config.name in self._handles:
            LOGGER.warning(
                "Characteristic '%s' registered twice; replacing %s with %s",
                config.name,
                self._handles[config.name].config.uuid,
                config.uuid,
            )
        self._handles[config.name] = handle
        return handle

    def clear(self) -> None:
        if self._handles:
            LOGGER.debug("Clearing %d characteristic handle(s)", len(self._handles))
        self._handles.clear()

    def get(self, name: str) -> CharacteristicHandle:
        handle = self._handles.get(name)
        if handle is None:
            raise UnknownCharacteristicError(name)
        return handle

    def names(self) -> list[str]:
        return list(self._handles)

    def handles(self) -> list[CharacteristicHandle]:
        return list(self._handles.values())

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def __len__(self) -> int:
        return len(self._handles)
