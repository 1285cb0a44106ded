"""Peripheral lifecycle: advertising state and device configuration swaps."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from typing import Any

from blesim.core.dispatcher import GattDispatcher
from blesim.core.errors import (
    ActivationCancelledError,
    ActivationInProgressError,
    AdapterPoweredOffError,
    AdvertisingError,
    ServiceRegistrationError,
    SwitchTimeoutError,
    TransportError,
)
from blesim.core.model import DeviceConfig, GattService, GattTree
from blesim.core.registry import CharacteristicRegistry
from blesim.transports.base import (
    ACCEPT,
    ADVERTISING_START,
    DISCONNECT,
    POWERED_ON,
    STATE_CHANGE,
    Transport,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_SWITCH_TIMEOUT_S = 15.0
DEFAULT_STOP_TIMEOUT_S = 2.0


class PeripheralState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    ADVERTISING = "advertising"


class PeripheralController:
    """Owns the active device and drives the transport through its lifecycle.

    Transport callbacks and events are re-posted onto the event loop that ran
    the last ``activate``/``switch_to`` call, so the registry and the current
    device are only ever mutated from that loop. The ordering advertising
    start -> set services -> ready is enforced by awaiting the transport's
    completions, never by delays.
    """

    def __init__(
        self,
        transport: Transport,
        registry: CharacteristicRegistry | None = None,
        dispatcher: GattDispatcher | None = None,
        *,
        stop_timeout_s: float = DEFAULT_STOP_TIMEOUT_S,
    ) -> None:
        self.transport = transport
        self.registry = registry if registry is not None else CharacteristicRegistry()
        self.dispatcher = dispatcher if dispatcher is not None else GattDispatcher(self.registry)
        self.stop_timeout_s = stop_timeout_s

        self._state = PeripheralState.IDLE
        self._current: DeviceConfig | None = None
        self._advertising = False
        self._clients: set[str] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: asyncio.Task[None] | None = None
        self._power_waiter: asyncio.Future[None] | None = None
        self._advertising_started: asyncio.Future[None] | None = None
        self._inflight: set[asyncio.Future[None]] = set()
        self._resume_task: asyncio.Task[None] | None = None

        transport.on(STATE_CHANGE, lambda state: self._post(self._handle_state_change, state))
        transport.on(
            ADVERTISING_START,
            lambda error=None: self._post(self._handle_advertising_start, error),
        )
        transport.on(ACCEPT, lambda address: self._post(self._handle_accept, address))
        transport.on(DISCONNECT, lambda address: self._post(self._handle_disconnect, address))

    @property
    def state(self) -> PeripheralState:
        return self._state

    @property
    def clients(self) -> frozenset[str]:
        return frozenset(self._clients)

    def current(self) -> DeviceConfig | None:
        return self._current

    async def activate(
        self,
        config: DeviceConfig,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        """Advertise ``config`` and publish its services.

        Returns once the transport has accepted the service tree; ``on_ready``
        is called exactly once at that point. Raises
        :class:`ActivationInProgressError` if another activation is pending or
        a device is already active, a :class:`TransportError` if the
        transport rejects advertising or the services, and
        :class:`ActivationCancelledError` if :meth:`deactivate` tears the
        activation down before it completes.
        """
        if self._pending is not None and not self._pending.done():
            raise ActivationInProgressError(
                f"Activation of '{self._current.name if self._current else '?'}' is still pending"
            )
        if self._state is PeripheralState.ADVERTISING:
            raise ActivationInProgressError(
                f"Device '{self._current.name if self._current else '?'}' is already active; switch instead"
            )

        self._loop = asyncio.get_running_loop()
        self._current = config
        pending = self._loop.create_task(self._bring_up(config, on_ready))
        self._pending = pending
        try:
            await pending
        except asyncio.CancelledError:
            caller = asyncio.current_task()
            if caller is not None and caller.cancelling():
                raise
            raise ActivationCancelledError(f"Activation of '{config.label}' was cancelled") from None

    async def deactivate(self) -> None:
        """Stop advertising and drop every handle. Safe to call when idle."""
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()
            await asyncio.wait({pending})

        if self._advertising:
            LOGGER.info("Stopping advertising for %s", self._current.name if self._current else "?")
            self._advertising = False
            await self._stop_advertising()

        self.registry.clear()
        self._state = PeripheralState.IDLE
        self._current = None

    async def switch_to(
        self,
        config: DeviceConfig,
        *,
        timeout: float = DEFAULT_SWITCH_TIMEOUT_S,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        """Replace the active device with ``config``.

        The old device's handles are gone before any handle of the new one is
        registered. If the transport does not confirm the new device within
        ``timeout`` seconds the attempt is torn down and
        :class:`SwitchTimeoutError` is raised with the registry left empty.
        A switch requested while another activation is still pending raises
        :class:`ActivationInProgressError`; a pending power-on resume is
        replaced.
        """
        pending = self._pending
        if pending is not None and not pending.done() and pending is not self._resume_task:
            raise ActivationInProgressError(
                f"Activation of '{self._current_name()}' is still pending; cannot switch to '{config.label}'"
            )
        LOGGER.info("Switching to %s", config.label)
        await self.deactivate()
        try:
            await asyncio.wait_for(self.activate(config, on_ready), timeout)
        except asyncio.TimeoutError as exc:
            LOGGER.error("Timed out after %.1fs waiting for %s to start", timeout, config.label)
            await self.deactivate()
            raise SwitchTimeoutError(
                f"Timeout waiting for peripheral to start '{config.label}' after {timeout:g}s"
            ) from exc

    async def shutdown(self) -> None:
        await self.deactivate()
        self.transport.disconnect()
        self._clients.clear()

    async def _bring_up(self, config: DeviceConfig, on_ready: Callable[[], None] | None) -> None:
        self._state = PeripheralState.STARTING
        try:
            while not await self._attempt(config):
                LOGGER.warning("Adapter powered off while starting %s; waiting to retry", config.name)
        except BaseException:
            self._abandon(config)
            raise
        self._state = PeripheralState.ADVERTISING
        if on_ready is not None:
            on_ready()

    async def _attempt(self, config: DeviceConfig) -> bool:
        """Run one bring-up pass; ``False`` when the adapter powered off midway."""
        try:
            await self._wait_powered_on(config)
            await self._advertise(config)
            await self._publish(config)
            if not self._advertising:
                raise AdapterPoweredOffError(f"Adapter powered off while publishing {config.name}")
        except AdapterPoweredOffError:
            self.registry.clear()
            return False
        return True

    async def _wait_powered_on(self, config: DeviceConfig) -> None:
        if self.transport.state == POWERED_ON:
            return
        LOGGER.info("Waiting for adapter to power on before advertising %s", config.name)
        self._power_waiter = asyncio.get_running_loop().create_future()
        try:
            await self._power_waiter
        finally:
            self._power_waiter = None

    async def _advertise(self, config: DeviceConfig) -> None:
        started = self._step_future()
        self._advertising_started = self._step_future()
        try:
            self.transport.set_advertising_state(
                config.name,
                list(config.service_uuids),
                self._completion(started),
            )
            await self._settle(started, AdvertisingError, "Error starting advertising")
            self._advertising = True
            await self._settle(self._advertising_started, AdvertisingError, "Error in advertisingStart")
        finally:
            self._advertising_started = None
        LOGGER.info("[BLE] Advertising started as %s", config.name)

    async def _publish(self, config: DeviceConfig) -> None:
        self.registry.clear()
        tree = self._build_tree(config)
        registered = self._step_future()
        self.transport.set_services(tree, self._completion(registered))
        await self._settle(registered, ServiceRegistrationError, "Error setting services")
        LOGGER.info("[BLE] Services registered")
        for handle in self.registry.handles():
            LOGGER.info("   - %s (%s)", handle.name, handle.config.uuid)

    def _build_tree(self, config: DeviceConfig) -> GattTree:
        services: list[GattService] = []
        for service in config.services:
            characteristics = []
            for char_config in service.characteristics:
                self.registry.register(char_config)
                characteristics.append(
                    self.dispatcher.bind(char_config.name, char_config.uuid, char_config.properties)
                )
            services.append(GattService(uuid=service.uuid, characteristics=tuple(characteristics)))
        return GattTree(services=tuple(services))

    def _abandon(self, config: DeviceConfig) -> None:
        LOGGER.warning("Abandoning activation of %s", config.name)
        if self._advertising:
            self._advertising = False
            self.transport.stop_advertising()
        self.registry.clear()
        self._state = PeripheralState.IDLE
        if self._current is config:
            self._current = None

    async def _stop_advertising(self) -> None:
        stopped = asyncio.get_running_loop().create_future()
        self.transport.stop_advertising(lambda: self._post(self._resolve, stopped, None))
        try:
            await asyncio.wait_for(stopped, self.stop_timeout_s)
        except asyncio.TimeoutError:
            LOGGER.warning("Transport did not confirm stop within %.1fs", self.stop_timeout_s)

    @staticmethod
    async def _settle(future: asyncio.Future[None], error_cls: type[TransportError], message: str) -> None:
        try:
            await future
        except AdapterPoweredOffError:
            raise
        except TransportError as exc:
            LOGGER.error("%s: %s", message, exc)
            raise
        except Exception as exc:
            LOGGER.error("%s: %s", message, exc)
            raise error_cls(f"{message}: {exc}") from exc

    def _step_future(self) -> asyncio.Future[None]:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        return future

    def _completion(self, future: asyncio.Future[None]) -> Callable[[Exception | None], None]:
        def _callback(error: Exception | None = None) -> None:
            self._post(self._resolve, future, error)

        return _callback

    @staticmethod
    def _resolve(future: asyncio.Future[None], error: Exception | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(None)

    def _post(self, fn: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            fn(*args)
            return
        loop.call_soon_threadsafe(fn, *args)

    def _handle_state_change(self, state: str) -> None:
        LOGGER.info("[BLE] State changed: %s", state)
        if state == POWERED_ON:
            if self._power_waiter is not None:
                self._resolve(self._power_waiter, None)
            elif self._should_resume():
                assert self._current is not None and self._loop is not None
                LOGGER.info("Adapter powered on again; resuming %s", self._current.name)
                self._resume_task = self._loop.create_task(self._resume(self._current))
                self._pending = self._resume_task
            return

        if self._advertising:
            self._advertising = False
            self.transport.stop_advertising()
        for future in list(self._inflight):
            self._resolve(future, AdapterPoweredOffError(f"Adapter state changed to {state}"))
        if self._state is PeripheralState.ADVERTISING:
            LOGGER.warning("Adapter left poweredOn; %s is no longer reachable", self._current_name())
            self.registry.clear()
            self._state = PeripheralState.IDLE

    def _should_resume(self) -> bool:
        return (
            self._current is not None
            and self._loop is not None
            and self._state is PeripheralState.IDLE
            and (self._pending is None or self._pending.done())
        )

    async def _resume(self, config: DeviceConfig) -> None:
        try:
            await self._bring_up(config, None)
        except TransportError as exc:
            LOGGER.error("Could not resume advertising %s: %s", config.name, exc)

    def _handle_advertising_start(self, error: Exception | None = None) -> None:
        if self._advertising_started is None:
            LOGGER.debug("advertisingStart with no activation pending")
            return
        self._resolve(self._advertising_started, error)

    def _handle_accept(self, address: str) -> None:
        self._clients.add(address)
        LOGGER.info("[BLE] Client connected: %s", address)

    def _handle_disconnect(self, address: str) -> None:
        self._clients.discard(address)
        LOGGER.info("[BLE] Client disconnected: %s", address)

    def _current_name(self) -> str:
        return self._current.name if self._current else "<none>"
