"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from blesim.core.config_loader import load_device_config
from blesim.core.errors import BlesimError
from blesim.core.model import DeviceConfig
from blesim.core.peripheral import DEFAULT_SWITCH_TIMEOUT_S
from blesim.core.service import SimulatorService, build_transport

app = typer.Typer(help="Simulate BLE GATT peripherals for testing central applications")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, ...)"),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _build_service(transport: str | None = None) -> SimulatorService:
    if transport is None:
        service = SimulatorService()
    else:
        service = SimulatorService(transport=build_transport(transport))
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _describe(config: DeviceConfig) -> None:
    for service in config.services:
        typer.echo(f"  service {service.uuid}")
        for char in service.characteristics:
            props = ", ".join(sorted(char.properties))
            encoder = f" [encoder: {char.encoder.type}]" if char.encoder else ""
            typer.echo(f"    {char.name} ({char.uuid}) [{props}]{encoder}")


@app.command("encoders")
def list_encoders() -> None:
    """List available measurement encoders."""
    try:
        service = _build_service()
        for info in service.list_encoders():
            typer.echo(f"{info.name:<20} - {info.description}")
            typer.echo(f"{'':<20}   Example: {info.example}")
    except BlesimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("encode")
def encode_values(
    encoder: str,
    values: list[str] | None = typer.Argument(None, help="Values in the encoder's format"),
) -> None:
    """Encode VALUES with ENCODER and print the bytes as hex."""
    try:
        service = _build_service()
        payload = service.encode(encoder, values or [])
        typer.echo(payload.hex())
    except BlesimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices() -> None:
    """List available device configurations."""
    try:
        service = _build_service()
        entries = service.list_devices()
        if not entries:
            typer.echo("No device configs found")
            return

        for entry in entries:
            count = len(entry.config.services)
            plural = "" if count == 1 else "s"
            typer.echo(
                f"{entry.number:>2}. {entry.config.label} [{entry.key}] ({count} service{plural})"
            )
    except BlesimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("validate")
def validate(path: Path) -> None:
    """Validate a device YAML file and print its GATT layout."""
    try:
        config = load_device_config(path)
        typer.echo(f"{config.label}: OK")
        _describe(config)
    except BlesimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _run(service: SimulatorService, config: DeviceConfig, timeout: float) -> None:
    def _ready() -> None:
        typer.echo("BLE Peripheral running.")
        typer.echo(f"Advertising as: {config.name}")
        _describe(config)

    try:
        await service.switch(config, timeout=timeout, on_ready=_ready)
        await asyncio.Event().wait()
    finally:
        await service.shutdown()


@app.command("run")
def run_device(
    device: str = typer.Argument(..., help="Device number, key or YAML path"),
    transport: str = typer.Option("loopback", "--transport", help="loopback or bless"),
    timeout: float = typer.Option(DEFAULT_SWITCH_TIMEOUT_S, "--timeout", help="Seconds to wait for the radio"),
) -> None:
    """Bring DEVICE up on a transport and keep it advertising until interrupted."""
    try:
        service = _build_service(transport)
        config = service.load_device(device)
        asyncio.run(_run(service, config, timeout))
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    except BlesimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
