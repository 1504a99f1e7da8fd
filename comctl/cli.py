"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import typer

from comctl.core.errors import ComctlError, ConfigurationError
from comctl.core.fleet import FleetManager
from comctl.core.profile_loader import load_profiles
from comctl.core.settings import load_settings

app = typer.Typer(help="Serial device control via text command/response profiles")

_PARAMS_HELP = "JSON object of template parameters"
_SET_HELP = "Template parameter as key=value; dotted keys build nested objects"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_manager() -> FleetManager:
    loaded = load_profiles()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return FleetManager(settings=load_settings(), profiles=list(loaded.profiles.values()))


def _parse_selector(selector: str) -> int | str:
    return int(selector) if selector.isdigit() else selector


def _parse_params(params_json: str | None, assignments: list[str] | None) -> dict[str, Any] | None:
    if params_json is None and not assignments:
        return None

    params: dict[str, Any] = {}
    if params_json is not None:
        try:
            loaded = json.loads(params_json)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"--params is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError("--params must be a JSON object")
        params.update(loaded)

    for assignment in assignments or []:
        key, sep, value = assignment.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"--set expects key=value, got '{assignment}'")
        *parents, leaf = key.split(".")
        node = params
        for parent in parents:
            child = node.setdefault(parent, {})
            if not isinstance(child, dict):
                raise ConfigurationError(f"--set '{key}' conflicts with an existing value")
            node = child
        node[leaf] = value
    return params


async def _scan(manager: FleetManager) -> list[str]:
    try:
        return [str(connection) for connection in await manager.scan()]
    finally:
        await manager.shutdown()


async def _send(
    manager: FleetManager,
    profile: str,
    selector: int | str,
    operation: str,
    params: dict[str, Any] | None,
) -> list[str]:
    try:
        await manager.scan()
        return await manager.send(profile, selector, operation, params)
    finally:
        await manager.shutdown()


async def _list(
    manager: FleetManager,
    profile: str,
    operation: str,
    params: dict[str, Any] | None,
) -> list[list[str]]:
    try:
        await manager.scan()
        return await manager.list(profile, operation, params)
    finally:
        await manager.shutdown()


@app.command("profiles")
def list_profiles() -> None:
    """List loaded device profiles and their operations."""
    try:
        loaded = load_profiles()
        for warning in loaded.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        if not loaded.profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for name, profile in sorted(loaded.profiles.items()):
            typer.echo(f"{name}: {profile.baud_rate} baud")
            for operation, macros in sorted(profile.operations.items()):
                commands = ", ".join(m.command for m in macros)
                typer.echo(f"  {operation}: {commands}")
    except ComctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("ports")
def list_ports() -> None:
    """List serial ports currently present on this host."""
    try:
        manager = _build_manager()
        ports = manager.transport.list_ports()
        if not ports:
            typer.echo("No serial ports found")
            return

        for port in ports:
            ids = f"{port.vendor_id}:{port.product_id}" if port.vendor_id else "-"
            typer.echo(f"{port.path} {ids} {port.manufacturer or '-'} {port.serial_number or '-'}")
    except ComctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan() -> None:
    """Probe every serial port with every profile and show the result."""
    try:
        manager = _build_manager()
        connections = asyncio.run(_scan(manager))
        if not connections:
            typer.echo("No serial ports found")
            return
        for connection in connections:
            typer.echo(connection)
    except ComctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    profile: str,
    operation: str,
    device: str = typer.Option("0", "--device", "-d", help="Index or name of the port within the profile"),
    params: str | None = typer.Option(None, "--params", help=_PARAMS_HELP),
    assignments: list[str] | None = typer.Option(None, "--set", help=_SET_HELP),
) -> None:
    """Run OPERATION on one port of PROFILE and print the responses."""
    try:
        parsed = _parse_params(params, assignments)
        manager = _build_manager()
        responses = asyncio.run(_send(manager, profile, _parse_selector(device), operation, parsed))
        for response in responses:
            typer.echo(response)
    except ComctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("list")
def list_operation(
    profile: str,
    operation: str,
    params: str | None = typer.Option(None, "--params", help=_PARAMS_HELP),
    assignments: list[str] | None = typer.Option(None, "--set", help=_SET_HELP),
) -> None:
    """Run OPERATION on every port of PROFILE and print the responses."""
    try:
        parsed = _parse_params(params, assignments)
        manager = _build_manager()
        results = asyncio.run(_list(manager, profile, operation, parsed))
        if not results:
            typer.echo(f"No ports found of profile {profile}")
            return
        for index, responses in enumerate(results):
            typer.echo(f"[{index}]")
            for response in responses:
                typer.echo(f"  {response}")
    except ComctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
