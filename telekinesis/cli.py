"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time

import typer

from telekinesis.api import Client
from telekinesis.core.errors import TelekinesisError
from telekinesis.core.profile_loader import load_profiles
from telekinesis.core.settings import SettingsStore, load_settings_or_default

app = typer.Typer(help="Scan, control and configure BLE motion devices")

_POLL_INTERVAL_S = 0.2


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client() -> Client:
    try:
        client = Client()
    except TelekinesisError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    for warning in client.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _load_settings() -> SettingsStore:
    settings, warnings = load_settings_or_default()
    for warning in warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return settings


def _pump(client: Client, seconds: float) -> None:
    deadline = time.monotonic() + seconds
    while True:
        for event in client.poll_events():
            typer.echo(f"  {event}")
        if time.monotonic() >= deadline:
            return
        time.sleep(_POLL_INTERVAL_S)


def _connect_and_scan(client: Client, scan_seconds: float) -> None:
    if not client.connect():
        typer.echo("Error: Could not connect to the device backend", err=True)
        raise typer.Exit(code=1)
    if not client.scan_for_devices():
        client.close()
        typer.echo("Error: Could not start scanning", err=True)
        raise typer.Exit(code=1)
    _pump(client, scan_seconds)
    client.stop_scan()


@app.command("profiles")
def list_profiles() -> None:
    """List device profiles and their actuators."""
    try:
        loaded = load_profiles()
    except TelekinesisError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    if not loaded.profiles:
        typer.echo("No profiles loaded")
        raise typer.Exit(code=1)
    for profile in sorted(loaded.profiles.values(), key=lambda p: p.id):
        typer.echo(f"{profile.id}: {profile.name}")
        for kind, spec in sorted(profile.actuators.items()):
            typer.echo(f"  {kind.value}: {spec.actuators} actuator(s), {spec.steps} steps")


@app.command("devices")
def list_devices(
    scan_seconds: float = typer.Option(5.0, "--scan-seconds", help="How long to scan"),
) -> None:
    """Scan for devices and show their state, capabilities and settings."""
    client = _build_client()
    _connect_and_scan(client, scan_seconds)
    try:
        names = client.get_known_devices()
        if not names:
            typer.echo("No devices found")
            return
        for name in names:
            connected = "connected" if client.get_device_connected(name) else "not connected"
            capabilities = ", ".join(client.get_device_capabilities(name)) or "-"
            enabled = "enabled" if client.get_enabled(name) else "disabled"
            tags = ", ".join(client.get_events(name)) or "-"
            typer.echo(f"{name}: {connected}, {enabled}, capabilities: {capabilities}, tags: {tags}")
    finally:
        client.close()


@app.command("vibrate")
def vibrate(
    speed: float = typer.Argument(..., help="Speed from 0.0 to 1.0"),
    duration: float = typer.Option(1.0, "--duration", "-d", help="Seconds; 0 runs until Ctrl-C"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Only devices with this tag"),
    scan_seconds: float = typer.Option(5.0, "--scan-seconds", help="How long to scan first"),
) -> None:
    """Scan, then vibrate all enabled devices (or those matching --tag)."""
    client = _build_client()
    _connect_and_scan(client, scan_seconds)
    try:
        accepted = client.vibrate_events(speed, duration, tag) if tag else client.vibrate(speed, duration)
        if not accepted:
            typer.echo("Error: No device accepted the command", err=True)
            raise typer.Exit(code=1)
        try:
            _pump(client, duration if duration > 0 else float("inf"))
        except KeyboardInterrupt:
            typer.echo("Interrupted")
        client.stop_all()
        _pump(client, 0.5)
    finally:
        client.close()


@app.command("stop")
def stop(
    scan_seconds: float = typer.Option(5.0, "--scan-seconds", help="How long to scan first"),
) -> None:
    """Scan, then stop every connected device regardless of settings."""
    client = _build_client()
    _connect_and_scan(client, scan_seconds)
    try:
        if not client.stop_all():
            typer.echo("No connected devices to stop")
            return
        _pump(client, 0.5)
    finally:
        client.close()


def _store(settings: SettingsStore) -> None:
    try:
        settings.store()
    except TelekinesisError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("enable")
def enable(name: str) -> None:
    """Include a device in ordinary dispatch."""
    settings = _load_settings()
    settings.set_enabled(name, True)
    _store(settings)
    typer.echo(f"{name}: enabled")


@app.command("disable")
def disable(name: str) -> None:
    """Exclude a device from ordinary dispatch (stop still reaches it)."""
    settings = _load_settings()
    settings.set_enabled(name, False)
    _store(settings)
    typer.echo(f"{name}: disabled")


@app.command("tags")
def tags(
    name: str,
    values: list[str] | None = typer.Argument(None, help="New tags; omit to show current"),
    clear: bool = typer.Option(False, "--clear", help="Remove all tags"),
) -> None:
    """Show or set the tags that select a device for tag-filtered vibrate."""
    settings = _load_settings()
    if clear or values:
        stored = settings.set_tags(name, [] if clear else values or [])
        _store(settings)
        typer.echo(f"{name}: {', '.join(stored) or '-'}")
        return
    typer.echo(f"{name}: {', '.join(settings.get_tags(name)) or '-'}")


@app.command("settings")
def show_settings() -> None:
    """Show the settings file location and per-device settings."""
    settings = _load_settings()
    typer.echo(f"File: {settings.path}")
    rules = settings.tag_rules
    typer.echo(
        f"Tag matching: {rules.match}, case_sensitive={rules.case_sensitive}, "
        f"match_device_name={rules.match_device_name}"
    )
    names = settings.devices()
    if not names:
        typer.echo("No device settings")
        return
    for name in names:
        enabled = "enabled" if settings.get_enabled(name) else "disabled"
        typer.echo(f"  {name}: {enabled}, tags: {', '.join(settings.get_tags(name)) or '-'}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
