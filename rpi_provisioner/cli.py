"""Thin CLI wrapper for rpi_provisioner.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.

Diagnostics go to stderr; on success ``download`` and ``flash`` print
nothing on stdout but the resulting path.
"""

import logging
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rpi_provisioner import __version__
from rpi_provisioner.config import Settings, get_settings, print_settings_json
from rpi_provisioner.errors import ProvisionError, UserAborted

app = typer.Typer(
    name="rpi-provision",
    help="Raspberry Pi OS provisioning - download images and flash SD cards",
    no_args_is_help=True,
)
console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send all log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        raise typer.Exit(code=1) from None


def _exit_on_error(e: ProvisionError) -> NoReturn:
    if isinstance(e, UserAborted):
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(code=0) from None
    console.print(f"[red]Error ({e.code}): {e.message}[/red]")
    raise typer.Exit(code=1) from None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rpi-provisioner version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Raspberry Pi OS provisioning - download images and flash SD cards."""
    configure_logging("DEBUG" if verbose else _load_settings().log_level)


@app.command()
def download(
    version: Annotated[
        str | None,
        typer.Argument(help="Image version: 'latest' or YYYY-MM-DD"),
    ] = None,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", help="Override the image cache directory"),
    ] = None,
) -> None:
    """Download, verify and decompress a Raspberry Pi OS image.

    Prints the path of the decompressed image.
    """
    from rpi_provisioner.image.service import ensure_image

    settings = _load_settings()
    if cache_dir is not None:
        settings = settings.model_copy(update={"cache_dir": cache_dir})

    try:
        image_path = ensure_image(version, settings=settings)
    except ProvisionError as e:
        _exit_on_error(e)

    typer.echo(str(image_path))


@app.command()
def flash(
    image: Annotated[Path, typer.Argument(help="Path to the decompressed image")],
    device: Annotated[
        str | None,
        typer.Option(
            "--device", "-d", help="Target device (e.g., /dev/sdb, /dev/disk4)"
        ),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt"),
    ] = False,
) -> None:
    """Flash an image to an SD card.

    Without --device the single SD card candidate is used. Prints the
    mount point of the boot partition.
    """
    from rpi_provisioner.flash.service import flash_to_sd_card

    settings = _load_settings()
    if yes:
        settings = settings.model_copy(update={"require_confirmation": False})

    try:
        handle = flash_to_sd_card(image, settings=settings, device=device, console=console)
    except ProvisionError as e:
        _exit_on_error(e)

    typer.echo(str(handle.mount_point))


@app.command()
def devices() -> None:
    """List disks with their SD card classification."""
    from rpi_provisioner.disk.classifier import classify_all
    from rpi_provisioner.disk.inventory import get_inventory
    from rpi_provisioner.disk.models import human_size

    try:
        inventory = get_inventory()
        scored = classify_all(inventory.list_disks(), inventory.sd_device_pattern)
    except ProvisionError as e:
        _exit_on_error(e)

    if not scored:
        console.print("[yellow]No disks found[/yellow]")
        return

    table = Table(title="Disks")
    table.add_column("Device", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Model")
    table.add_column("Protocol")
    table.add_column("Removable")
    table.add_column("Verdict")
    table.add_column("Rule")

    for disk, score in scored:
        verdict_style = "green" if score.is_candidate else "dim"
        table.add_row(
            disk.identifier,
            human_size(disk.size_bytes),
            disk.model or "-",
            disk.protocol or "-",
            disk.removable.value,
            f"[{verdict_style}]{score.verdict.value}[/{verdict_style}]",
            score.rule,
        )

    console.print(table)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _load_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Images:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Base URL:            {settings.base_url}")
    console.print(f"  OS version:          {settings.os_version}")
    console.print(f"  Keep compressed:     {settings.keep_compressed}")
    console.print()
    console.print("[bold]Target:[/bold]")
    console.print(f"  Auto-detect:         {settings.auto_detect}")
    console.print(f"  Target disk:         {settings.target_disk or '(none)'}")
    console.print(f"  Require confirm:     {settings.require_confirmation}")
    console.print()
    console.print("[bold]Flashing:[/bold]")
    console.print(f"  Block size:          {settings.block_size}")
    console.print(f"  Mount timeout:       {settings.mount_timeout}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Index timeout:       {settings.index_timeout}")
    console.print(f"  Log level:           {settings.log_level}")


if __name__ == "__main__":
    app()
