"""Operator confirmation before a destructive write.

Shows the full device metadata, flags cards that already carry a Raspberry
Pi OS boot partition, and requires the exact confirmation phrase. Anything
else aborts the pipeline before any side effect.
"""

import logging
from collections.abc import Callable

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from rpi_provisioner.disk.models import (
    BOOT_PARTITION_LABELS,
    CandidateScore,
    DiskDevice,
    human_size,
)
from rpi_provisioner.errors import UserAborted

logger = logging.getLogger(__name__)

DEFAULT_PHRASE = "YES"


def has_boot_signature(device: DiskDevice) -> bool:
    """Check whether a device looks like a previously provisioned card."""
    for partition in device.partitions:
        if partition.is_boot_labelled:
            return True
        mount_name = (partition.mount_point or "").rstrip("/").rsplit("/", 1)[-1]
        if mount_name.lower() in BOOT_PARTITION_LABELS:
            return True
    return False


def render_device(
    device: DiskDevice, score: CandidateScore | None = None
) -> Table:
    """Build a table with the metadata of a device and its partitions."""
    table = Table(title="DISK INFORMATION", show_header=False, title_style="bold")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Device", device.identifier)
    table.add_row("Name", device.model or "Unknown")
    table.add_row("Size", f"{human_size(device.size_bytes)} ({device.size_bytes} bytes)")
    table.add_row("Protocol", device.protocol or "Unknown")
    table.add_row("Removable", device.removable.value)
    table.add_row("Serial", device.serial or "Unknown")
    if score is not None:
        table.add_row("Classification", f"{score.verdict.value} ({score.rule})")

    if device.partitions:
        for partition in device.partitions:
            details = ", ".join(
                item
                for item in (
                    partition.label,
                    partition.fstype,
                    human_size(partition.size_bytes) if partition.size_bytes else None,
                    f"mounted at {partition.mount_point}" if partition.mount_point else None,
                )
                if item
            )
            table.add_row("Partition", f"{partition.identifier} {details}".strip())
    else:
        table.add_row("Partitions", "none")

    return table


def confirm_target(
    device: DiskDevice,
    score: CandidateScore | None = None,
    *,
    phrase: str = DEFAULT_PHRASE,
    console: Console | None = None,
    ask: Callable[[str], str] | None = None,
) -> None:
    """Require the operator to type the confirmation phrase.

    Args:
        device: Target device.
        score: Classification of the device, shown for context.
        phrase: Exact phrase required to proceed.
        console: Console for output (stderr by default).
        ask: Function reading the operator's answer.

    Raises:
        UserAborted: If the answer is not exactly the phrase.
    """
    console = console or Console(stderr=True)
    if ask is None:
        def ask(prompt: str) -> str:
            return Prompt.ask(prompt, console=console)

    console.print()
    console.print(render_device(device, score))

    if has_boot_signature(device):
        console.print(
            "[yellow]NOTE:[/yellow] this disk already has a Raspberry Pi boot "
            "partition; it looks like a previously provisioned card."
        )

    console.print(
        f"[bold red]WARNING:[/bold red] This will ERASE and flash "
        f"[bold]{device.identifier}[/bold]"
    )
    console.print(
        "[bold red]WARNING:[/bold red] ALL DATA on this disk will be PERMANENTLY ERASED!"
    )

    try:
        answer = ask(f"Type {phrase} to continue")
    except (EOFError, KeyboardInterrupt):
        logger.info("Operation cancelled by user")
        raise UserAborted() from None

    if answer != phrase:
        logger.info("Operation cancelled by user")
        raise UserAborted()

    logger.debug("Operator confirmed %s", device.identifier)


__all__ = ["DEFAULT_PHRASE", "confirm_target", "has_boot_signature", "render_device"]
