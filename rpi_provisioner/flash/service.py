"""Flash service layer for SD card provisioning.

This module provides the high-level flash step:
- select_target(): auto-detect the single SD card candidate, or take an
  explicit device
- flash_to_sd_card(): validate, confirm, unmount, write, wait for the
  boot partition and verify it

Safety rules:
- Every target goes through hard validation, explicit or auto-detected
- Nothing is written before the operator confirms; with confirmation
  disabled only card-like (candidate) disks are accepted
- The device must have no mounted partitions when the write starts
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from rich.console import Console

from rpi_provisioner.config import Settings, get_settings
from rpi_provisioner.disk.classifier import classify, find_candidates
from rpi_provisioner.disk.confirm import confirm_target
from rpi_provisioner.disk.inventory import DiskInventory, get_inventory
from rpi_provisioner.disk.models import DiskDevice, human_size
from rpi_provisioner.disk.safety import validate_target
from rpi_provisioner.errors import (
    AmbiguousTargetError,
    DiskNotFoundError,
    FlashError,
    UnsafeTargetError,
)
from rpi_provisioner.flash.boot import BootPartitionHandle, verify_boot_partition
from rpi_provisioner.flash.waiter import ReenumerationWaiter
from rpi_provisioner.flash.writer import FlashJob, write_image

logger = logging.getLogger(__name__)


def select_target(
    inventory: DiskInventory, settings: Settings, device: str | None = None
) -> str:
    """Choose the device to flash.

    An explicit device (argument or ``settings.target_disk``) is returned
    as is; it is validated later like any other target. Otherwise the
    single SD card candidate is selected.

    Args:
        inventory: Platform disk inventory.
        settings: Application settings.
        device: Explicit device path, overriding settings.

    Returns:
        Device path of the target.

    Raises:
        DiskNotFoundError: No candidate found, or auto-detection disabled
            without an explicit target.
        AmbiguousTargetError: More than one candidate found.
    """
    explicit = device or settings.target_disk
    if explicit:
        logger.info("Using specified disk: %s", explicit)
        return explicit

    if not settings.auto_detect:
        raise DiskNotFoundError(
            "Auto-detection is disabled and no target disk was given",
            code="no_target",
        )

    logger.info("Auto-detecting SD card...")
    candidates = find_candidates(inventory.list_disks(), inventory.sd_device_pattern)

    if not candidates:
        raise DiskNotFoundError(
            "No SD card found. Insert a card or specify the target device."
        )
    if len(candidates) > 1:
        raise AmbiguousTargetError([c.identifier for c in candidates])

    target = candidates[0]
    logger.info(
        "Found SD card: %s (%s, %s)",
        target.identifier,
        target.model or "unknown model",
        human_size(target.size_bytes),
    )
    return target.identifier


def _release_mounts(inventory: DiskInventory, device: DiskDevice) -> DiskDevice:
    """Unmount the device and re-read it; it must have no mounts left."""
    inventory.unmount_disk(device)
    refreshed = inventory.get_disk(device.identifier)
    if refreshed is None:
        raise DiskNotFoundError(f"Disk disappeared: {device.identifier}")
    if refreshed.mount_points:
        raise FlashError(
            f"{device.identifier} is still mounted at "
            f"{', '.join(refreshed.mount_points)}",
            code="device_busy",
        )
    return refreshed


def flash_to_sd_card(
    image_path: str | Path,
    *,
    settings: Settings | None = None,
    inventory: DiskInventory | None = None,
    device: str | None = None,
    ask: Callable[[str], str] | None = None,
    console: Console | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> BootPartitionHandle:
    """Flash an image to an SD card and return its boot partition.

    This is the main entry point for flashing. It:
    1. Selects and validates the target device
    2. Asks the operator for confirmation
    3. Unmounts every partition of the device
    4. Writes the image and syncs
    5. Waits for the boot partition to re-appear mounted
    6. Checks the boot partition marker files

    Args:
        image_path: Decompressed image to write.
        settings: Application settings (loaded from env if omitted).
        inventory: Disk inventory (platform default if omitted).
        device: Explicit target device.
        ask: Reader for the confirmation answer.
        console: Console for the confirmation prompt.
        clock: Monotonic clock used by the re-enumeration wait.
        sleep: Sleep function used by the re-enumeration wait.

    Returns:
        BootPartitionHandle for the mounted boot partition.

    Raises:
        FlashError: Image missing, too large, device busy or write failure.
        DiskNotFoundError: No usable target.
        UnsafeTargetError: Target failed hard validation, or is not card-like
            while confirmation is disabled.
        UserAborted: Operator declined the confirmation.
        MountTimeoutError: Boot partition never became available.
    """
    if settings is None:
        settings = get_settings()
    if inventory is None:
        inventory = get_inventory()

    image_path = Path(image_path)
    if not image_path.is_file():
        raise FlashError(f"Image file not found: {image_path}", code="image_not_found")
    image_size = image_path.stat().st_size

    identifier = select_target(inventory, settings, device)
    target = validate_target(inventory, identifier)

    if image_size > target.size_bytes:
        raise FlashError(
            f"Image ({human_size(image_size)}) does not fit on {identifier} "
            f"({human_size(target.size_bytes)})",
            code="image_too_large",
        )

    score = classify(target, inventory.sd_device_pattern)
    if not score.is_candidate:
        logger.warning(
            "%s does not look like an SD card (%s)", identifier, score.reason
        )

    if settings.require_confirmation:
        confirm_target(
            target,
            score,
            phrase=settings.confirmation_phrase,
            console=console,
            ask=ask,
        )
    elif not score.is_candidate:
        # Without an operator in the loop only card-like disks are written
        raise UnsafeTargetError(
            identifier,
            f"not removable media ({score.reason}) and confirmation is disabled",
            code="not_removable",
        )
    else:
        logger.warning("Confirmation disabled, flashing %s without prompting", identifier)

    target = _release_mounts(inventory, target)

    job = FlashJob(
        image_path=image_path,
        device=target,
        device_path=inventory.raw_device_path(identifier),
    )
    write_image(job, block_size=settings.block_size)

    waiter = ReenumerationWaiter(
        inventory,
        identifier,
        settle_delay=settings.mount_settle_delay,
        poll_interval=settings.mount_poll_interval,
        timeout=settings.mount_timeout,
        clock=clock,
        sleep=sleep,
    )
    mount_point = waiter.run()

    return verify_boot_partition(mount_point)


__all__ = ["flash_to_sd_card", "select_target"]
