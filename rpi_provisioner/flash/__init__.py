"""SD card flashing.

This module handles:
- Raw whole-device writes with fsync and sync
- Waiting for the card to re-enumerate with a mounted boot partition
- Checking the boot partition marker files

Safety rules:
- Targets are validated and confirmed before anything is written
- All partitions are unmounted before the write
- A failed write is never retried automatically
"""

from rpi_provisioner.flash.boot import (
    REQUIRED_BOOT_FILES,
    BootPartitionHandle,
    verify_boot_partition,
)
from rpi_provisioner.flash.service import flash_to_sd_card, select_target
from rpi_provisioner.flash.waiter import ReenumerationWaiter, wait_for_boot_partition
from rpi_provisioner.flash.writer import FlashJob, write_image

__all__ = [
    # Writer
    "FlashJob",
    "write_image",
    # Re-enumeration
    "ReenumerationWaiter",
    "wait_for_boot_partition",
    # Boot partition
    "REQUIRED_BOOT_FILES",
    "BootPartitionHandle",
    "verify_boot_partition",
    # Service
    "flash_to_sd_card",
    "select_target",
]
