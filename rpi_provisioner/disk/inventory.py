"""Disk inventory interface.

This module defines the capability interface every platform implements:
- Enumerate whole disks (the root disk is never listed)
- Look up a single disk and its partitions
- Unmount a disk, mount a partition, resolve raw device handles

The concrete implementation is chosen once at startup by get_inventory().
"""

from __future__ import annotations

import logging
import os
import platform
import re
import stat
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence

from rpi_provisioner.disk.models import DiskDevice, Partition
from rpi_provisioner.errors import ProvisionError

logger = logging.getLogger(__name__)

# Patterns for partition detection
# /dev/sdX1, /dev/hdX1, /dev/vdX1
_PARTITION_PATTERN_SD = re.compile(r"^/dev/[shv]d[a-z]+(\d+)$")
# /dev/nvme0n1p1, /dev/nvme0n1p2
_PARTITION_PATTERN_NVME = re.compile(r"^/dev/nvme\d+n\d+p(\d+)$")
# /dev/mmcblk0p1, /dev/mmcblk0p2
_PARTITION_PATTERN_MMC = re.compile(r"^/dev/mmcblk\d+p(\d+)$")
# /dev/loop0p1
_PARTITION_PATTERN_LOOP = re.compile(r"^/dev/loop\d+p(\d+)$")
# /dev/disk4s1, /dev/rdisk4s1
_PARTITION_PATTERN_DARWIN = re.compile(r"^/dev/r?disk\d+s(\d+)$")

_PARTITION_PATTERNS = (
    _PARTITION_PATTERN_SD,
    _PARTITION_PATTERN_NVME,
    _PARTITION_PATTERN_MMC,
    _PARTITION_PATTERN_LOOP,
    _PARTITION_PATTERN_DARWIN,
)


class InventoryError(ProvisionError):
    """Raised when the platform disk tools fail."""

    default_code = "inventory_error"


def is_partition_path(device_path: str) -> bool:
    """Check if a device path looks like a partition.

    This uses naming conventions to detect partitions:
    - /dev/sda1, /dev/sdb2 (SCSI/SATA/USB)
    - /dev/mmcblk0p1, /dev/mmcblk0p2 (MMC/SD cards)
    - /dev/nvme0n1p1 (NVMe)
    - /dev/loop0p1 (Loop devices with partitions)
    - /dev/disk4s1 (macOS slices)

    Args:
        device_path: Path to the device.

    Returns:
        True if the path appears to be a partition, False otherwise.
    """
    return any(pattern.match(device_path) for pattern in _PARTITION_PATTERNS)


def partition_to_whole_device(partition_path: str) -> str:
    """Convert a partition path to its whole device path.

    Args:
        partition_path: Path to a partition (e.g., '/dev/sda1').

    Returns:
        Path to the whole device (e.g., '/dev/sda').
    """
    # Handle /dev/sdXN -> /dev/sdX
    match = _PARTITION_PATTERN_SD.match(partition_path)
    if match:
        return partition_path[: -len(match.group(1))]

    # Handle /dev/diskNsM -> /dev/diskN
    match = _PARTITION_PATTERN_DARWIN.match(partition_path)
    if match:
        return partition_path[: partition_path.rfind("s")]

    # Handle /dev/nvme0n1pN, /dev/mmcblk0pN, /dev/loop0pN
    for pattern in (_PARTITION_PATTERN_NVME, _PARTITION_PATTERN_MMC, _PARTITION_PATTERN_LOOP):
        if pattern.match(partition_path):
            return partition_path[: partition_path.rfind("p")]

    # If no pattern matches, return as-is (might already be whole device)
    return partition_path


def is_block_device(device_path: str) -> bool:
    """Check if a path is a block device.

    Args:
        device_path: Path to check.

    Returns:
        True if the path is a block device, False otherwise.
    """
    try:
        mode = os.stat(device_path).st_mode
        return stat.S_ISBLK(mode)
    except OSError:
        return False


def run_command(
    command: Sequence[str], check: bool = True
) -> subprocess.CompletedProcess[str]:
    """Run a platform tool and capture its output.

    Raises:
        InventoryError: If the tool is missing, or exits non-zero with check.
    """
    logger.debug("Running command: %s", " ".join(command))
    try:
        result = subprocess.run(
            list(command), capture_output=True, text=True, check=False
        )
    except FileNotFoundError as e:
        raise InventoryError(
            f"Command not found: {command[0]}", code="command_not_found"
        ) from e

    if result.returncode != 0:
        logger.debug("Command failed (%d): %s", result.returncode, result.stderr.strip())
        if check:
            raise InventoryError(
                f"{' '.join(command)} failed: {result.stderr.strip() or result.returncode}",
                code="command_failed",
            )
    return result


class DiskInventory(ABC):
    """Platform capability interface for block devices."""

    #: Pattern of the platform's canonical SD/MMC whole-disk names, if any
    sd_device_pattern: re.Pattern[str] | None = None

    @abstractmethod
    def enumerate(self) -> list[DiskDevice]:
        """Return every whole disk on the host, including the root disk."""

    @abstractmethod
    def root_disks(self) -> set[str]:
        """Return the whole disk(s) backing the root filesystem."""

    @abstractmethod
    def first_partition_path(self, identifier: str) -> str:
        """Return the device path of partition 1 of a disk."""

    @abstractmethod
    def unmount_disk(self, device: DiskDevice) -> None:
        """Unmount every mounted partition of a disk."""

    @abstractmethod
    def mount_partition(self, partition: Partition) -> str | None:
        """Mount a partition writable by the operator; return the mount point."""

    def raw_device_path(self, identifier: str) -> str:
        """Return the unbuffered device handle, or the block path if none."""
        return identifier

    def is_block_device(self, identifier: str) -> bool:
        return is_block_device(identifier)

    def list_disks(self) -> list[DiskDevice]:
        """Return whole disks, excluding the one backing the root filesystem."""
        roots = self.root_disks()
        disks = [d for d in self.enumerate() if d.identifier not in roots]
        logger.debug(
            "Found %d disk(s) (root disk %s excluded)",
            len(disks),
            ", ".join(sorted(roots)) or "unknown",
        )
        return disks

    def get_disk(self, identifier: str) -> DiskDevice | None:
        """Return a freshly enumerated disk by identifier."""
        for disk in self.enumerate():
            if disk.identifier == identifier:
                return disk
        return None

    def boot_partition(self, identifier: str) -> Partition | None:
        """Return the boot partition of a disk if it is enumerated.

        A partition labelled like a Raspberry Pi OS boot partition wins;
        otherwise partition 1 is assumed to be the boot partition.
        """
        disk = self.get_disk(identifier)
        if disk is None:
            return None
        for partition in disk.partitions:
            if partition.is_boot_labelled:
                return partition
        first = self.first_partition_path(identifier)
        for partition in disk.partitions:
            if partition.identifier == first:
                return partition
        return None


def get_inventory(system: str | None = None) -> DiskInventory:
    """Return the disk inventory for the running platform.

    Args:
        system: Platform name as returned by platform.system().

    Raises:
        InventoryError: On unsupported platforms.
    """
    system = system or platform.system()
    if system == "Linux":
        from rpi_provisioner.disk.linux import LinuxDiskInventory

        return LinuxDiskInventory()
    if system == "Darwin":
        from rpi_provisioner.disk.macos import MacDiskInventory

        return MacDiskInventory()
    raise InventoryError(f"Unsupported platform: {system}", code="unsupported_platform")


__all__ = [
    "DiskInventory",
    "InventoryError",
    "get_inventory",
    "is_block_device",
    "is_partition_path",
    "partition_to_whole_device",
    "run_command",
]
