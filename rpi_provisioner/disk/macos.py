"""macOS disk inventory backed by diskutil.

Enumeration reads ``diskutil list -plist`` and ``diskutil info -plist``.
Writes go through the raw ``/dev/rdiskN`` node, which bypasses the buffer
cache and is much faster than ``/dev/diskN``.
"""

from __future__ import annotations

import logging
import os
import plistlib
import re
from typing import Any

from rpi_provisioner.disk.inventory import DiskInventory, InventoryError, run_command
from rpi_provisioner.disk.models import DiskDevice, Partition
from rpi_provisioner.types import Removable

logger = logging.getLogger(__name__)

DISKUTIL = "/usr/sbin/diskutil"

# diskutil reports the built-in SD reader with this bus protocol
SD_CARD_READER_PROTOCOL = "Secure Digital"

_WHOLE_DISK_PATTERN = re.compile(r"(disk\d+)")


def _plist(*args: str) -> dict[str, Any]:
    result = run_command([DISKUTIL, *args])
    try:
        return plistlib.loads(result.stdout.encode("utf-8"))
    except (plistlib.InvalidFileException, ValueError) as e:
        raise InventoryError(
            f"Unable to parse diskutil output: {e}", code="parse_error"
        ) from e


def _device_path(identifier: str) -> str:
    return identifier if identifier.startswith("/dev/") else f"/dev/{identifier}"


def _removable(info: dict[str, Any]) -> Removable:
    if info.get("BusProtocol") == SD_CARD_READER_PROTOCOL:
        return Removable.YES
    flags = [info[key] for key in ("RemovableMedia", "Removable") if key in info]
    if not flags:
        return Removable.UNKNOWN
    return Removable.YES if any(flags) else Removable.NO


def _protocol(info: dict[str, Any]) -> str | None:
    if info.get("VirtualOrPhysical") == "Virtual":
        return "Virtual"
    return info.get("BusProtocol") or None


def build_device(info: dict[str, Any], listing: dict[str, Any] | None) -> DiskDevice:
    """Build a DiskDevice from ``diskutil info`` and ``diskutil list`` entries.

    Args:
        info: Parsed ``diskutil info -plist diskN``.
        listing: Matching entry of ``AllDisksAndPartitions``.
    """
    listing = listing or {}
    partitions = [
        Partition(
            identifier=_device_path(part["DeviceIdentifier"]),
            label=part.get("VolumeName") or None,
            fstype=part.get("Content") or None,
            mount_point=part.get("MountPoint") or None,
            size_bytes=part.get("Size"),
        )
        for part in listing.get("Partitions", [])
        if part.get("DeviceIdentifier")
    ]
    model = info.get("MediaName") or info.get("IORegistryEntryName")

    return DiskDevice(
        identifier=_device_path(info.get("DeviceNode") or info["DeviceIdentifier"]),
        size_bytes=int(info.get("TotalSize") or info.get("Size") or 0),
        removable=_removable(info),
        protocol=_protocol(info),
        model=(model or "").strip() or None,
        serial=info.get("MediaSerialNumber") or None,
        is_whole_disk=bool(info.get("WholeDisk", True)),
        partitions=partitions,
        own_mount_point=info.get("MountPoint") or None,
    )


class MacDiskInventory(DiskInventory):
    """Disk inventory for macOS hosts."""

    # macOS has no SD-specific device naming; every disk is /dev/diskN
    sd_device_pattern = None

    def enumerate(self) -> list[DiskDevice]:
        listing = _plist("list", "-plist")
        entries = {
            entry.get("DeviceIdentifier"): entry
            for entry in listing.get("AllDisksAndPartitions", [])
        }
        disks = []
        for identifier in listing.get("WholeDisks", []):
            info = _plist("info", "-plist", identifier)
            disks.append(build_device(info, entries.get(identifier)))
        return disks

    def root_disks(self) -> set[str]:
        info = _plist("info", "-plist", "/")
        parent = info.get("ParentWholeDisk")
        if not parent:
            return set()
        roots = {_device_path(parent)}

        # The root volume of an APFS container lives on a synthesized disk
        # whose physical store is another whole disk
        listing = _plist("list", "-plist")
        for entry in listing.get("AllDisksAndPartitions", []):
            if entry.get("DeviceIdentifier") != parent:
                continue
            for store in entry.get("APFSPhysicalStores", []):
                store_id = store.get("DeviceIdentifier")
                if store_id:
                    roots.add(_whole_disk(store_id))
        return roots

    def first_partition_path(self, identifier: str) -> str:
        return f"{identifier}s1"

    def raw_device_path(self, identifier: str) -> str:
        raw = identifier.replace("/dev/disk", "/dev/rdisk", 1)
        if raw != identifier and os.path.exists(raw):
            return raw
        return identifier

    def unmount_disk(self, device: DiskDevice) -> None:
        logger.info("Unmounting disk: %s", device.identifier)
        result = run_command([DISKUTIL, "unmountDisk", device.identifier], check=False)
        if result.returncode != 0:
            logger.warning(
                "Failed to unmount %s (may already be unmounted)", device.identifier
            )

    def mount_partition(self, partition: Partition) -> str | None:
        # diskutil mounts FAT volumes owned by the console user
        result = run_command([DISKUTIL, "mount", partition.identifier], check=False)
        if result.returncode != 0:
            logger.warning(
                "Manual mount of %s failed: %s",
                partition.identifier,
                result.stderr.strip(),
            )
            return None
        info = _plist("info", "-plist", partition.identifier)
        return info.get("MountPoint") or None


def _whole_disk(identifier: str) -> str:
    """Map a slice identifier such as 'disk0s2' to '/dev/disk0'."""
    match = _WHOLE_DISK_PATTERN.search(identifier)
    return f"/dev/{match.group(1)}" if match else _device_path(identifier)


__all__ = ["MacDiskInventory", "SD_CARD_READER_PROTOCOL", "build_device"]
