"""Linux disk inventory backed by lsblk.

Uses lsblk JSON output (sizes in bytes) for enumeration, mount/umount for
mount management. Linux has no raw character device for block disks, so the
block path is used for writing.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from rpi_provisioner.disk.inventory import (
    DiskInventory,
    InventoryError,
    partition_to_whole_device,
    run_command,
)
from rpi_provisioner.disk.models import DiskDevice, Partition
from rpi_provisioner.types import Removable

logger = logging.getLogger(__name__)

LSBLK_COLUMNS = "NAME,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,MOUNTPOINT,FSTYPE,LABEL,SERIAL"

# Top-level lsblk types treated as disks
_DISK_TYPES = {"disk", "loop"}

# File systems mounted with operator ownership options
_FAT_FSTYPES = {"vfat", "fat", "fat16", "fat32", "msdos", "exfat"}

_VIRTUAL_NAME_PREFIXES = (("loop", "loop"), ("zram", "ram"), ("ram", "ram"), ("vd", "virtio"))


def _as_bool(value: Any) -> bool | None:
    """Normalize lsblk flag values (bool, 0/1 or '0'/'1')."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip() in {"1", "true"}


def _removable(value: Any) -> Removable:
    flag = _as_bool(value)
    if flag is None:
        return Removable.UNKNOWN
    return Removable.YES if flag else Removable.NO


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _protocol(entry: dict[str, Any]) -> str | None:
    if entry.get("type") == "loop":
        return "loop"
    transport = _clean(entry.get("tran"))
    if transport:
        return transport
    name = entry.get("name") or ""
    for prefix, protocol in _VIRTUAL_NAME_PREFIXES:
        if name.startswith(prefix):
            return protocol
    return None


def _walk_mountpoints(entry: dict[str, Any]) -> list[str]:
    mounts = [entry["mountpoint"]] if entry.get("mountpoint") else []
    for child in entry.get("children") or []:
        mounts.extend(_walk_mountpoints(child))
    return mounts


def _load_entries(payload: str) -> list[dict[str, Any]]:
    try:
        return json.loads(payload).get("blockdevices", [])
    except json.JSONDecodeError as e:
        raise InventoryError(f"Invalid lsblk output: {e}", code="parse_error") from e


def _root_disk_from_entries(entries: list[dict[str, Any]]) -> str | None:
    for entry in entries:
        if "/" in _walk_mountpoints(entry):
            return f"/dev/{entry['name']}"
    return None


def parse_lsblk(payload: str) -> list[DiskDevice]:
    """Parse ``lsblk -J -b`` output into whole disks.

    Args:
        payload: JSON text printed by lsblk.

    Returns:
        Whole disks with their partitions.

    Raises:
        InventoryError: If the payload is not valid lsblk JSON.
    """
    return _disks_from_entries(_load_entries(payload))


def _disks_from_entries(entries: list[dict[str, Any]]) -> list[DiskDevice]:
    disks: list[DiskDevice] = []
    for entry in entries:
        if entry.get("type") not in _DISK_TYPES:
            continue

        partitions = [
            Partition(
                identifier=f"/dev/{child['name']}",
                label=_clean(child.get("label")),
                fstype=_clean(child.get("fstype")),
                mount_point=_clean(child.get("mountpoint")),
                size_bytes=_as_int(child.get("size")),
            )
            for child in entry.get("children") or []
            if child.get("type") == "part"
        ]

        model = " ".join(
            part for part in (_clean(entry.get("vendor")), _clean(entry.get("model"))) if part
        )

        disks.append(
            DiskDevice(
                identifier=f"/dev/{entry['name']}",
                size_bytes=_as_int(entry.get("size")),
                removable=_removable(entry.get("rm")),
                protocol=_protocol(entry),
                model=model or None,
                serial=_clean(entry.get("serial")),
                is_whole_disk=True,
                partitions=partitions,
                own_mount_point=_clean(entry.get("mountpoint")),
            )
        )
    return disks


def _mount_owner() -> tuple[int, int]:
    """Return the uid/gid of the operator, seen through sudo if needed."""
    uid = int(os.environ.get("SUDO_UID", os.getuid()))
    gid = int(os.environ.get("SUDO_GID", os.getgid()))
    return uid, gid


def mount_options(fstype: str | None) -> str | None:
    """Return mount options that give the operator write access."""
    if (fstype or "").lower() in _FAT_FSTYPES:
        uid, gid = _mount_owner()
        return f"uid={uid},gid={gid},umask=0022"
    return None


class LinuxDiskInventory(DiskInventory):
    """Disk inventory for Linux hosts."""

    sd_device_pattern = re.compile(r"^/dev/mmcblk\d+$")

    def _lsblk(self) -> list[dict[str, Any]]:
        result = run_command(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS])
        return _load_entries(result.stdout)

    def _roots_from(self, entries: list[dict[str, Any]]) -> set[str]:
        root = _root_disk_from_entries(entries) or self._root_disk_from_mounts()
        return {root} if root else set()

    def enumerate(self) -> list[DiskDevice]:
        return _disks_from_entries(self._lsblk())

    def root_disks(self) -> set[str]:
        return self._roots_from(self._lsblk())

    def list_disks(self) -> list[DiskDevice]:
        # One lsblk snapshot serves both the listing and the root lookup
        entries = self._lsblk()
        roots = self._roots_from(entries)
        disks = [d for d in _disks_from_entries(entries) if d.identifier not in roots]
        logger.debug(
            "Found %d disk(s) (root disk %s excluded)",
            len(disks),
            ", ".join(sorted(roots)) or "unknown",
        )
        return disks

    def _root_disk_from_mounts(self) -> str | None:
        """Find the root disk from /proc/mounts."""
        try:
            with open("/proc/mounts") as f:
                for line in f:
                    parts = line.split()
                    if len(parts) >= 2 and parts[1] == "/":
                        return partition_to_whole_device(parts[0])
        except OSError:
            logger.warning("Could not read /proc/mounts to determine root device")
        return None

    def first_partition_path(self, identifier: str) -> str:
        # mmcblk0 -> mmcblk0p1, nvme0n1 -> nvme0n1p1, sdb -> sdb1
        separator = "p" if identifier[-1].isdigit() else ""
        return f"{identifier}{separator}1"

    def unmount_disk(self, device: DiskDevice) -> None:
        logger.info("Unmounting disk: %s", device.identifier)
        targets = [p.identifier for p in device.partitions if p.mount_point]
        if device.own_mount_point:
            targets.append(device.identifier)
        for target in targets:
            result = run_command(["umount", target], check=False)
            if result.returncode != 0:
                logger.warning("Failed to unmount %s: %s", target, result.stderr.strip())

    def mount_partition(self, partition: Partition) -> str | None:
        mount_dir = Path(tempfile.mkdtemp(prefix="rpi-boot-"))
        command = ["mount"]
        options = mount_options(partition.fstype)
        if options:
            command += ["-o", options]
        command += [partition.identifier, str(mount_dir)]

        try:
            run_command(command)
        except InventoryError as e:
            logger.warning("Manual mount of %s failed: %s", partition.identifier, e)
            mount_dir.rmdir()
            return None

        logger.info("Mounted %s at %s", partition.identifier, mount_dir)
        return str(mount_dir)


__all__ = ["LSBLK_COLUMNS", "LinuxDiskInventory", "mount_options", "parse_lsblk"]
