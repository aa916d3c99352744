"""Disk data model.

Devices are enumerated fresh on every run and never cached.
"""

from dataclasses import dataclass, field

from rpi_provisioner.config import GIB
from rpi_provisioner.types import Removable, Verdict

# Eligible SD card sizes, inclusive
MIN_CARD_BYTES = 1 * GIB
MAX_CARD_BYTES = 512 * GIB

# Labels of a Raspberry Pi OS boot partition (older and newer releases)
BOOT_PARTITION_LABELS = frozenset({"boot", "bootfs"})


@dataclass
class Partition:
    """A partition of a whole disk.

    Attributes:
        identifier: Device path (e.g., '/dev/sdb1', '/dev/disk4s1').
        label: Volume label, if any.
        fstype: File system type as reported by the platform.
        mount_point: Current mount point, if mounted.
        size_bytes: Size in bytes (if available).
    """

    identifier: str
    label: str | None = None
    fstype: str | None = None
    mount_point: str | None = None
    size_bytes: int | None = None

    @property
    def is_boot_labelled(self) -> bool:
        return (self.label or "").strip().lower() in BOOT_PARTITION_LABELS


@dataclass
class DiskDevice:
    """A whole-disk block device.

    Attributes:
        identifier: Device path (e.g., '/dev/sdb', '/dev/disk4').
        size_bytes: Size of the device in bytes.
        removable: Removable-media flag.
        protocol: Transport or bus protocol (e.g., 'usb', 'Secure Digital').
        model: Model/vendor string.
        serial: Serial number (if available).
        is_whole_disk: Whether this is a whole disk rather than a partition.
        partitions: Partitions on this disk.
        own_mount_point: Mount point of the unpartitioned disk itself.
    """

    identifier: str
    size_bytes: int
    removable: Removable = Removable.UNKNOWN
    protocol: str | None = None
    model: str | None = None
    serial: str | None = None
    is_whole_disk: bool = True
    partitions: list[Partition] = field(default_factory=list)
    own_mount_point: str | None = None

    @property
    def mount_points(self) -> list[str]:
        """All current mount points of the disk and its partitions."""
        mounts = [p.mount_point for p in self.partitions if p.mount_point]
        if self.own_mount_point:
            mounts.insert(0, self.own_mount_point)
        return mounts

    @property
    def size_in_bounds(self) -> bool:
        return MIN_CARD_BYTES <= self.size_bytes <= MAX_CARD_BYTES


@dataclass(frozen=True)
class CandidateScore:
    """Classification of a device as an SD card candidate.

    Attributes:
        identifier: Device path of the classified disk.
        verdict: Candidate or non-candidate.
        rule: Name of the rule that decided the verdict.
        reason: Human readable explanation.
    """

    identifier: str
    verdict: Verdict
    rule: str
    reason: str

    @property
    def is_candidate(self) -> bool:
        return self.verdict is Verdict.CANDIDATE


def human_size(size_bytes: int | None) -> str:
    """Format a byte count for display."""
    if size_bytes is None:
        return "unknown"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


__all__ = [
    "BOOT_PARTITION_LABELS",
    "CandidateScore",
    "DiskDevice",
    "MAX_CARD_BYTES",
    "MIN_CARD_BYTES",
    "Partition",
    "human_size",
]
