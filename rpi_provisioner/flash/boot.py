"""Boot partition verification.

Checks that the mounted boot partition carries the files Raspberry Pi OS
expects. Missing files are reported, never fatal: the write already
succeeded and later steps may cope with a non-standard layout.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Marker files present on every Raspberry Pi OS boot partition
REQUIRED_BOOT_FILES = ("config.txt", "cmdline.txt")


@dataclass
class BootPartitionHandle:
    """A mounted boot partition handed to configuration steps.

    Attributes:
        mount_point: Where the boot partition is mounted.
        required_files: Marker files that were checked.
        missing: Marker files not found at the mount point.
    """

    mount_point: Path
    required_files: tuple[str, ...] = REQUIRED_BOOT_FILES
    missing: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing


def verify_boot_partition(
    mount_point: str | Path, required_files: tuple[str, ...] = REQUIRED_BOOT_FILES
) -> BootPartitionHandle:
    """Check the marker files on a mounted boot partition.

    Args:
        mount_point: Mount point of the boot partition.
        required_files: File names expected at the partition root.

    Returns:
        BootPartitionHandle listing any missing files.
    """
    root = Path(mount_point)
    missing = [name for name in required_files if not (root / name).is_file()]

    if missing:
        logger.warning(
            "Boot partition at %s is missing: %s", root, ", ".join(missing)
        )
    else:
        logger.info("Boot partition verified at %s", root)

    return BootPartitionHandle(
        mount_point=root, required_files=tuple(required_files), missing=missing
    )


__all__ = ["BootPartitionHandle", "REQUIRED_BOOT_FILES", "verify_boot_partition"]
