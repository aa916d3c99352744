"""Disk discovery and target selection.

This module handles:
- Platform disk inventory (lsblk on Linux, diskutil on macOS)
- Heuristic SD card candidate classification
- Hard safety validation of the target
- Operator confirmation before any destructive write

Safety rules:
- The disk backing the root filesystem is never listed nor flashable
- Partitions are never valid targets
- Only sizes between 1 GiB and 512 GiB are accepted
"""

from rpi_provisioner.disk.classifier import (
    RULES,
    Rule,
    classify,
    classify_all,
    find_candidates,
)
from rpi_provisioner.disk.confirm import (
    confirm_target,
    has_boot_signature,
    render_device,
)
from rpi_provisioner.disk.inventory import (
    DiskInventory,
    InventoryError,
    get_inventory,
    is_partition_path,
)
from rpi_provisioner.disk.models import (
    CandidateScore,
    DiskDevice,
    Partition,
    human_size,
)
from rpi_provisioner.disk.safety import validate_target

__all__ = [
    # Models
    "CandidateScore",
    "DiskDevice",
    "Partition",
    "human_size",
    # Inventory
    "DiskInventory",
    "InventoryError",
    "get_inventory",
    "is_partition_path",
    # Classification
    "RULES",
    "Rule",
    "classify",
    "classify_all",
    "find_candidates",
    # Safety and confirmation
    "confirm_target",
    "has_boot_signature",
    "render_device",
    "validate_target",
]
