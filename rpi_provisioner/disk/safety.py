"""Hard safety validation of a flash target.

Classification only suggests candidates. Before anything destructive
happens the target is re-checked here against fresh platform data:
1. The device exists
2. It is a block device
3. It is a whole disk, not a partition
4. It does not back the root filesystem
5. Its size lies within the SD card bounds

A device that fails any check is never flashable, whatever its score.
"""

import logging

from rpi_provisioner.disk.inventory import DiskInventory, is_partition_path
from rpi_provisioner.disk.models import (
    MAX_CARD_BYTES,
    MIN_CARD_BYTES,
    DiskDevice,
    human_size,
)
from rpi_provisioner.errors import DiskNotFoundError, UnsafeTargetError

logger = logging.getLogger(__name__)


def validate_target(inventory: DiskInventory, identifier: str) -> DiskDevice:
    """Validate a device path for flashing.

    Args:
        inventory: Platform disk inventory.
        identifier: Path of the device to validate.

    Returns:
        The freshly enumerated, validated device.

    Raises:
        DiskNotFoundError: Device does not exist.
        UnsafeTargetError: Device is a partition, not a block device, the
            root disk, or outside the size bounds.
    """
    logger.debug("Validating disk: %s", identifier)

    if is_partition_path(identifier):
        raise UnsafeTargetError(
            identifier,
            "target must be a whole disk, not a partition",
            code="partition",
        )

    device = inventory.get_disk(identifier)
    if device is None:
        raise DiskNotFoundError(f"Disk not found: {identifier}")

    if not device.is_whole_disk:
        raise UnsafeTargetError(
            identifier,
            "target must be a whole disk, not a partition",
            code="partition",
        )

    if not inventory.is_block_device(identifier):
        raise UnsafeTargetError(identifier, "not a block device", code="not_block_device")

    if identifier in inventory.root_disks():
        raise UnsafeTargetError(
            identifier, "disk contains the root filesystem", code="root_disk"
        )

    if not MIN_CARD_BYTES <= device.size_bytes <= MAX_CARD_BYTES:
        raise UnsafeTargetError(
            identifier,
            f"size {human_size(device.size_bytes)} is outside "
            f"{human_size(MIN_CARD_BYTES)}-{human_size(MAX_CARD_BYTES)}",
            code="size_out_of_range",
        )

    logger.info(
        "Disk validated: %s (size=%s)", identifier, human_size(device.size_bytes)
    )
    return device


__all__ = ["validate_target"]
