"""Raw image writer for SD cards.

This module handles the destructive write itself:
- Whole-device write of the decompressed image in large blocks
- Flush, fsync and a system-wide sync before returning

A failed write is never retried. The card is left in an unknown state and
the operator has to start again from device selection.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from rpi_provisioner.config import MIB
from rpi_provisioner.disk.models import DiskDevice
from rpi_provisioner.errors import FlashError

logger = logging.getLogger(__name__)

# Default block size for device writes (4 MiB)
DEFAULT_BLOCK_SIZE = 4 * MIB

# Raw device writes must be sector aligned
SECTOR_SIZE = 512

# Log progress every 64 MiB
PROGRESS_INTERVAL = 64 * MIB


@dataclass
class FlashJob:
    """A single write of an image to a validated device.

    The device is owned by the job for its whole duration; nothing else
    may read or write it concurrently.

    Attributes:
        image_path: Decompressed image to write.
        device: Validated target device.
        device_path: Handle actually written (raw path when available).
        started_at: Start time of the job.
    """

    image_path: Path
    device: DiskDevice
    device_path: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _pad_to_sector(chunk: bytes) -> bytes:
    remainder = len(chunk) % SECTOR_SIZE
    if remainder:
        return chunk + b"\x00" * (SECTOR_SIZE - remainder)
    return chunk


def _write_all(dest: BinaryIO, chunk: bytes) -> None:
    view = memoryview(chunk)
    while view:
        written = dest.write(view)
        if not written:
            raise OSError("short write to device")
        view = view[written:]


def _copy_with_progress(
    source: BinaryIO,
    dest: BinaryIO,
    total_bytes: int,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> int:
    """Copy source to destination, logging progress.

    Returns:
        Number of image bytes written (excluding sector padding).
    """
    bytes_written = 0
    next_report = PROGRESS_INTERVAL

    while True:
        chunk = source.read(block_size)
        if not chunk:
            break

        _write_all(dest, _pad_to_sector(chunk))
        bytes_written += len(chunk)

        if bytes_written >= next_report:
            logger.debug(
                "Write progress: %d / %d bytes (%.1f%%)",
                bytes_written,
                total_bytes,
                bytes_written / total_bytes * 100 if total_bytes else 100.0,
            )
            next_report += PROGRESS_INTERVAL

    return bytes_written


def write_image(job: FlashJob, block_size: int = DEFAULT_BLOCK_SIZE) -> int:
    """Write the job's image to its device and sync.

    Args:
        job: Flash job describing the image and device handle.
        block_size: Block size for I/O operations.

    Returns:
        Number of bytes written.

    Raises:
        FlashError: Image missing, permission denied, or I/O failure.
    """
    image_path = Path(job.image_path)
    if not image_path.is_file():
        raise FlashError(f"Image file not found: {image_path}", code="image_not_found")

    image_size = image_path.stat().st_size
    logger.info(
        "Writing image %s (%d bytes) to %s", image_path.name, image_size, job.device_path
    )

    try:
        with open(image_path, "rb") as src, open(job.device_path, "r+b", buffering=0) as dst:
            bytes_written = _copy_with_progress(src, dst, image_size, block_size)
            os.fsync(dst.fileno())
    except PermissionError as e:
        logger.error("Permission denied writing to device: %s", e)
        raise FlashError(
            f"Permission denied writing to device: {job.device_path}. "
            "Try running with elevated privileges.",
            code="permission_denied",
        ) from e
    except OSError as e:
        logger.error("I/O error writing to device: %s", e)
        raise FlashError(
            f"Error writing to {job.device_path}: {e}", code="io_error"
        ) from e

    # Flush every dirty buffer, not only the device's
    os.sync()

    elapsed = (datetime.now(timezone.utc) - job.started_at).total_seconds()
    logger.info(
        "Wrote %d bytes to %s in %.1fs", bytes_written, job.device_path, elapsed
    )
    return bytes_written


__all__ = ["DEFAULT_BLOCK_SIZE", "FlashJob", "SECTOR_SIZE", "write_image"]
