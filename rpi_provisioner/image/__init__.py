"""Raspberry Pi OS image acquisition.

This module handles:
- Version and asset resolution against the remote index
- Resumable downloads verified against a digest sidecar
- The on-disk artifact cache
- Decompression to a raw image
"""

from rpi_provisioner.image.cache import ArtifactCache, CacheEntry
from rpi_provisioner.image.fetch import (
    check_disk_space,
    compute_file_sha256,
    decompress_image,
    download_file,
    parse_digest_sidecar,
    verify_checksum,
)
from rpi_provisioner.image.resolver import ImageAsset, resolve_asset, resolve_version
from rpi_provisioner.image.service import ensure_image

__all__ = [
    "ArtifactCache",
    "CacheEntry",
    "ImageAsset",
    "check_disk_space",
    "compute_file_sha256",
    "decompress_image",
    "download_file",
    "ensure_image",
    "parse_digest_sidecar",
    "resolve_asset",
    "resolve_version",
    "verify_checksum",
]
