"""Artifact cache for downloaded images.

Layout of the cache directory, per version::

    {filename}            compressed image (.img.xz)
    {filename}.sha256     digest sidecar
    raspios-{version}.img decompressed image
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from rpi_provisioner.image.resolver import DIGEST_SUFFIX, ImageAsset

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached files of one image version.

    Attributes:
        version: Release version.
        compressed_path: Path of the compressed image.
        digest_path: Path of the digest sidecar.
        image_path: Path of the decompressed image.
        verified: Whether the compressed image was verified in this run.
    """

    version: str
    compressed_path: Path
    digest_path: Path
    image_path: Path
    verified: bool = False

    @property
    def has_compressed(self) -> bool:
        return self.compressed_path.is_file()

    @property
    def has_digest(self) -> bool:
        return self.digest_path.is_file()

    @property
    def has_image(self) -> bool:
        return self.image_path.is_file()


class ArtifactCache:
    """Maps image versions to files under a cache directory."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)

    def ensure_dir(self) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        return self.cache_dir

    def image_path(self, version: str) -> Path:
        """Return the decompressed image path of a version."""
        return self.cache_dir / f"raspios-{version}.img"

    def find_image(self, version: str) -> Path | None:
        """Return the cached decompressed image of a version, if present."""
        path = self.image_path(version)
        if path.is_file():
            logger.info("Found cached image: %s", path)
            return path
        return None

    def entry_for(self, asset: ImageAsset) -> CacheEntry:
        """Return the cache entry for an asset."""
        compressed = self.cache_dir / asset.filename
        return CacheEntry(
            version=asset.version,
            compressed_path=compressed,
            digest_path=compressed.with_name(compressed.name + DIGEST_SUFFIX),
            image_path=self.image_path(asset.version),
        )

    def discard_compressed(self, entry: CacheEntry) -> None:
        """Remove the compressed image and its digest sidecar."""
        logger.info("Removing compressed file to save space...")
        entry.compressed_path.unlink(missing_ok=True)
        entry.digest_path.unlink(missing_ok=True)


__all__ = ["ArtifactCache", "CacheEntry"]
