"""Image acquisition service.

This module provides the high-level download step:
- ensure_image(): resolve, download, verify and decompress an image,
  reusing the cache where possible

A warm decompressed image is returned without any network request. A cached
compressed image is always re-verified against its digest before it is
extracted.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path

import httpx

from rpi_provisioner.config import (
    LATEST_VERSION,
    Settings,
    get_settings,
    is_valid_version,
)
from rpi_provisioner.errors import ChecksumMismatchError, DownloadError, ResolutionError
from rpi_provisioner.image.cache import ArtifactCache, CacheEntry
from rpi_provisioner.image.fetch import (
    check_disk_space,
    decompress_image,
    download_file,
    fetch_text,
    parse_digest_sidecar,
    verify_checksum,
)
from rpi_provisioner.image.resolver import ImageAsset, resolve_asset, resolve_version

logger = logging.getLogger(__name__)


def _load_digest(
    client: httpx.Client, asset: ImageAsset, entry: CacheEntry, timeout: float
) -> str:
    """Return the expected digest, fetching the sidecar if not cached."""
    if entry.has_digest:
        content = entry.digest_path.read_text()
    else:
        logger.info("Downloading checksum...")
        content = fetch_text(client, asset.digest_url, timeout=timeout)
        entry.digest_path.write_text(content)

    digest = parse_digest_sidecar(content)
    if digest is None:
        entry.digest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Failed to read checksum from {asset.digest_url}", code="invalid_digest"
        )
    return digest


def acquire(
    client: httpx.Client,
    asset: ImageAsset,
    cache: ArtifactCache,
    settings: Settings,
) -> CacheEntry:
    """Download, verify and decompress one asset into the cache.

    Args:
        client: HTTPX client instance.
        asset: Resolved asset.
        cache: Artifact cache.
        settings: Application settings.

    Returns:
        Verified cache entry with a decompressed image.

    Raises:
        InsufficientSpaceError: Not enough free space in the cache.
        DownloadError: Download or sidecar fetch failed.
        ChecksumMismatchError: Compressed image does not match its digest.
        ExtractionError: Decompression failed.
    """
    entry = cache.entry_for(asset)

    check_disk_space(cache.cache_dir, settings.required_free_bytes)

    if entry.has_compressed:
        logger.info("Using cached compressed file: %s", entry.compressed_path)
    else:
        download_file(
            client,
            asset.url,
            entry.compressed_path,
            timeout=settings.download_timeout,
        )

    asset = replace(
        asset, expected_digest=_load_digest(client, asset, entry, settings.index_timeout)
    )
    try:
        verify_checksum(entry.compressed_path, asset.expected_digest)
    except ChecksumMismatchError:
        # Drop the sidecar together with the rejected artifact
        entry.digest_path.unlink(missing_ok=True)
        raise
    entry.verified = True

    if entry.has_image:
        logger.info("Using cached extracted image: %s", entry.image_path)
    else:
        decompress_image(entry.compressed_path, entry.image_path)

    if not settings.keep_compressed:
        cache.discard_compressed(entry)

    return entry


def ensure_image(
    version: str | None = None,
    *,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> Path:
    """Return a verified, decompressed image for a version.

    Args:
        version: 'latest' or YYYY-MM-DD; defaults to ``settings.os_version``.
        settings: Application settings (loaded from env if omitted).
        client: HTTPX client instance (created if omitted).

    Returns:
        Path to the decompressed image.

    Raises:
        ResolutionError: Version could not be resolved.
        AssetNotFoundError: No image file for the version.
        InsufficientSpaceError: Not enough free space in the cache.
        DownloadError: Download failed (re-run to resume).
        ChecksumMismatchError: Digest mismatch (artifact deleted).
        ExtractionError: Decompression failed.
    """
    if settings is None:
        settings = get_settings()
    version = version or settings.os_version
    if not is_valid_version(version):
        raise ResolutionError(
            f"Invalid version {version!r}: expected 'latest' or YYYY-MM-DD",
            code="invalid_version",
        )

    cache = ArtifactCache(settings.cache_dir)
    cache.ensure_dir()

    # Explicit versions can be served from cache without touching the network
    if version != LATEST_VERSION:
        cached = cache.find_image(version)
        if cached is not None:
            return cached

    with ExitStack() as stack:
        if client is None:
            client = stack.enter_context(httpx.Client())

        resolved = resolve_version(
            client, version, base_url=settings.base_url, timeout=settings.index_timeout
        )
        if resolved != version:
            cached = cache.find_image(resolved)
            if cached is not None:
                return cached

        asset = resolve_asset(
            client, resolved, base_url=settings.base_url, timeout=settings.index_timeout
        )
        logger.info("Image version: %s", asset.version)

        entry = acquire(client, asset, cache, settings)

    logger.info("Image ready: %s", entry.image_path)
    return entry.image_path


__all__ = ["acquire", "ensure_image"]
