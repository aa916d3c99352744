"""Image fetch module.

This module handles:
- Resumable downloads into partial ``.tmp`` files
- Digest sidecar parsing and SHA-256 verification
- Free space checks before a download starts
- Decompression of the verified ``.img.xz`` into a raw image
"""

from __future__ import annotations

import hashlib
import logging
import lzma
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import httpx

from rpi_provisioner.errors import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
    InsufficientSpaceError,
)

logger = logging.getLogger(__name__)

# Timeout for small requests like the digest sidecar (seconds)
SIDECAR_TIMEOUT = 30

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads and hashing (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Chunk size for decompression output (bytes)
EXTRACT_CHUNK_SIZE = 4 * 1024 * 1024

PARTIAL_SUFFIX = ".tmp"


@dataclass
class DownloadResult:
    """Result of a download."""

    path: Path
    size_bytes: int
    resumed_from: int = 0


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def parse_digest_sidecar(content: str) -> str | None:
    """Return the digest declared by a sidecar file.

    The digest is the first whitespace-delimited token.

    Args:
        content: Content of the sidecar.

    Returns:
        Lowercase hex digest, or None if the sidecar is empty.
    """
    tokens = content.split()
    if not tokens:
        return None
    return tokens[0].lower()


def verify_checksum(file_path: Path, expected_digest: str) -> str:
    """Verify a file against an expected SHA-256 digest.

    A mismatching file is deleted so that no corrupt artifact stays cached.

    Args:
        file_path: File to verify.
        expected_digest: Expected hex digest.

    Returns:
        The computed digest.

    Raises:
        ChecksumMismatchError: If the digests differ.
    """
    logger.info("Calculating SHA256 checksum of %s...", file_path.name)
    actual = compute_file_sha256(file_path)
    expected = expected_digest.lower()
    logger.debug("Expected: %s", expected)
    logger.debug("Actual:   %s", actual)

    if actual != expected:
        logger.error("Checksum mismatch, removing %s", file_path)
        file_path.unlink(missing_ok=True)
        raise ChecksumMismatchError(str(file_path), expected, actual)

    logger.info("Checksum verification passed")
    return actual


def get_free_space(path: Path) -> int:
    """Return free bytes on the volume holding ``path``."""
    return shutil.disk_usage(path).free


def check_disk_space(path: Path, required_bytes: int) -> int:
    """Fail fast if the volume holding ``path`` lacks room.

    Args:
        path: Directory that will receive the download.
        required_bytes: Bytes needed for compressed and decompressed images.

    Returns:
        Available bytes.

    Raises:
        InsufficientSpaceError: If fewer than ``required_bytes`` are free.
    """
    available = get_free_space(path)
    logger.debug("Required: %d bytes, available: %d bytes", required_bytes, available)
    if available < required_bytes:
        raise InsufficientSpaceError(str(path), required_bytes, available)
    return available


def fetch_text(
    client: httpx.Client,
    url: str,
    timeout: float = SIDECAR_TIMEOUT,
) -> str:
    """Fetch a small text resource such as a digest sidecar.

    Raises:
        DownloadError: If the fetch fails.
    """
    logger.debug("Fetching %s", url)

    try:
        response = client.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        return response.text

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching {url}: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout fetching {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching {url}: {e}", code="network_error"
        ) from e


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file, resuming a partial ``.tmp`` file if one exists.

    The body is written to ``dest_path`` + ``.tmp`` and renamed into place
    once complete. On failure the partial file is kept so the next run can
    continue with a byte-range request.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Final path of the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path and size.

    Raises:
        DownloadError: If download fails.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)

    offset = tmp_path.stat().st_size if tmp_path.exists() else 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    if offset:
        logger.info("Resuming download of %s from byte %d", url, offset)
    else:
        logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream(
            "GET", url, headers=headers, timeout=timeout, follow_redirects=True
        ) as response:
            if response.status_code == 416 and offset:
                # Partial file already holds the whole body
                logger.debug("Server reports range past end, partial is complete")
            else:
                response.raise_for_status()

                if offset and response.status_code != 206:
                    logger.warning("Server ignored range request, restarting download")
                    offset = 0

                mode = "ab" if offset else "wb"
                with tmp_path.open(mode) as f:
                    for chunk in response.iter_bytes(chunk_size):
                        f.write(chunk)

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e

    tmp_path.replace(dest_path)
    size = dest_path.stat().st_size
    logger.info("Downloaded %s (%d bytes)", dest_path.name, size)

    return DownloadResult(path=dest_path, size_bytes=size, resumed_from=offset)


@contextmanager
def atomic_output(dest_path: Path) -> Iterator[Path]:
    """Yield a temporary path that is renamed to ``dest_path`` on success.

    The temporary file is removed if the block raises.
    """
    tmp_path = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)
    tmp_path.unlink(missing_ok=True)
    try:
        yield tmp_path
        if not tmp_path.exists():
            raise ExtractionError(
                f"No output produced for {dest_path}", code="missing_output"
            )
        os.replace(tmp_path, dest_path)
    finally:
        tmp_path.unlink(missing_ok=True)


def decompress_image(archive_path: Path, dest_path: Path) -> Path:
    """Decompress a verified ``.xz`` image to ``dest_path``.

    Args:
        archive_path: Compressed image.
        dest_path: Final raw image path.

    Returns:
        ``dest_path``.

    Raises:
        ExtractionError: If the archive is missing, corrupt or truncated.
    """
    if not archive_path.exists():
        raise ExtractionError(
            f"Archive not found: {archive_path}", code="archive_not_found"
        )

    logger.info("Extracting %s (this may take several minutes)...", archive_path.name)

    try:
        with atomic_output(dest_path) as tmp_path:
            with lzma.open(archive_path, "rb") as src, tmp_path.open("wb") as dst:
                shutil.copyfileobj(src, dst, EXTRACT_CHUNK_SIZE)
    except (lzma.LZMAError, EOFError) as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}", code="corrupt_archive"
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}", code="os_error"
        ) from e

    logger.info("Extraction complete: %s", dest_path)
    return dest_path


__all__ = [
    "DownloadResult",
    "PARTIAL_SUFFIX",
    "atomic_output",
    "check_disk_space",
    "compute_file_sha256",
    "decompress_image",
    "download_file",
    "fetch_text",
    "get_free_space",
    "parse_digest_sidecar",
    "verify_checksum",
]
