"""Image version and asset resolution.

This module handles:
- Resolving 'latest' to a dated release from the remote index
- Locating the compressed image file inside a release directory
- Building the asset and digest sidecar URLs

The remote index is a plain HTML directory listing; versions and file names
are extracted with regular expressions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

from rpi_provisioner.config import LATEST_VERSION, RASPIOS_IMAGES_BASE, is_valid_version
from rpi_provisioner.errors import AssetNotFoundError, ResolutionError

logger = logging.getLogger(__name__)

# Timeout for index requests (seconds)
INDEX_TIMEOUT = 30

# Release directories are named raspios_lite_armhf-YYYY-MM-DD
RELEASE_DIR_PREFIX = "raspios_lite_armhf-"

_VERSION_DIR_PATTERN = re.compile(
    re.escape(RELEASE_DIR_PREFIX) + r"(\d{4}-\d{2}-\d{2})"
)

DIGEST_SUFFIX = ".sha256"


@dataclass(frozen=True)
class ImageAsset:
    """A downloadable compressed image.

    Attributes:
        version: Resolved release date (YYYY-MM-DD).
        url: URL of the compressed image.
        filename: File name of the compressed image.
        expected_digest: SHA-256 hex digest from the sidecar, once fetched.
    """

    version: str
    url: str
    filename: str
    expected_digest: str | None = None

    @property
    def digest_url(self) -> str:
        """URL of the digest sidecar for this asset."""
        return self.url + DIGEST_SUFFIX


def image_filename_pattern(version: str) -> re.Pattern[str]:
    """Return the pattern matching the compressed image name of a release."""
    return re.compile(re.escape(version) + r"-raspios-[a-z]+-armhf-lite\.img\.xz")


def release_dir_url(version: str, base_url: str = RASPIOS_IMAGES_BASE) -> str:
    """Return the directory URL for a release."""
    return f"{base_url.rstrip('/')}/{RELEASE_DIR_PREFIX}{version}/"


def parse_versions(listing: str) -> list[str]:
    """Extract release versions from an index listing.

    Args:
        listing: Body of the index page.

    Returns:
        Unique versions, newest first.
    """
    return sorted(set(_VERSION_DIR_PATTERN.findall(listing)), reverse=True)


def _fetch_listing(client: httpx.Client, url: str, timeout: float) -> str:
    logger.debug("Fetching listing from %s", url)
    try:
        response = client.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        return response.text
    except httpx.HTTPStatusError as e:
        raise ResolutionError(
            f"HTTP error fetching {url}: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise ResolutionError(f"Timeout fetching {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise ResolutionError(
            f"Network error fetching {url}: {e}", code="network_error"
        ) from e


def resolve_version(
    client: httpx.Client,
    version: str = LATEST_VERSION,
    base_url: str = RASPIOS_IMAGES_BASE,
    timeout: float = INDEX_TIMEOUT,
) -> str:
    """Resolve a version specifier to a concrete release date.

    Explicit versions are returned without any network request. 'latest'
    picks the greatest date found in the index; YYYY-MM-DD strings sort
    chronologically.

    Args:
        client: HTTPX client instance.
        version: 'latest' or YYYY-MM-DD.
        base_url: Remote asset index.
        timeout: Request timeout in seconds.

    Returns:
        Resolved version string.

    Raises:
        ResolutionError: Invalid specifier, unreachable index or no versions.
    """
    if not is_valid_version(version):
        raise ResolutionError(
            f"Invalid version {version!r}: expected 'latest' or YYYY-MM-DD",
            code="invalid_version",
        )
    if version != LATEST_VERSION:
        return version

    logger.info("Resolving latest Raspberry Pi OS version...")
    listing = _fetch_listing(client, f"{base_url.rstrip('/')}/", timeout)
    versions = parse_versions(listing)
    if not versions:
        raise ResolutionError(
            f"No image versions found at {base_url}", code="no_versions"
        )

    logger.info("Latest version: %s", versions[0])
    return versions[0]


def resolve_asset(
    client: httpx.Client,
    version: str,
    base_url: str = RASPIOS_IMAGES_BASE,
    timeout: float = INDEX_TIMEOUT,
) -> ImageAsset:
    """Locate the compressed image of a release.

    Args:
        client: HTTPX client instance.
        version: Resolved version (YYYY-MM-DD).
        base_url: Remote asset index.
        timeout: Request timeout in seconds.

    Returns:
        ImageAsset without its expected digest.

    Raises:
        ResolutionError: Release directory unreachable.
        AssetNotFoundError: No file matches the image naming convention.
    """
    dir_url = release_dir_url(version, base_url)
    listing = _fetch_listing(client, dir_url, timeout)

    match = image_filename_pattern(version).search(listing)
    if match is None:
        raise AssetNotFoundError(f"No image file found in {dir_url}")

    filename = match.group(0)
    logger.debug("Found image filename: %s", filename)
    return ImageAsset(version=version, url=dir_url + filename, filename=filename)


__all__ = [
    "DIGEST_SUFFIX",
    "ImageAsset",
    "image_filename_pattern",
    "parse_versions",
    "release_dir_url",
    "resolve_asset",
    "resolve_version",
]
