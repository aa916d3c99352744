"""Tests for the image acquisition service.

These tests run the whole download step against a mocked index, with a
real xz-compressed payload.
"""

import hashlib
import lzma
from unittest.mock import patch

import httpx
import pytest
import respx

from rpi_provisioner.config import RASPIOS_IMAGES_BASE, Settings
from rpi_provisioner.errors import (
    ChecksumMismatchError,
    DownloadError,
    InsufficientSpaceError,
    ResolutionError,
)
from rpi_provisioner.image.service import ensure_image

VERSION = "2024-03-15"
FILENAME = f"{VERSION}-raspios-bookworm-armhf-lite.img.xz"
DIR_URL = f"{RASPIOS_IMAGES_BASE}/raspios_lite_armhf-{VERSION}/"
IMAGE_URL = DIR_URL + FILENAME

RAW_IMAGE = b"\xeb\x3c\x90mkfs.fat" + bytes(range(256)) * 64
COMPRESSED = lzma.compress(RAW_IMAGE)
EXPECTED_IMAGE_DIGEST = hashlib.sha256(RAW_IMAGE).hexdigest()
COMPRESSED_DIGEST = hashlib.sha256(COMPRESSED).hexdigest()

INDEX_HTML = (
    '<a href="raspios_lite_armhf-2023-12-06/">raspios_lite_armhf-2023-12-06/</a>\n'
    f'<a href="raspios_lite_armhf-{VERSION}/">raspios_lite_armhf-{VERSION}/</a>\n'
)
RELEASE_HTML = f'<a href="{FILENAME}">{FILENAME}</a>\n<a href="{FILENAME}.sha256">sha</a>\n'


@pytest.fixture
def settings(tmp_path):
    return Settings(cache_dir=tmp_path / "cache", required_free_bytes=0)


def _mock_remote(digest: str = COMPRESSED_DIGEST):
    return {
        "index": respx.get(f"{RASPIOS_IMAGES_BASE}/").mock(
            return_value=httpx.Response(200, text=INDEX_HTML)
        ),
        "release": respx.get(DIR_URL).mock(
            return_value=httpx.Response(200, text=RELEASE_HTML)
        ),
        "image": respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(200, content=COMPRESSED)
        ),
        "digest": respx.get(IMAGE_URL + ".sha256").mock(
            return_value=httpx.Response(200, text=f"{digest}  {FILENAME}\n")
        ),
    }


class TestEnsureImage:
    """Tests for ensure_image."""

    @respx.mock
    def test_cold_cache_explicit_version(self, settings):
        """A cold cache yields a decompressed image with the expected digest."""
        routes = _mock_remote()

        path = ensure_image(VERSION, settings=settings)

        assert path == settings.cache_dir / f"raspios-{VERSION}.img"
        assert hashlib.sha256(path.read_bytes()).hexdigest() == EXPECTED_IMAGE_DIGEST
        assert not routes["index"].called
        assert routes["image"].call_count == 1
        # Compressed file and sidecar are kept by default
        assert (settings.cache_dir / FILENAME).exists()
        assert (settings.cache_dir / f"{FILENAME}.sha256").exists()

    @respx.mock
    def test_warm_cache_makes_no_requests(self, settings):
        """A second run with a populated cache performs no network request."""
        routes = _mock_remote()
        first = ensure_image(VERSION, settings=settings)
        calls_after_first = len(respx.calls)

        second = ensure_image(VERSION, settings=settings)

        assert second == first
        assert len(respx.calls) == calls_after_first
        assert routes["image"].call_count == 1

    @respx.mock
    def test_latest_resolves_newest(self, settings):
        """'latest' is resolved through the index."""
        routes = _mock_remote()

        path = ensure_image("latest", settings=settings)

        assert path.name == f"raspios-{VERSION}.img"
        assert routes["index"].called

    @respx.mock
    def test_latest_warm_cache_skips_download(self, settings):
        """A warm 'latest' run only queries the index."""
        routes = _mock_remote()
        ensure_image("latest", settings=settings)

        ensure_image("latest", settings=settings)

        assert routes["index"].call_count == 2
        assert routes["release"].call_count == 1
        assert routes["image"].call_count == 1

    @respx.mock
    def test_defaults_to_settings_version(self, tmp_path):
        """Without a version argument the configured version is used."""
        _mock_remote()
        settings = Settings(
            cache_dir=tmp_path / "cache", required_free_bytes=0, os_version=VERSION
        )

        assert ensure_image(settings=settings).name == f"raspios-{VERSION}.img"

    @respx.mock
    def test_insufficient_space_fails_before_download(self, tmp_path):
        """A full cache volume is reported before the image is fetched."""
        routes = _mock_remote()
        settings = Settings(cache_dir=tmp_path / "cache", required_free_bytes=8 * 1024**3)

        with (
            patch("rpi_provisioner.image.fetch.get_free_space", return_value=1024),
            pytest.raises(InsufficientSpaceError) as exc_info,
        ):
            ensure_image(VERSION, settings=settings)

        assert exc_info.value.code == "insufficient_space"
        assert not routes["image"].called
        assert not list(settings.cache_dir.glob("*.tmp"))

    @respx.mock
    def test_checksum_mismatch_deletes_artifact(self, settings):
        """A digest mismatch removes the compressed artifact and its sidecar."""
        _mock_remote(digest="0" * 64)

        with pytest.raises(ChecksumMismatchError):
            ensure_image(VERSION, settings=settings)

        assert not (settings.cache_dir / FILENAME).exists()
        assert not (settings.cache_dir / f"{FILENAME}.sha256").exists()
        assert not (settings.cache_dir / f"raspios-{VERSION}.img").exists()

    @respx.mock
    def test_cached_compressed_is_reverified(self, settings):
        """A cached compressed file is verified again before extraction."""
        routes = _mock_remote()
        settings.cache_dir.mkdir(parents=True)
        (settings.cache_dir / FILENAME).write_bytes(b"tampered")

        with pytest.raises(ChecksumMismatchError):
            ensure_image(VERSION, settings=settings)

        assert not routes["image"].called
        assert not (settings.cache_dir / FILENAME).exists()

    @respx.mock
    def test_cached_compressed_reused(self, settings):
        """A valid cached compressed file is extracted without downloading."""
        routes = _mock_remote()
        settings.cache_dir.mkdir(parents=True)
        (settings.cache_dir / FILENAME).write_bytes(COMPRESSED)

        path = ensure_image(VERSION, settings=settings)

        assert path.read_bytes() == RAW_IMAGE
        assert not routes["image"].called
        assert routes["digest"].called

    @respx.mock
    def test_discard_compressed(self, tmp_path):
        """With keep_compressed off only the raw image remains."""
        _mock_remote()
        settings = Settings(
            cache_dir=tmp_path / "cache", required_free_bytes=0, keep_compressed=False
        )

        path = ensure_image(VERSION, settings=settings)

        assert path.exists()
        assert not (settings.cache_dir / FILENAME).exists()
        assert not (settings.cache_dir / f"{FILENAME}.sha256").exists()

    @respx.mock
    def test_empty_sidecar(self, settings):
        """An empty sidecar is rejected and not cached."""
        routes = _mock_remote()
        routes["digest"].mock(return_value=httpx.Response(200, text=""))

        with pytest.raises(DownloadError) as exc_info:
            ensure_image(VERSION, settings=settings)

        assert exc_info.value.code == "invalid_digest"
        assert not (settings.cache_dir / f"{FILENAME}.sha256").exists()

    def test_invalid_version(self, settings):
        """A malformed version fails before any network access."""
        with pytest.raises(ResolutionError) as exc_info:
            ensure_image("15-03-2024", settings=settings)
        assert exc_info.value.code == "invalid_version"
