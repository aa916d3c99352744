"""Tests for the flash service: target selection and the full flash step.

The device is a regular file standing in for the raw device handle, and
the re-enumeration is simulated by mounting the boot partition during the
settle delay.
"""

from unittest.mock import patch

import pytest

from rpi_provisioner.config import GIB, Settings
from rpi_provisioner.disk.models import Partition
from rpi_provisioner.errors import (
    AmbiguousTargetError,
    DiskNotFoundError,
    FlashError,
    UnsafeTargetError,
    UserAborted,
)
from rpi_provisioner.flash.service import flash_to_sd_card, select_target
from rpi_provisioner.types import Removable

IMAGE_BYTES = b"\xeb\x3c\x90" + b"\x00" * 2045


@pytest.fixture(autouse=True)
def no_sync():
    with patch("rpi_provisioner.flash.writer.os.sync"):
        yield


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "raspios-2024-03-15.img"
    path.write_bytes(IMAGE_BYTES)
    return path


@pytest.fixture
def boot_dir(tmp_path):
    path = tmp_path / "bootfs"
    path.mkdir()
    (path / "config.txt").write_text("")
    (path / "cmdline.txt").write_text("")
    return path


@pytest.fixture
def card_setup(tmp_path, make_disk, make_inventory, boot_dir):
    """A mounted SD card whose boot partition re-mounts after the write."""
    device_file = tmp_path / "device"
    device_file.write_bytes(b"\xff" * 4096)
    boot = Partition(
        "/dev/sdb1", label="bootfs", fstype="vfat", mount_point="/media/pi/bootfs"
    )
    card = make_disk("/dev/sdb", partitions=[boot])
    system = make_disk(
        "/dev/nvme0n1", size_bytes=1000 * GIB, removable=Removable.NO, protocol="nvme", model="WD"
    )
    inventory = make_inventory(
        [system, card], roots={"/dev/nvme0n1"}, raw_paths={"/dev/sdb": str(device_file)}
    )

    def sleep(seconds):
        boot.mount_point = str(boot_dir)

    return inventory, device_file, sleep


class TestSelectTarget:
    """Tests for select_target."""

    def test_single_candidate(self, make_disk, make_inventory, settings):
        """The only candidate is selected."""
        fixed = make_disk("/dev/sda", removable=Removable.NO, protocol="sata", model="WD")
        inventory = make_inventory([fixed, make_disk("/dev/sdb")])

        assert select_target(inventory, settings) == "/dev/sdb"

    def test_no_candidate(self, make_disk, make_inventory, settings):
        """No candidate is an error."""
        fixed = make_disk("/dev/sda", removable=Removable.NO, protocol="sata", model="WD")

        with pytest.raises(DiskNotFoundError) as exc_info:
            select_target(make_inventory([fixed]), settings)

        assert exc_info.value.code == "disk_not_found"

    def test_ambiguous(self, make_disk, make_inventory, settings):
        """Several candidates require an explicit choice."""
        inventory = make_inventory([make_disk("/dev/sdb"), make_disk("/dev/sdc")])

        with pytest.raises(AmbiguousTargetError) as exc_info:
            select_target(inventory, settings)

        assert exc_info.value.identifiers == ["/dev/sdb", "/dev/sdc"]

    def test_root_disk_never_auto_selected(self, make_disk, make_inventory, settings):
        """A card-like root disk is not a candidate."""
        inventory = make_inventory(
            [make_disk("/dev/mmcblk0"), make_disk("/dev/sdb")], roots={"/dev/mmcblk0"}
        )

        assert select_target(inventory, settings) == "/dev/sdb"

    def test_explicit_device(self, make_inventory, settings):
        """An explicit device skips auto-detection."""
        assert select_target(make_inventory([]), settings, "/dev/sdz") == "/dev/sdz"

    def test_configured_target(self, make_inventory):
        """target_disk from settings is used as an explicit device."""
        settings = Settings(_env_file=None, target_disk="/dev/disk4")
        assert select_target(make_inventory([]), settings) == "/dev/disk4"

    def test_auto_detect_disabled(self, make_disk, make_inventory):
        """Without auto-detection a target must be given."""
        settings = Settings(_env_file=None, auto_detect=False)

        with pytest.raises(DiskNotFoundError) as exc_info:
            select_target(make_inventory([make_disk()]), settings)

        assert exc_info.value.code == "no_target"


class TestFlashToSdCard:
    """Tests for flash_to_sd_card."""

    def test_full_flow(self, card_setup, settings, image, boot_dir):
        """Auto-detected card is written and its boot partition returned."""
        inventory, device_file, sleep = card_setup
        prompts = []

        def ask(prompt):
            prompts.append(prompt)
            return "YES"

        handle = flash_to_sd_card(
            image, settings=settings, inventory=inventory, ask=ask, sleep=sleep
        )

        assert handle.mount_point == boot_dir
        assert handle.is_complete
        assert prompts == ["Type YES to continue"]
        assert inventory.unmounted == ["/dev/sdb"]
        assert device_file.read_bytes()[: len(IMAGE_BYTES)] == IMAGE_BYTES

    def test_declined_confirmation_has_no_side_effects(self, card_setup, settings, image):
        """Declining leaves the card untouched and mounted."""
        inventory, device_file, sleep = card_setup

        with pytest.raises(UserAborted):
            flash_to_sd_card(
                image, settings=settings, inventory=inventory, ask=lambda p: "no", sleep=sleep
            )

        assert inventory.unmounted == []
        assert device_file.read_bytes() == b"\xff" * 4096

    def test_confirmation_disabled(self, card_setup, image, boot_dir):
        """With confirmation off the operator is not asked."""
        inventory, _, sleep = card_setup
        settings = Settings(_env_file=None, require_confirmation=False)

        def ask(prompt):
            raise AssertionError("should not prompt")

        handle = flash_to_sd_card(
            image, settings=settings, inventory=inventory, ask=ask, sleep=sleep
        )

        assert handle.mount_point == boot_dir

    def test_explicit_root_disk_refused(self, card_setup, settings, image):
        """An explicit target still goes through safety validation."""
        inventory, _, sleep = card_setup

        with pytest.raises(UnsafeTargetError) as exc_info:
            flash_to_sd_card(
                image,
                settings=settings,
                inventory=inventory,
                device="/dev/nvme0n1",
                ask=lambda p: "YES",
                sleep=sleep,
            )

        assert exc_info.value.code == "root_disk"
        assert inventory.unmounted == []

    def test_device_still_mounted(self, card_setup, settings, image):
        """A partition that refuses to unmount stops the flash."""
        inventory, device_file, sleep = card_setup
        inventory.unmount_disk = lambda device: None

        with pytest.raises(FlashError) as exc_info:
            flash_to_sd_card(
                image, settings=settings, inventory=inventory, ask=lambda p: "YES", sleep=sleep
            )

        assert exc_info.value.code == "device_busy"
        assert device_file.read_bytes() == b"\xff" * 4096

    def test_image_missing(self, card_setup, settings, tmp_path):
        """A missing image fails before target selection."""
        inventory, _, sleep = card_setup

        with pytest.raises(FlashError) as exc_info:
            flash_to_sd_card(
                tmp_path / "missing.img", settings=settings, inventory=inventory, sleep=sleep
            )

        assert exc_info.value.code == "image_not_found"

    def test_image_too_large(self, card_setup, settings, image):
        """An image bigger than the card is refused."""
        inventory, _, sleep = card_setup
        inventory.disks[1].size_bytes = GIB
        with open(image, "r+b") as f:
            f.truncate(GIB + 1)

        with pytest.raises(FlashError) as exc_info:
            flash_to_sd_card(
                image, settings=settings, inventory=inventory, ask=lambda p: "YES", sleep=sleep
            )

        assert exc_info.value.code == "image_too_large"

    def test_unprompted_fixed_disk_refused(self, card_setup, make_disk, tmp_path, image):
        """Without confirmation a non-removable disk is never written."""
        inventory, _, sleep = card_setup
        data_file = tmp_path / "data-disk"
        data_file.write_bytes(b"\xff" * 4096)
        inventory.disks.append(
            make_disk(
                "/dev/sdc",
                size_bytes=200 * GIB,
                removable=Removable.NO,
                protocol="sata",
                model="WDC WD2000",
            )
        )
        inventory.block_devices.add("/dev/sdc")
        inventory.raw_paths["/dev/sdc"] = str(data_file)
        settings = Settings(_env_file=None, require_confirmation=False)

        with pytest.raises(UnsafeTargetError) as exc_info:
            flash_to_sd_card(
                image, settings=settings, inventory=inventory, device="/dev/sdc", sleep=sleep
            )

        assert exc_info.value.code == "not_removable"
        assert inventory.unmounted == []
        assert data_file.read_bytes() == b"\xff" * 4096
