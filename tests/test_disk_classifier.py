"""Tests for SD card candidate classification."""

import re

import pytest

from rpi_provisioner.config import GIB
from rpi_provisioner.disk.classifier import RULES, classify, classify_all, find_candidates
from rpi_provisioner.types import Removable, Verdict

MMC_PATTERN = re.compile(r"^/dev/mmcblk\d+$")


class TestClassify:
    """Tests for classify."""

    def test_removable_is_candidate(self, make_disk):
        """Removable media in size bounds is a candidate."""
        score = classify(make_disk(model="Mass Storage"))
        assert score.verdict is Verdict.CANDIDATE
        assert score.rule == "removable"

    @pytest.mark.parametrize("protocol", ["Virtual", "Disk Image", "loop", "virtio", "ram"])
    def test_virtual_excluded(self, make_disk, protocol):
        """Virtual devices lose even when removable."""
        score = classify(make_disk(protocol=protocol))
        assert score.verdict is Verdict.NON_CANDIDATE
        assert score.rule == "virtual-device"

    @pytest.mark.parametrize("size", [GIB // 2, 600 * GIB])
    def test_size_bounds_override_removable(self, make_disk, size):
        """Out-of-range sizes lose even when removable."""
        score = classify(make_disk(size_bytes=size))
        assert score.verdict is Verdict.NON_CANDIDATE
        assert score.rule == "size-out-of-range"

    def test_boundary_sizes_accepted(self, make_disk):
        """1 GiB and 512 GiB are inside the bounds."""
        assert classify(make_disk(size_bytes=GIB)).is_candidate
        assert classify(make_disk(size_bytes=512 * GIB)).is_candidate

    def test_sd_device_name(self, make_disk):
        """The platform SD naming pattern matches non-removable readers."""
        device = make_disk(
            "/dev/mmcblk0", removable=Removable.NO, protocol=None, model=None
        )
        score = classify(device, MMC_PATTERN)
        assert score.is_candidate
        assert score.rule == "sd-device-name"

    def test_sd_device_name_needs_pattern(self, make_disk):
        """Without a platform pattern the name rule never matches."""
        device = make_disk(
            "/dev/mmcblk0", removable=Removable.NO, protocol=None, model=None
        )
        assert not classify(device).is_candidate

    @pytest.mark.parametrize("model", ["Built In SDXC Reader", "MicroSD Card", "SDHC", "MMC"])
    def test_card_model(self, make_disk, model):
        """Card-like model strings make a candidate."""
        device = make_disk(removable=Removable.NO, protocol="sata", model=model)
        score = classify(device)
        assert score.is_candidate
        assert score.rule == "card-model"

    def test_no_signal(self, make_disk):
        """A fixed disk without any SD signal is not a candidate."""
        device = make_disk(removable=Removable.NO, protocol="nvme", model="WD Blue")
        score = classify(device)
        assert score.verdict is Verdict.NON_CANDIDATE
        assert score.rule == "no-match"

    def test_rule_order(self):
        """Exclusion rules run before any permissive rule."""
        names = [rule.name for rule in RULES]
        assert names[:2] == ["virtual-device", "size-out-of-range"]

    def test_deterministic(self, make_disk):
        """Repeated calls on the same device return the same verdict."""
        device = make_disk(removable=Removable.UNKNOWN, model="USB Card Reader")
        scores = {classify(device, MMC_PATTERN) for _ in range(5)}
        assert len(scores) == 1


class TestFindCandidates:
    """Tests for find_candidates and classify_all."""

    def test_removable_card_vs_fixed_disk(self, make_disk):
        """Of a 32 GB removable disk and a 1 TB fixed disk only the card qualifies."""
        card = make_disk("/dev/sdb", size_bytes=32 * 1000**3, model="Mass Storage")
        fixed = make_disk(
            "/dev/sda",
            size_bytes=1000**4,
            removable=Removable.NO,
            protocol="sata",
            model="Samsung 870",
        )

        candidates = find_candidates([fixed, card])

        assert candidates == [card]

    def test_classify_all_keeps_order(self, make_disk):
        """Scores are returned in enumeration order."""
        disks = [make_disk("/dev/sdc"), make_disk("/dev/sdb")]
        assert [d.identifier for d, _ in classify_all(disks)] == ["/dev/sdc", "/dev/sdb"]

    def test_usb_reader_decided_by_card_model(self, make_disk):
        """A non-removable USB reader is accepted by the broader card-model rule."""
        score = classify(
            make_disk(removable=Removable.NO, protocol="usb", model="Generic Card Reader")
        )
        assert score.is_candidate
        assert score.rule == "card-model"
