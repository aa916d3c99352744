"""Tests for the operator confirmation gate."""

import io

import pytest
from rich.console import Console

from rpi_provisioner.disk.classifier import classify
from rpi_provisioner.disk.confirm import confirm_target, has_boot_signature
from rpi_provisioner.disk.models import Partition
from rpi_provisioner.errors import UserAborted


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120)


class TestHasBootSignature:
    """Tests for has_boot_signature."""

    def test_boot_label(self, make_disk):
        """A bootfs label marks a provisioned card."""
        disk = make_disk(partitions=[Partition("/dev/sdb1", label="bootfs")])
        assert has_boot_signature(disk)

    def test_boot_mount_point(self, make_disk):
        """A mount point named boot marks a provisioned card."""
        disk = make_disk(partitions=[Partition("/dev/disk4s1", mount_point="/Volumes/boot")])
        assert has_boot_signature(disk)

    def test_blank_card(self, make_disk):
        """A card with other partitions has no signature."""
        disk = make_disk(
            partitions=[Partition("/dev/sdb1", label="NO NAME", mount_point="/media/x")]
        )
        assert not has_boot_signature(disk)


class TestConfirmTarget:
    """Tests for confirm_target."""

    def test_exact_phrase_proceeds(self, make_disk, console):
        """Typing the exact phrase returns normally."""
        disk = make_disk()
        confirm_target(disk, classify(disk), console=console, ask=lambda prompt: "YES")

        output = console.file.getvalue()
        assert "/dev/sdb" in output
        assert "ERASED" in output

    @pytest.mark.parametrize("answer", ["yes", "Y", "", " YES", "YES please"])
    def test_other_answers_abort(self, make_disk, console, answer):
        """Anything but the exact phrase aborts."""
        with pytest.raises(UserAborted) as exc_info:
            confirm_target(make_disk(), console=console, ask=lambda prompt: answer)

        assert exc_info.value.code == "user_aborted"

    def test_custom_phrase(self, make_disk, console):
        """The configured phrase is requested."""
        prompts = []

        def ask(prompt):
            prompts.append(prompt)
            return "ERASE"

        confirm_target(make_disk(), phrase="ERASE", console=console, ask=ask)

        assert prompts == ["Type ERASE to continue"]

    def test_provisioned_card_flagged(self, make_disk, console):
        """A previously provisioned card is pointed out."""
        disk = make_disk(partitions=[Partition("/dev/sdb1", label="bootfs")])

        confirm_target(disk, console=console, ask=lambda prompt: "YES")

        assert "previously provisioned" in console.file.getvalue()

    def test_closed_input_aborts(self, make_disk, console, monkeypatch):
        """End of input at the prompt is a clean cancellation."""
        monkeypatch.setattr("sys.stdin", io.StringIO(""))

        with pytest.raises(UserAborted):
            confirm_target(make_disk(), console=console)

    def test_interrupt_aborts(self, make_disk, console):
        """Ctrl-C at the prompt is a clean cancellation."""

        def ask(prompt):
            raise KeyboardInterrupt

        with pytest.raises(UserAborted):
            confirm_target(make_disk(), console=console, ask=ask)
