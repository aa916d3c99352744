"""Shared fixtures: an in-memory disk inventory and device builders."""

import re

import pytest

from rpi_provisioner.config import GIB
from rpi_provisioner.disk.inventory import DiskInventory
from rpi_provisioner.disk.models import DiskDevice, Partition
from rpi_provisioner.types import Removable


def build_disk(
    identifier: str = "/dev/sdb",
    size_bytes: int = 32 * GIB,
    removable: Removable = Removable.YES,
    protocol: str | None = "usb",
    model: str | None = "Generic SD Card Reader",
    partitions: list[Partition] | None = None,
    **kwargs,
) -> DiskDevice:
    return DiskDevice(
        identifier=identifier,
        size_bytes=size_bytes,
        removable=removable,
        protocol=protocol,
        model=model,
        partitions=partitions if partitions is not None else [],
        **kwargs,
    )


class FakeInventory(DiskInventory):
    """Disk inventory over a fixed list of devices."""

    sd_device_pattern = re.compile(r"^/dev/mmcblk\d+$")

    def __init__(
        self,
        disks: list[DiskDevice],
        roots: set[str] | None = None,
        block_devices: set[str] | None = None,
        raw_paths: dict[str, str] | None = None,
    ) -> None:
        self.disks = disks
        self.roots = roots or set()
        self.block_devices = (
            block_devices
            if block_devices is not None
            else {d.identifier for d in disks}
        )
        self.raw_paths = raw_paths or {}
        self.unmounted: list[str] = []
        self.mount_calls: list[Partition] = []
        self.manual_mount_point: str | None = None

    def enumerate(self) -> list[DiskDevice]:
        return list(self.disks)

    def root_disks(self) -> set[str]:
        return set(self.roots)

    def first_partition_path(self, identifier: str) -> str:
        separator = "p" if identifier[-1].isdigit() else ""
        return f"{identifier}{separator}1"

    def unmount_disk(self, device: DiskDevice) -> None:
        self.unmounted.append(device.identifier)
        for disk in self.disks:
            if disk.identifier == device.identifier:
                disk.own_mount_point = None
                for partition in disk.partitions:
                    partition.mount_point = None

    def mount_partition(self, partition: Partition) -> str | None:
        self.mount_calls.append(partition)
        return self.manual_mount_point

    def raw_device_path(self, identifier: str) -> str:
        return self.raw_paths.get(identifier, identifier)

    def is_block_device(self, identifier: str) -> bool:
        return identifier in self.block_devices


@pytest.fixture
def make_disk():
    """Factory for DiskDevice instances with SD card defaults."""
    return build_disk


@pytest.fixture
def make_inventory():
    """Factory for FakeInventory instances."""
    return FakeInventory
