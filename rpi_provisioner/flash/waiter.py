"""Wait for a freshly written card to expose its boot partition.

After a destructive write the OS re-reads the partition table on its own
schedule. The waiter is an explicit state machine:

    WAITING_FOR_ENUMERATION -> WAITING_FOR_MOUNT -> MOUNTED
                                                 -> FAILED

It settles briefly, then polls the disk inventory at a fixed interval
until the boot partition shows up with a mount point. If the poll budget
runs out, a single manual mount is attempted before giving up. The whole
wait is bounded by the timeout plus that one mount attempt.
"""

import logging
import time
from collections.abc import Callable

from rpi_provisioner.disk.inventory import DiskInventory, InventoryError
from rpi_provisioner.disk.models import Partition
from rpi_provisioner.errors import MountTimeoutError
from rpi_provisioner.types import WaitState

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 3.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_TIMEOUT = 30.0

# Boot partitions of Raspberry Pi OS images are FAT
BOOT_PARTITION_FSTYPE = "vfat"


class ReenumerationWaiter:
    """Bounded poll loop for the boot partition of a disk.

    Attributes:
        state: Current state.
        history: Every state entered, in order.
        polls: Number of inventory polls performed.
    """

    def __init__(
        self,
        inventory: DiskInventory,
        identifier: str,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.inventory = inventory
        self.identifier = identifier
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

        self.state = WaitState.WAITING_FOR_ENUMERATION
        self.history: list[WaitState] = [self.state]
        self.polls = 0
        self._partition: Partition | None = None

    def _enter(self, state: WaitState) -> None:
        if state is self.state:
            return
        logger.debug("%s: %s -> %s", self.identifier, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _poll(self) -> str | None:
        """Query the inventory once; return the mount point if mounted."""
        self.polls += 1
        try:
            partition = self.inventory.boot_partition(self.identifier)
        except InventoryError as e:
            # The disk can vanish briefly while the kernel re-reads it
            logger.debug("Inventory query failed during re-enumeration: %s", e)
            return None

        if partition is None:
            return None

        self._partition = partition
        if partition.mount_point:
            return partition.mount_point

        self._enter(WaitState.WAITING_FOR_MOUNT)
        return None

    def _manual_mount(self) -> str | None:
        partition = self._partition or Partition(
            identifier=self.inventory.first_partition_path(self.identifier),
            fstype=BOOT_PARTITION_FSTYPE,
        )
        logger.info("Boot partition not mounted, trying to mount %s", partition.identifier)
        try:
            return self.inventory.mount_partition(partition)
        except InventoryError as e:
            logger.warning("Manual mount of %s failed: %s", partition.identifier, e)
            return None

    def _fail(self, message: str) -> MountTimeoutError:
        self._enter(WaitState.FAILED)
        logger.error(message)
        return MountTimeoutError(message)

    def run(self) -> str:
        """Wait until the boot partition is mounted.

        Returns:
            Mount point of the boot partition.

        Raises:
            MountTimeoutError: If the partition never becomes available.
        """
        if self.state is not WaitState.WAITING_FOR_ENUMERATION:
            raise RuntimeError("ReenumerationWaiter.run() can only be called once")

        deadline = self._clock() + self.timeout
        logger.info("Waiting for %s to re-enumerate...", self.identifier)
        self._sleep(min(self.settle_delay, self.timeout))

        while True:
            mount_point = self._poll()
            if mount_point:
                self._enter(WaitState.MOUNTED)
                logger.info("Boot partition mounted at %s", mount_point)
                return mount_point

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval, remaining))

        logger.debug("Poll budget exhausted after %d poll(s)", self.polls)
        mount_point = self._manual_mount()
        if mount_point:
            self._enter(WaitState.MOUNTED)
            logger.info("Boot partition mounted at %s", mount_point)
            return mount_point

        raise self._fail(
            f"Boot partition of {self.identifier} did not mount within "
            f"{self.timeout:.0f}s"
        )


def wait_for_boot_partition(
    inventory: DiskInventory,
    identifier: str,
    *,
    settle_delay: float = DEFAULT_SETTLE_DELAY,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_TIMEOUT,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Convenience wrapper running a ReenumerationWaiter to completion."""
    waiter = ReenumerationWaiter(
        inventory,
        identifier,
        settle_delay=settle_delay,
        poll_interval=poll_interval,
        timeout=timeout,
        clock=clock,
        sleep=sleep,
    )
    return waiter.run()


__all__ = ["ReenumerationWaiter", "wait_for_boot_partition"]
