"""SD card candidate classification.

Each device is scored by an ordered list of rules; the first rule that
returns a verdict decides. Rule order matters: the virtual-device and size
rules must run before any permissive match.

Classification is a pure function of the device attributes.
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from rpi_provisioner.disk.models import (
    MAX_CARD_BYTES,
    MIN_CARD_BYTES,
    CandidateScore,
    DiskDevice,
    human_size,
)
from rpi_provisioner.types import Removable, Verdict

logger = logging.getLogger(__name__)

# Protocol substrings of virtual or disk-image-backed devices
VIRTUAL_PROTOCOL_KEYWORDS = ("virtual", "disk image", "loop", "virtio", "ram")

# Model/vendor substrings of card readers and SD-family media
CARD_KEYWORDS = ("reader", "card", "sdxc", "sdhc", "sd", "mmc")

# Narrower set required on top of a USB transport
USB_CARD_KEYWORDS = ("reader", "card")

RulePredicate = Callable[[DiskDevice, re.Pattern[str] | None], bool]


@dataclass(frozen=True)
class Rule:
    """A classification rule.

    Attributes:
        name: Stable rule name shown to the operator.
        verdict: Verdict returned when the rule matches.
        matches: Predicate over the device and the SD naming pattern.
        reason: Explanation shown when the rule decides.
    """

    name: str
    verdict: Verdict
    matches: RulePredicate
    reason: str


def _is_virtual(device: DiskDevice, _: re.Pattern[str] | None) -> bool:
    protocol = (device.protocol or "").lower()
    return any(keyword in protocol for keyword in VIRTUAL_PROTOCOL_KEYWORDS)


def _out_of_range(device: DiskDevice, _: re.Pattern[str] | None) -> bool:
    return not device.size_in_bounds


def _is_removable(device: DiskDevice, _: re.Pattern[str] | None) -> bool:
    return device.removable is Removable.YES


def _sd_device_name(device: DiskDevice, pattern: re.Pattern[str] | None) -> bool:
    return pattern is not None and bool(pattern.match(device.identifier))


def _model_has(device: DiskDevice, keywords: Iterable[str]) -> bool:
    model = (device.model or "").lower()
    return any(keyword in model for keyword in keywords)


def _card_model(device: DiskDevice, _: re.Pattern[str] | None) -> bool:
    return _model_has(device, CARD_KEYWORDS)


def _usb_card_reader(device: DiskDevice, _: re.Pattern[str] | None) -> bool:
    return (device.protocol or "").lower() == "usb" and _model_has(
        device, USB_CARD_KEYWORDS
    )


RULES: tuple[Rule, ...] = (
    Rule("virtual-device", Verdict.NON_CANDIDATE, _is_virtual, "virtual or disk image"),
    Rule(
        "size-out-of-range",
        Verdict.NON_CANDIDATE,
        _out_of_range,
        f"size outside {human_size(MIN_CARD_BYTES)}-{human_size(MAX_CARD_BYTES)}",
    ),
    Rule("removable", Verdict.CANDIDATE, _is_removable, "removable media"),
    Rule("sd-device-name", Verdict.CANDIDATE, _sd_device_name, "SD/MMC device name"),
    Rule("card-model", Verdict.CANDIDATE, _card_model, "card reader model"),
    # Subsumed by card-model (same keywords); never decides on its own
    Rule("usb-card-reader", Verdict.CANDIDATE, _usb_card_reader, "USB card reader"),
)

_FALLBACK = ("no-match", "no SD card signal")


def classify(
    device: DiskDevice, sd_device_pattern: re.Pattern[str] | None = None
) -> CandidateScore:
    """Classify a device as an SD card candidate.

    Args:
        device: Device to classify.
        sd_device_pattern: The platform's canonical SD/MMC device name pattern.

    Returns:
        CandidateScore naming the deciding rule.
    """
    for rule in RULES:
        if rule.matches(device, sd_device_pattern):
            return CandidateScore(
                identifier=device.identifier,
                verdict=rule.verdict,
                rule=rule.name,
                reason=rule.reason,
            )
    name, reason = _FALLBACK
    return CandidateScore(
        identifier=device.identifier,
        verdict=Verdict.NON_CANDIDATE,
        rule=name,
        reason=reason,
    )


def classify_all(
    devices: Iterable[DiskDevice], sd_device_pattern: re.Pattern[str] | None = None
) -> list[tuple[DiskDevice, CandidateScore]]:
    """Classify every device, keeping enumeration order."""
    scored = []
    for device in devices:
        score = classify(device, sd_device_pattern)
        logger.debug(
            "%s: %s (%s)", device.identifier, score.verdict.value, score.rule
        )
        scored.append((device, score))
    return scored


def find_candidates(
    devices: Iterable[DiskDevice], sd_device_pattern: re.Pattern[str] | None = None
) -> list[DiskDevice]:
    """Return the devices classified as SD card candidates."""
    return [
        device
        for device, score in classify_all(devices, sd_device_pattern)
        if score.is_candidate
    ]


__all__ = [
    "CARD_KEYWORDS",
    "RULES",
    "Rule",
    "VIRTUAL_PROTOCOL_KEYWORDS",
    "classify",
    "classify_all",
    "find_candidates",
]
