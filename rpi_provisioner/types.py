"""Shared type definitions for rpi_provisioner.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class Removable(str, Enum):
    """Removable-media flag as reported by the platform."""

    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


class Verdict(str, Enum):
    """Outcome of SD card candidate classification."""

    CANDIDATE = "candidate"
    NON_CANDIDATE = "non-candidate"


class WaitState(str, Enum):
    """States of the boot partition re-enumeration wait."""

    WAITING_FOR_ENUMERATION = "waiting_for_enumeration"
    WAITING_FOR_MOUNT = "waiting_for_mount"
    MOUNTED = "mounted"
    FAILED = "failed"


__all__ = [
    "Removable",
    "Verdict",
    "WaitState",
]
