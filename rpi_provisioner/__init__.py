"""Raspberry Pi SD card provisioner.

This package downloads and verifies Raspberry Pi OS images, picks a safe
SD card among the attached disks, writes the image and hands back the
mounted boot partition for first-boot configuration.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
