"""Error types for the provisioning pipeline.

Every error carries a stable ``code`` for structured handling. Each stage
raises its own kind; a failing stage stops the pipeline.
"""


class ProvisionError(Exception):
    """Base exception for provisioning errors."""

    default_code = "provision_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize ProvisionError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ResolutionError(ProvisionError):
    """Raised when a version cannot be resolved from the remote index."""

    default_code = "resolution_error"


class AssetNotFoundError(ProvisionError):
    """Raised when no image file matches the naming convention."""

    default_code = "asset_not_found"


class InsufficientSpaceError(ProvisionError):
    """Raised when the cache volume lacks room for the image."""

    default_code = "insufficient_space"

    def __init__(self, path: str, required_bytes: int, available_bytes: int) -> None:
        super().__init__(
            f"Insufficient disk space at {path}: "
            f"required {required_bytes} bytes, available {available_bytes} bytes"
        )
        self.path = path
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes


class DownloadError(ProvisionError):
    """Raised when a download fails. Re-running resumes partial files."""

    default_code = "download_error"


class ChecksumMismatchError(ProvisionError):
    """Raised when a downloaded artifact does not match its digest."""

    default_code = "checksum_mismatch"

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class ExtractionError(ProvisionError):
    """Raised when decompressing the image fails."""

    default_code = "extraction_error"


class DiskNotFoundError(ProvisionError):
    """Raised when no usable target device is found."""

    default_code = "disk_not_found"


class AmbiguousTargetError(DiskNotFoundError):
    """Raised when auto-detection finds more than one candidate."""

    default_code = "ambiguous_target"

    def __init__(self, identifiers: list[str]) -> None:
        super().__init__(
            f"Multiple SD card candidates found: {', '.join(identifiers)}. "
            "Specify the target device explicitly."
        )
        self.identifiers = identifiers


class UnsafeTargetError(ProvisionError):
    """Raised when a device fails hard safety validation."""

    default_code = "unsafe_target"

    def __init__(self, identifier: str, reason: str, code: str) -> None:
        super().__init__(f"Refusing to use {identifier}: {reason}", code=code)
        self.identifier = identifier
        self.reason = reason


class UserAborted(ProvisionError):
    """Raised when the operator declines the confirmation prompt."""

    default_code = "user_aborted"

    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)


class FlashError(ProvisionError):
    """Raised when writing the image fails. The device state is unknown."""

    default_code = "flash_error"


class MountTimeoutError(ProvisionError):
    """Raised when the boot partition never becomes available."""

    default_code = "mount_timeout"


__all__ = [
    "AmbiguousTargetError",
    "AssetNotFoundError",
    "ChecksumMismatchError",
    "DiskNotFoundError",
    "DownloadError",
    "ExtractionError",
    "FlashError",
    "InsufficientSpaceError",
    "MountTimeoutError",
    "ProvisionError",
    "ResolutionError",
    "UnsafeTargetError",
    "UserAborted",
]
