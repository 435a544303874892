"""
hsplus-loader Error Hierarchy
=============================

This module defines the exception hierarchy for the firmware loader.
All exceptions inherit from HsplusError, allowing callers to catch all
loader-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
HsplusError (base)
├── LoaderConfigError - invalid configuration value
└── UploadError (firmware upload, carries stage and step)
    ├── DeviceNotFoundError - no uninitialized adapter attached
    ├── AmbiguousDeviceError - several candidates attached (strict mode)
    ├── IdentityMismatchError - adapter reported an unexpected identity
    ├── ShortTransferError - fewer bytes moved than requested
    ├── UnexpectedResponseError - acknowledgement bytes did not match
    ├── SourceReadError - firmware image unreadable or truncated
    ├── TransportError - underlying USB I/O failure or timeout
    └── HandleInvalidatedError - device handle used after release

Design Philosophy
-----------------
The upload protocol has no recovery path: the first failure ends the
session. Each exception therefore records where in the sequence it
happened (stage and step) and, where applicable, what was expected and
what was actually seen. Messages follow this format:

    stage 2, ack #1 (handshake accepted): expected 0c000000, got 00000000
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class HsplusError(Exception):
    """
    Base exception for all hsplus-loader errors.

        try:
            result = uploader.run("stage1.bin", "stage2.bin")
            result.raise_for_error()
        except HsplusError as e:
            print(f"Error: {e}")
    """
    pass


class LoaderConfigError(HsplusError):
    """Invalid loader configuration (bad environment value, endpoint, etc.)."""
    pass


# =============================================================================
# Upload Exceptions
# =============================================================================

class UploadError(HsplusError):
    """
    Base exception for failures during a firmware upload.

    Attributes:
        message: The error description
        stage: Protocol stage name ("discovery", "stage 1", "stage 2")
        step: Step within the stage (e.g. "identity check")
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        step: Optional[str] = None,
    ):
        self.message = message
        self.stage = stage
        self.step = step
        super().__init__(self._format_message())

    def tag(self, stage: str, step: Optional[str] = None) -> "UploadError":
        """Fill in stage and step if they were not known where the error was raised."""
        if self.stage is None:
            self.stage = stage
            self.step = self.step or step
            self.args = (self._format_message(),)
        return self

    def _format_message(self) -> str:
        location = ", ".join(part for part in (self.stage, self.step) if part)
        if location:
            return f"{location}: {self.message}"
        return self.message


class DeviceNotFoundError(UploadError):
    """
    No device matching the requested vendor/product pair was found.

    Raised when:
    - The adapter is not plugged in
    - The adapter has already been initialized (it then reports the
      operational product id instead)
    - The process lacks permission to open the device
    """

    def __init__(self, vendor_id: int, product_id: int):
        self.vendor_id = vendor_id
        self.product_id = product_id
        super().__init__(
            f"no device with id {vendor_id:04x}:{product_id:04x} found",
            stage="discovery",
        )


class AmbiguousDeviceError(UploadError):
    """Several devices match the requested identity and strict mode is on."""

    def __init__(self, vendor_id: int, product_id: int, count: int):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.count = count
        super().__init__(
            f"{count} devices with id {vendor_id:04x}:{product_id:04x} attached; "
            "disconnect all but one",
            stage="discovery",
        )


class IdentityMismatchError(UploadError):
    """
    The adapter answered the identity check with an unexpected product id.

    The identity check is the first request of stage 1; a mismatch means
    the device is not in the factory-default state this loader expects.
    """

    def __init__(self, expected: int, actual: int, stage: str = "stage 1"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"expected identity 0x{expected:04x}, got 0x{actual:04x}",
            stage=stage,
            step="identity check",
        )


class ShortTransferError(UploadError):
    """A transfer moved fewer bytes than were requested."""

    def __init__(
        self,
        expected: int,
        actual: int,
        stage: Optional[str] = None,
        step: Optional[str] = None,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"short transfer: expected {expected} bytes, got {actual}",
            stage=stage,
            step=step,
        )


class UnexpectedResponseError(UploadError):
    """
    Acknowledgement bytes did not match the expected pattern.

    Attributes:
        checkpoint: Name of the protocol checkpoint that failed
        expected: The acknowledgement pattern the protocol requires
        actual: The bytes actually returned by the device
    """

    def __init__(
        self,
        checkpoint: str,
        expected: bytes,
        actual: bytes,
        stage: Optional[str] = None,
    ):
        self.checkpoint = checkpoint
        self.expected = bytes(expected)
        self.actual = bytes(actual)
        super().__init__(
            f"expected {self.expected.hex()}, got {self.actual.hex()}",
            stage=stage,
            step=checkpoint,
        )


class SourceReadError(UploadError):
    """
    The firmware image could not be read in full.

    A truncated source (the stream ends before its declared length) is
    distinguished from a clean end of data; only the former raises.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        stage: Optional[str] = None,
    ):
        self.path = path
        self.expected = expected
        self.actual = actual
        if path:
            message = f"{path}: {message}"
        super().__init__(message, stage=stage, step="read image")


class TransportError(UploadError):
    """
    Underlying USB I/O failure, surfaced verbatim.

    Timeouts are reported through this class too; the loader never
    retries them.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        stage: Optional[str] = None,
        step: Optional[str] = None,
    ):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, stage=stage, step=step)


class HandleInvalidatedError(UploadError):
    """
    A device handle was used after it was closed or after the device
    re-enumerated under its operational identity.
    """

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"device handle is no longer usable (state: {state})")
