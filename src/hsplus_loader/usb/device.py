"""
USB Device Access for the GPIB-USB-HS+ Loader
=============================================

This module wraps pyusb for the firmware loader. It handles:

- Discovery of adapters by exact vendor/product identity
- Exclusive ownership of one open device (DeviceHandle)
- Vendor control transfers and bulk transfers with a fixed timeout
- Translation of pyusb errors into TransportError

Handle Lifetime
---------------
A DeviceHandle starts OPEN. It ends in one of two states:

- CLOSED: released by close() or by leaving its ``with`` block
- REENUMERATED: the stage-2 finalize request made the adapter drop off
  the bus and come back under its operational product id

Any transfer on a handle that is not OPEN raises HandleInvalidatedError.
close() releases pyusb resources exactly once, whatever the state.

Requirements
------------
pyusb needs a backend; on Linux and macOS that is libusb-1.0. On Linux
the user also needs write access to the device node, usually granted by
a udev rule for vendor 0x3923.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Protocol

import usb.core
import usb.util

from hsplus_loader.errors import (
    AmbiguousDeviceError,
    DeviceNotFoundError,
    HandleInvalidatedError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Default interval between discovery polls while waiting for re-enumeration
POLL_INTERVAL = 0.5


# =============================================================================
# Transfer Requests
# =============================================================================

class Direction(IntEnum):
    """Data phase direction of a control transfer."""
    OUT = usb.util.CTRL_OUT  # host to device
    IN = usb.util.CTRL_IN    # device to host


@dataclass(frozen=True)
class ControlRequest:
    """
    A vendor request addressed to the device.

    For OUT requests ``data`` is the payload; for IN requests ``length``
    is the number of bytes the device must return.
    """

    direction: Direction
    request: int
    value: int = 0
    index: int = 0
    data: bytes = b""
    length: int = 0

    @classmethod
    def out(cls, request: int, value: int = 0, data: bytes = b"") -> "ControlRequest":
        return cls(Direction.OUT, request, value=value, data=bytes(data))

    @classmethod
    def in_(cls, request: int, length: int, value: int = 0) -> "ControlRequest":
        return cls(Direction.IN, request, value=value, length=length)

    @property
    def request_type(self) -> int:
        """bmRequestType: vendor request, device recipient, direction bit."""
        return int(self.direction) | usb.util.CTRL_TYPE_VENDOR | usb.util.CTRL_RECIPIENT_DEVICE

    @property
    def size(self) -> int:
        """Bytes the data phase must move."""
        return len(self.data) if self.direction == Direction.OUT else self.length

    def __str__(self) -> str:
        arrow = "OUT" if self.direction == Direction.OUT else "IN"
        return f"{arrow} 0x{self.request:02x} (value=0x{self.value:x}, {self.size} bytes)"


class Transport(Protocol):
    """
    Transfer capability the stage loaders need.

    DeviceHandle implements it over pyusb; tests supply a recording fake.
    """

    def control_in(self, request: ControlRequest, timeout_ms: int) -> bytes: ...

    def control_out(self, request: ControlRequest, timeout_ms: int) -> int: ...

    def bulk_write(self, endpoint: int, data: bytes, timeout_ms: int) -> int: ...

    def bulk_read(self, endpoint: int, length: int, timeout_ms: int) -> bytes: ...

    def mark_reenumerated(self) -> None: ...


# =============================================================================
# Device Handle
# =============================================================================

class HandleState(Enum):
    OPEN = "open"
    REENUMERATED = "re-enumerated"
    CLOSED = "closed"


class DeviceHandle:
    """
    Exclusive owner of one opened USB device.

    Example:
        with open_device(0x3923, 0x761E) as handle:
            ident = handle.control_in(ControlRequest.in_(0x90, 2), 3000)
    """

    def __init__(self, device: usb.core.Device):
        self._device = device
        self._state = HandleState.OPEN
        self.description = describe_device(device)

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is HandleState.OPEN

    def _check_open(self) -> None:
        if self._state is not HandleState.OPEN:
            raise HandleInvalidatedError(self._state.value)

    def control_in(self, request: ControlRequest, timeout_ms: int) -> bytes:
        """Issue an IN vendor request and return the bytes the device sent."""
        self._check_open()
        logger.debug("Control %s", request)
        try:
            data = self._device.ctrl_transfer(
                request.request_type,
                request.request,
                request.value,
                request.index,
                request.length,
                timeout=timeout_ms,
            )
        except usb.core.USBError as e:
            raise _transport_error(f"control request 0x{request.request:02x}", e) from e
        return bytes(data)

    def control_out(self, request: ControlRequest, timeout_ms: int) -> int:
        """Issue an OUT vendor request; returns the number of bytes sent."""
        self._check_open()
        logger.debug("Control %s", request)
        try:
            return self._device.ctrl_transfer(
                request.request_type,
                request.request,
                request.value,
                request.index,
                request.data,
                timeout=timeout_ms,
            )
        except usb.core.USBError as e:
            raise _transport_error(f"control request 0x{request.request:02x}", e) from e

    def bulk_write(self, endpoint: int, data: bytes, timeout_ms: int) -> int:
        """Write to a bulk-out endpoint; returns the number of bytes sent."""
        self._check_open()
        try:
            return self._device.write(endpoint, data, timeout=timeout_ms)
        except usb.core.USBError as e:
            raise _transport_error(f"bulk write to endpoint 0x{endpoint:02x}", e) from e

    def bulk_read(self, endpoint: int, length: int, timeout_ms: int) -> bytes:
        """Read up to ``length`` bytes from a bulk-in endpoint."""
        self._check_open()
        try:
            data = self._device.read(endpoint, length, timeout=timeout_ms)
        except usb.core.USBError as e:
            raise _transport_error(f"bulk read from endpoint 0x{endpoint:02x}", e) from e
        return bytes(data)

    def mark_reenumerated(self) -> None:
        """
        Record that the device has left the bus to re-enumerate.

        Called by the stage-2 loader once the finalize request returns.
        The handle cannot be reopened; rediscover the device instead.
        """
        self._check_open()
        self._state = HandleState.REENUMERATED
        logger.debug("Handle for %s invalidated by re-enumeration", self.description)

    def close(self) -> None:
        """Release the device. Safe to call more than once."""
        if self._state is HandleState.CLOSED:
            return
        try:
            usb.util.dispose_resources(self._device)
        except usb.core.USBError as e:
            # The device may already be gone after re-enumeration
            logger.debug("Error releasing %s: %s", self.description, e)
        self._state = HandleState.CLOSED
        logger.debug("Released %s", self.description)

    def __enter__(self) -> "DeviceHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"DeviceHandle({self.description}, {self._state.value})"


def _transport_error(what: str, error: usb.core.USBError) -> TransportError:
    if isinstance(error, usb.core.USBTimeoutError):
        return TransportError(f"{what} timed out", cause=error)
    return TransportError(f"{what} failed", cause=error)


# =============================================================================
# Discovery
# =============================================================================

def describe_device(device: usb.core.Device) -> str:
    """Format a device's identity and bus position for log messages."""
    return (
        f"{device.idVendor:04x}:{device.idProduct:04x} "
        f"(bus {device.bus}, address {device.address})"
    )


def find_devices(vendor_id: int, product_id: int, backend=None) -> list:
    """
    List attached devices matching an exact vendor/product pair.

    Raises:
        TransportError: If no pyusb backend (libusb) is available or the
            device list cannot be read.
    """
    try:
        devices = list(
            usb.core.find(
                find_all=True,
                idVendor=vendor_id,
                idProduct=product_id,
                backend=backend,
            )
        )
    except usb.core.NoBackendError as e:
        raise TransportError(
            "no USB backend available (is libusb installed?)",
            cause=e,
            stage="discovery",
        ) from e
    except usb.core.USBError as e:
        raise TransportError("device enumeration failed", cause=e, stage="discovery") from e

    for device in devices:
        logger.debug("Found candidate %s", describe_device(device))
    return devices


def _prepare(device: usb.core.Device) -> None:
    """Make sure the device is configured so bulk endpoints are usable."""
    try:
        device.get_active_configuration()
    except usb.core.USBError:
        device.set_configuration()


def open_device(
    vendor_id: int,
    product_id: int,
    strict: bool = False,
    backend=None,
) -> DeviceHandle:
    """
    Find and open the device matching a vendor/product pair.

    When several devices match, the first one that opens wins and a
    warning is logged; with ``strict`` the call fails instead. Devices
    that cannot be opened are skipped.

    Raises:
        DeviceNotFoundError: If no matching device could be opened.
        AmbiguousDeviceError: If strict and more than one device matches.
        TransportError: If no USB backend is available.
    """
    candidates = find_devices(vendor_id, product_id, backend=backend)

    if len(candidates) > 1:
        if strict:
            raise AmbiguousDeviceError(vendor_id, product_id, len(candidates))
        logger.warning(
            "%d devices with id %04x:%04x attached; using the first one",
            len(candidates), vendor_id, product_id,
        )

    for device in candidates:
        try:
            _prepare(device)
        except usb.core.USBError as e:
            logger.debug("Skipping %s: %s", describe_device(device), e)
            continue
        return DeviceHandle(device)

    raise DeviceNotFoundError(vendor_id, product_id)


def wait_for_device(
    vendor_id: int,
    product_id: int,
    timeout: float,
    poll_interval: float = POLL_INTERVAL,
    backend=None,
) -> bool:
    """
    Poll until a device with the given identity appears.

    Used after stage 2 to confirm the adapter re-enumerated under its
    operational product id.

    Returns:
        True if the device appeared within ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout
    while True:
        if find_devices(vendor_id, product_id, backend=backend):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(poll_interval)
