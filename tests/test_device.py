"""
Tests for the pyusb device layer (with mocked pyusb devices).
"""

import logging
from unittest.mock import Mock, patch

import pytest
import usb.core

from hsplus_loader.errors import (
    AmbiguousDeviceError,
    DeviceNotFoundError,
    HandleInvalidatedError,
    TransportError,
)
from hsplus_loader.usb.device import (
    ControlRequest,
    DeviceHandle,
    Direction,
    HandleState,
    describe_device,
    find_devices,
    open_device,
    wait_for_device,
)


def mock_usb_device(address: int = 5, product_id: int = 0x761E) -> Mock:
    device = Mock()
    device.idVendor = 0x3923
    device.idProduct = product_id
    device.bus = 1
    device.address = address
    return device


class TestControlRequest:
    """Tests for ControlRequest."""

    def test_out_request_type(self):
        """Vendor, device recipient, host to device."""
        request = ControlRequest.out(0x91, value=2, data=b"\x01\x02\x03\x04")
        assert request.direction == Direction.OUT
        assert request.request_type == 0x40
        assert request.size == 4

    def test_in_request_type(self):
        """Vendor, device recipient, device to host."""
        request = ControlRequest.in_(0x90, 2)
        assert request.direction == Direction.IN
        assert request.request_type == 0xC0
        assert request.size == 2

    def test_str(self):
        assert str(ControlRequest.out(0x94, value=0x100)) == "OUT 0x94 (value=0x100, 0 bytes)"


class TestDeviceHandle:
    """Tests for DeviceHandle transfers and lifetime."""

    def test_control_in(self):
        device = mock_usb_device()
        device.ctrl_transfer.return_value = [0x1E, 0x76]
        handle = DeviceHandle(device)

        data = handle.control_in(ControlRequest.in_(0x90, 2), 3000)

        assert data == b"\x1e\x76"
        device.ctrl_transfer.assert_called_once_with(0xC0, 0x90, 0, 0, 2, timeout=3000)

    def test_control_out(self):
        device = mock_usb_device()
        device.ctrl_transfer.return_value = 4
        handle = DeviceHandle(device)

        sent = handle.control_out(ControlRequest.out(0x91, value=2, data=b"abcd"), 3000)

        assert sent == 4
        device.ctrl_transfer.assert_called_once_with(0x40, 0x91, 2, 0, b"abcd", timeout=3000)

    def test_bulk_transfers(self):
        device = mock_usb_device()
        device.write.return_value = 3
        device.read.return_value = [0x0C, 0, 0, 0]
        handle = DeviceHandle(device)

        assert handle.bulk_write(0x02, b"abc", 3000) == 3
        assert handle.bulk_read(0x86, 4, 3000) == b"\x0c\x00\x00\x00"
        device.write.assert_called_once_with(0x02, b"abc", timeout=3000)
        device.read.assert_called_once_with(0x86, 4, timeout=3000)

    def test_usb_error_becomes_transport_error(self):
        device = mock_usb_device()
        device.ctrl_transfer.side_effect = usb.core.USBError("Pipe error", errno=32)
        handle = DeviceHandle(device)

        with pytest.raises(TransportError, match="0x91 failed") as excinfo:
            handle.control_out(ControlRequest.out(0x91, data=b"abcd"), 3000)
        assert isinstance(excinfo.value.cause, usb.core.USBError)

    def test_timeout_reported(self):
        device = mock_usb_device()
        device.read.side_effect = usb.core.USBTimeoutError("Operation timed out", errno=110)
        handle = DeviceHandle(device)

        with pytest.raises(TransportError, match="timed out"):
            handle.bulk_read(0x86, 4, 3000)

    def test_reenumerated_handle_rejects_transfers(self):
        device = mock_usb_device()
        handle = DeviceHandle(device)
        handle.mark_reenumerated()

        assert handle.state is HandleState.REENUMERATED
        assert not handle.is_open
        with pytest.raises(HandleInvalidatedError, match="re-enumerated"):
            handle.control_in(ControlRequest.in_(0x90, 2), 3000)
        with pytest.raises(HandleInvalidatedError):
            handle.bulk_write(0x02, b"x", 3000)
        device.ctrl_transfer.assert_not_called()
        device.write.assert_not_called()

    def test_cannot_reenumerate_twice(self):
        handle = DeviceHandle(mock_usb_device())
        handle.mark_reenumerated()
        with pytest.raises(HandleInvalidatedError):
            handle.mark_reenumerated()

    def test_closed_handle_rejects_transfers(self):
        handle = DeviceHandle(mock_usb_device())
        handle.close()
        with pytest.raises(HandleInvalidatedError, match="closed"):
            handle.bulk_read(0x86, 4, 3000)

    @patch("usb.util.dispose_resources")
    def test_close_releases_once(self, dispose):
        device = mock_usb_device()
        with DeviceHandle(device) as handle:
            pass
        handle.close()

        dispose.assert_called_once_with(device)
        assert handle.state is HandleState.CLOSED

    @patch("usb.util.dispose_resources")
    def test_close_after_reenumeration(self, dispose):
        """Releasing a device that already left the bus is not an error."""
        dispose.side_effect = usb.core.USBError("No such device", errno=19)
        handle = DeviceHandle(mock_usb_device())
        handle.mark_reenumerated()
        handle.close()
        assert handle.state is HandleState.CLOSED


class TestDiscovery:
    """Tests for find_devices() and open_device()."""

    def test_describe_device(self):
        assert describe_device(mock_usb_device()) == "3923:761e (bus 1, address 5)"

    @patch("usb.core.find")
    def test_find_devices_filters_by_identity(self, find):
        find.return_value = iter([mock_usb_device()])
        devices = find_devices(0x3923, 0x761E)
        assert len(devices) == 1
        find.assert_called_once_with(
            find_all=True, idVendor=0x3923, idProduct=0x761E, backend=None
        )

    @patch("usb.core.find")
    def test_no_backend(self, find):
        find.side_effect = usb.core.NoBackendError("No backend available")
        with pytest.raises(TransportError, match="libusb"):
            find_devices(0x3923, 0x761E)

    @patch("usb.core.find")
    def test_enumeration_error(self, find):
        find.side_effect = usb.core.USBError("LIBUSB_ERROR_NO_MEM")
        with pytest.raises(TransportError, match="enumeration failed") as excinfo:
            find_devices(0x3923, 0x761E)
        assert excinfo.value.stage == "discovery"
        assert isinstance(excinfo.value.cause, usb.core.USBError)

    @patch("usb.core.find")
    def test_not_found(self, find):
        find.return_value = iter([])
        with pytest.raises(DeviceNotFoundError) as excinfo:
            open_device(0x3923, 0x761E)
        assert excinfo.value.stage == "discovery"

    @patch("usb.core.find")
    def test_open_single(self, find):
        device = mock_usb_device()
        find.return_value = iter([device])
        handle = open_device(0x3923, 0x761E)
        assert handle.is_open
        device.get_active_configuration.assert_called_once()

    @patch("usb.core.find")
    def test_unconfigured_device_is_configured(self, find):
        device = mock_usb_device()
        device.get_active_configuration.side_effect = usb.core.USBError("not configured")
        find.return_value = iter([device])
        open_device(0x3923, 0x761E)
        device.set_configuration.assert_called_once()

    @patch("usb.core.find")
    def test_first_match_wins(self, find, caplog):
        first, second = mock_usb_device(5), mock_usb_device(6)
        find.return_value = iter([first, second])

        with caplog.at_level(logging.WARNING):
            handle = open_device(0x3923, 0x761E)

        assert handle.description.endswith("address 5)")
        assert "2 devices" in caplog.text

    @patch("usb.core.find")
    def test_strict_rejects_multiple(self, find):
        find.return_value = iter([mock_usb_device(5), mock_usb_device(6)])
        with pytest.raises(AmbiguousDeviceError) as excinfo:
            open_device(0x3923, 0x761E, strict=True)
        assert excinfo.value.count == 2

    @patch("usb.core.find")
    def test_unopenable_device_skipped(self, find):
        broken, good = mock_usb_device(5), mock_usb_device(6)
        broken.get_active_configuration.side_effect = usb.core.USBError("Access denied")
        broken.set_configuration.side_effect = usb.core.USBError("Access denied")
        find.return_value = iter([broken, good])

        handle = open_device(0x3923, 0x761E)
        assert handle.description.endswith("address 6)")

    @patch("usb.core.find")
    def test_all_unopenable(self, find):
        broken = mock_usb_device()
        broken.get_active_configuration.side_effect = usb.core.USBError("Access denied")
        broken.set_configuration.side_effect = usb.core.USBError("Access denied")
        find.return_value = iter([broken])
        with pytest.raises(DeviceNotFoundError):
            open_device(0x3923, 0x761E)


class TestWaitForDevice:
    """Tests for wait_for_device()."""

    @patch("hsplus_loader.usb.device.find_devices")
    def test_appears(self, find):
        find.side_effect = [[], [], [mock_usb_device(product_id=0x7618)]]
        assert wait_for_device(0x3923, 0x7618, timeout=5.0, poll_interval=0)
        assert find.call_count == 3

    @patch("hsplus_loader.usb.device.find_devices")
    def test_times_out(self, find):
        find.return_value = []
        assert not wait_for_device(0x3923, 0x7618, timeout=0, poll_interval=0)

    @patch("usb.core.find")
    def test_enumeration_error(self, find):
        find.side_effect = usb.core.USBError("LIBUSB_ERROR_IO")
        with pytest.raises(TransportError):
            wait_for_device(0x3923, 0x7618, timeout=1.0, poll_interval=0)
