"""
Shared fixtures for the loader tests.

FakeTransport stands in for a GPIB-USB-HS+ on the other end of the USB
cable. It answers the identity and status requests, replays bulk
acknowledgements in order, and records every call so tests can check
the exact request sequence.
"""

from pathlib import Path
from typing import Callable, Optional

import pytest

from hsplus_loader.errors import TransportError
from hsplus_loader.usb.device import ControlRequest
from hsplus_loader.usb.encoding import u16_le
from hsplus_loader.usb.stage2 import Checkpoint


class FakeTransport:
    """Scriptable stand-in for DeviceHandle."""

    def __init__(
        self,
        identity: int = 0x761E,
        status: bytes = bytes(4),
        acks: Optional[list] = None,
    ):
        self.responses = {0x90: u16_le(identity), 0x93: status}
        if acks is None:
            acks = [c.pattern for c in Checkpoint]
        self.acks = list(acks)
        self.calls = []
        self.on_control_out: Optional[Callable[[ControlRequest], int]] = None
        self.on_bulk_write: Optional[Callable[[bytes], int]] = None
        self.reenumerated = False
        self.close_count = 0
        self.description = "fake 3923:761e"

    # Transport protocol

    def control_in(self, request: ControlRequest, timeout_ms: int) -> bytes:
        self.calls.append(("control_in", request.request, request))
        return self.responses[request.request]

    def control_out(self, request: ControlRequest, timeout_ms: int) -> int:
        self.calls.append(("control_out", request.request, request))
        if self.on_control_out:
            return self.on_control_out(request)
        return len(request.data)

    def bulk_write(self, endpoint: int, data: bytes, timeout_ms: int) -> int:
        self.calls.append(("bulk_write", endpoint, bytes(data)))
        if self.on_bulk_write:
            return self.on_bulk_write(data)
        return len(data)

    def bulk_read(self, endpoint: int, length: int, timeout_ms: int) -> bytes:
        self.calls.append(("bulk_read", endpoint, length))
        if not self.acks:
            raise TransportError(f"bulk read from endpoint 0x{endpoint:02x} timed out")
        return self.acks.pop(0)

    def mark_reenumerated(self) -> None:
        self.reenumerated = True

    # Ownership

    def close(self) -> None:
        self.close_count += 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Inspection helpers

    def control_outs(self, code: int) -> list:
        return [c[2] for c in self.calls if c[0] == "control_out" and c[1] == code]

    @property
    def bulk_writes(self) -> list:
        return [c[2] for c in self.calls if c[0] == "bulk_write"]

    @property
    def sequence(self) -> list:
        """Call kinds in order, with request codes for control transfers."""
        out = []
        for call in self.calls:
            if call[0].startswith("control"):
                out.append((call[0], call[1]))
            else:
                out.append((call[0],))
        return out


def image_bytes(size: int) -> bytes:
    """Deterministic, non-repeating-per-chunk test payload."""
    return bytes(i % 251 for i in range(size))


@pytest.fixture
def fake_device() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[[str, int], Path]:
    """Fixture: write an image file of the given size and return its path."""

    def _make(name: str, size: int) -> Path:
        path = tmp_path / name
        path.write_bytes(image_bytes(size))
        return path

    return _make
