"""
Stage 1: Bootstrap Upload over Control Transfers
================================================

The factory-default adapter accepts a small bootstrap image through
vendor control requests only.

Protocol flow
-------------
1. IN  0x90           -> 2 bytes, little-endian product id; must be 0x761E
2. OUT 0x91 value=2   <- image length, 4 bytes little-endian
3. OUT 0x92           <- image data, up to 4096 bytes per request
4. IN  0x93           -> 4 bytes; all zero means the image was accepted

Every request must move its full length; there are no retries.
"""

import logging
from typing import Final

from hsplus_loader.errors import IdentityMismatchError, UnexpectedResponseError
from hsplus_loader.usb.device import ControlRequest
from hsplus_loader.usb.encoding import from_little_endian, u32_le
from hsplus_loader.usb.image import FirmwareImage
from hsplus_loader.usb.transfers import StageLoader

logger = logging.getLogger(__name__)

# =============================================================================
# Stage 1 Request Codes
# =============================================================================

REQ_IDENTITY: Final[int] = 0x90
REQ_LENGTH: Final[int] = 0x91
REQ_DATA: Final[int] = 0x92
REQ_STATUS: Final[int] = 0x93

LENGTH_VALUE: Final[int] = 0x02

IDENTITY_LENGTH: Final[int] = 2
STATUS_LENGTH: Final[int] = 4
STATUS_OK: Final[bytes] = bytes(STATUS_LENGTH)


class Stage1Loader(StageLoader):
    """
    Uploads the stage-1 bootstrap image.

    Example:
        with FirmwareImage.open("stage1.bin") as image:
            Stage1Loader(handle).load(image)
    """

    STAGE = "stage 1"

    def load(self, image: FirmwareImage) -> int:
        """
        Run the full stage-1 sequence.

        Returns:
            Number of payload requests issued.

        Raises:
            IdentityMismatchError: Device is not an uninitialized adapter.
            ShortTransferError: A request moved fewer bytes than required.
            UnexpectedResponseError: Completion status was not all zero.
            SourceReadError: The image ended early.
            TransportError: USB failure or timeout.
        """
        self.check_identity()
        logger.info("Stage 1 image size is %d bytes", image.length)
        self.announce_length(image.length)
        requests = self.send_image(image)
        self.check_status()
        logger.info("Stage 1 complete (%d requests)", requests)
        return requests

    def check_identity(self) -> int:
        """Read the product id the device reports and verify it."""
        data = self._control_in(
            ControlRequest.in_(REQ_IDENTITY, IDENTITY_LENGTH), "identity check"
        )
        identity = from_little_endian(data[:IDENTITY_LENGTH])
        expected = self.config.uninitialized_product_id
        if identity != expected:
            raise IdentityMismatchError(expected, identity, stage=self.STAGE)
        logger.debug("Device reports identity 0x%04x", identity)
        return identity

    def announce_length(self, length: int) -> None:
        self._control_out(
            ControlRequest.out(REQ_LENGTH, value=LENGTH_VALUE, data=u32_le(length)),
            "length announcement",
        )

    def send_image(self, image: FirmwareImage) -> int:
        """Send the image in control-request sized chunks."""
        sent = 0
        count = 0
        self._report(0, image.length)
        for chunk in self._chunks(image, self.config.stage1_chunk_size):
            count += 1
            self._control_out(ControlRequest.out(REQ_DATA, data=chunk), f"payload chunk {count}")
            sent += len(chunk)
            self._report(sent, image.length)
        return count

    def check_status(self) -> None:
        """The device answers all zeros once it has accepted the image."""
        status = self._control_in(
            ControlRequest.in_(REQ_STATUS, STATUS_LENGTH), "completion check"
        )
        status = status[:STATUS_LENGTH]
        if status != STATUS_OK:
            raise UnexpectedResponseError(
                "completion check", STATUS_OK, status, stage=self.STAGE
            )
