"""
Stage 2: Main Firmware Upload
=============================

Once the bootstrap runs, the adapter takes the main firmware through a
mix of control requests and bulk transfers. The device acknowledges
each checkpoint with a 4-byte pattern on the bulk-in endpoint.

Protocol flow
-------------
1. OUT 0x94 value=0x100        handshake init
2. bulk in  == 0C 00 00 00     ack #1
3. OUT 0xA0                    image length, 4 bytes little-endian
4. bulk in  == 02 00 00 00     ack #2
5. bulk out                    image data, up to 32768 bytes per write
6. bulk in  == 01 00 00 00     ack #3
7. OUT 0xA2                    finalize

After step 7 the adapter disconnects and re-enumerates with product id
0x7618. The handle used for the upload is marked accordingly and must
not be used again.
"""

import logging
from enum import Enum
from typing import Final

from hsplus_loader.errors import UnexpectedResponseError
from hsplus_loader.usb.device import ControlRequest
from hsplus_loader.usb.encoding import u32_le
from hsplus_loader.usb.image import FirmwareImage
from hsplus_loader.usb.transfers import StageLoader

logger = logging.getLogger(__name__)

# =============================================================================
# Stage 2 Request Codes
# =============================================================================

REQ_HANDSHAKE: Final[int] = 0x94
REQ_LENGTH: Final[int] = 0xA0
REQ_FINALIZE: Final[int] = 0xA2

HANDSHAKE_VALUE: Final[int] = 0x100

ACK_LENGTH: Final[int] = 4


class Checkpoint(Enum):
    """Bulk acknowledgements, in protocol order."""

    HANDSHAKE = (1, "handshake accepted", bytes([0x0C, 0x00, 0x00, 0x00]))
    LENGTH = (2, "length accepted", bytes([0x02, 0x00, 0x00, 0x00]))
    PAYLOAD = (3, "payload accepted", bytes([0x01, 0x00, 0x00, 0x00]))

    def __init__(self, number: int, meaning: str, pattern: bytes):
        self.number = number
        self.meaning = meaning
        self.pattern = pattern

    @property
    def label(self) -> str:
        return f"ack #{self.number} ({self.meaning})"


class Stage2Loader(StageLoader):
    """
    Uploads the stage-2 firmware and triggers re-enumeration.

    Example:
        with FirmwareImage.open("stage2.bin") as image:
            Stage2Loader(handle).load(image)
        # handle is now unusable; the adapter reappears as 3923:7618
    """

    STAGE = "stage 2"

    def load(self, image: FirmwareImage) -> int:
        """
        Run the full stage-2 sequence.

        Returns:
            Number of bulk payload writes issued.

        Raises:
            UnexpectedResponseError: An acknowledgement did not match.
            ShortTransferError: A transfer moved fewer bytes than required.
            SourceReadError: The image ended early.
            TransportError: USB failure or timeout.
        """
        logger.info("Stage 2 image size is %d bytes", image.length)
        self._control_out(
            ControlRequest.out(REQ_HANDSHAKE, value=HANDSHAKE_VALUE), "handshake init"
        )
        self.expect_ack(Checkpoint.HANDSHAKE)

        self._control_out(
            ControlRequest.out(REQ_LENGTH, data=u32_le(image.length)), "length announcement"
        )
        self.expect_ack(Checkpoint.LENGTH)

        writes = self.send_image(image)
        self.expect_ack(Checkpoint.PAYLOAD)

        self.finalize()
        logger.info("Stage 2 complete (%d writes)", writes)
        return writes

    def expect_ack(self, checkpoint: Checkpoint) -> None:
        """Read one acknowledgement and compare it with the checkpoint's pattern."""
        data = self._bulk_read(ACK_LENGTH, checkpoint.label)
        data = data[:ACK_LENGTH]
        if data != checkpoint.pattern:
            raise UnexpectedResponseError(
                checkpoint.label, checkpoint.pattern, data, stage=self.STAGE
            )
        logger.debug("Received %s", checkpoint.label)

    def send_image(self, image: FirmwareImage) -> int:
        sent = 0
        count = 0
        self._report(0, image.length)
        for chunk in self._chunks(image, self.config.stage2_chunk_size):
            count += 1
            self._bulk_write(chunk, f"payload write {count}")
            sent += len(chunk)
            logger.debug("Wrote chunk %d (%d bytes, %d/%d)", count, len(chunk), sent, image.length)
            self._report(sent, image.length)
        return count

    def finalize(self) -> None:
        """Send the finalize request and give up the handle."""
        self._control_out(ControlRequest.out(REQ_FINALIZE), "finalize")
        self.transport.mark_reenumerated()
