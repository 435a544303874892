"""
Checked Transfers Shared by the Stage Loaders
=============================================

Every request in the upload sequence must move exactly the number of
bytes asked for. StageLoader wraps a Transport with that check so each
stage only describes its own request sequence.
"""

import logging
from typing import Callable, Iterator, Optional

from hsplus_loader.config import LoaderConfig
from hsplus_loader.errors import ShortTransferError, SourceReadError, UploadError
from hsplus_loader.usb.device import ControlRequest, Transport
from hsplus_loader.usb.image import FirmwareImage

logger = logging.getLogger(__name__)

# Type alias for progress callback (bytes_done, total)
ProgressCallback = Callable[[int, int], None]


class StageLoader:
    """
    Base class for the stage-1 and stage-2 loaders.

    Subclasses set STAGE, the name used in log lines and error messages.
    """

    STAGE = "upload"

    def __init__(
        self,
        transport: Transport,
        config: Optional[LoaderConfig] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.transport = transport
        self.config = config or LoaderConfig()
        self.progress = progress

    @property
    def timeout_ms(self) -> int:
        return self.config.timeout_ms

    def _control_in(self, request: ControlRequest, step: str) -> bytes:
        data = self._tagged(step, self.transport.control_in, request, self.timeout_ms)
        if len(data) < request.length:
            raise ShortTransferError(request.length, len(data), stage=self.STAGE, step=step)
        return data

    def _control_out(self, request: ControlRequest, step: str) -> None:
        sent = self._tagged(step, self.transport.control_out, request, self.timeout_ms)
        if sent < len(request.data):
            raise ShortTransferError(len(request.data), sent, stage=self.STAGE, step=step)

    def _bulk_write(self, data: bytes, step: str) -> None:
        sent = self._tagged(
            step, self.transport.bulk_write,
            self.config.bulk_out_endpoint, data, self.timeout_ms,
        )
        if sent < len(data):
            raise ShortTransferError(len(data), sent, stage=self.STAGE, step=step)

    def _bulk_read(self, length: int, step: str) -> bytes:
        data = self._tagged(
            step, self.transport.bulk_read,
            self.config.bulk_in_endpoint, length, self.timeout_ms,
        )
        if len(data) < length:
            raise ShortTransferError(length, len(data), stage=self.STAGE, step=step)
        return data

    def _tagged(self, step: str, call, *args):
        """Run a transport call, stamping stage and step on errors that lack them."""
        try:
            return call(*args)
        except UploadError as e:
            e.tag(self.STAGE, step)
            raise

    def _chunks(self, image: FirmwareImage, max_size: int) -> Iterator[bytes]:
        """Iterate over an image, stamping this stage on read errors."""
        chunks = image.chunks(max_size)
        while True:
            try:
                chunk = next(chunks)
            except StopIteration:
                return
            except SourceReadError as e:
                e.tag(self.STAGE)
                raise
            yield chunk

    def _report(self, done: int, total: int) -> None:
        if self.progress:
            self.progress(done, total)
