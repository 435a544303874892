"""
Firmware Image Sources
======================

Firmware images are read strictly forward, once. The total length is
determined up front, because both stages announce it to the adapter
before any payload is sent, and the adapter has no way to recover from
a length mismatch.

    with FirmwareImage.open("stage1.bin") as image:
        for chunk in image.chunks(4096):
            send(chunk)
"""

import logging
import math
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from hsplus_loader.errors import SourceReadError

logger = logging.getLogger(__name__)

# Length prefixes are 32-bit
MAX_IMAGE_LENGTH = 0xFFFFFFFF


def chunk_count(length: int, max_size: int) -> int:
    """Number of chunks ``iter_chunks`` produces for a source of this length."""
    if max_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {max_size}")
    return math.ceil(length / max_size)


def iter_chunks(
    stream: BinaryIO,
    length: int,
    max_size: int,
    name: Optional[str] = None,
) -> Iterator[bytes]:
    """
    Lazily split the first ``length`` bytes of a stream into chunks.

    Every chunk is ``max_size`` bytes except possibly the last one. The
    generator reads on demand, so nothing is consumed until the caller
    asks for the next chunk.

    Args:
        stream: Binary stream positioned at the start of the data.
        length: Declared number of bytes to produce.
        max_size: Maximum chunk size in bytes.
        name: Source name used in error messages.

    Yields:
        Consecutive byte chunks.

    Raises:
        ValueError: If max_size is not positive.
        SourceReadError: If the stream ends before ``length`` bytes.
    """
    if max_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {max_size}")

    def read(size: int) -> bytes:
        try:
            return stream.read(size)
        except OSError as e:
            raise SourceReadError(f"read failed: {e}", path=name) from e

    remaining = length
    while remaining > 0:
        want = min(max_size, remaining)
        chunk = read(want)
        # A raw stream may return less than asked without being at EOF
        while chunk and len(chunk) < want:
            more = read(want - len(chunk))
            if not more:
                break
            chunk += more

        if len(chunk) < want:
            produced = length - remaining + len(chunk)
            raise SourceReadError(
                f"image ended after {produced} of {length} bytes",
                path=name,
                expected=length,
                actual=produced,
            )

        remaining -= want
        yield chunk


class FirmwareImage:
    """
    A firmware image opened for a single forward read.

    Attributes:
        path: Where the image was read from.
        length: Total size in bytes, fixed when the image is opened.
    """

    def __init__(self, stream: BinaryIO, length: int, path: Union[str, Path] = "<stream>"):
        if length > MAX_IMAGE_LENGTH:
            raise SourceReadError(
                f"image is {length} bytes, larger than a 32-bit length prefix allows",
                path=str(path),
            )
        self._stream = stream
        self.length = length
        self.path = str(path)
        self._consumed = False

    @classmethod
    def open(cls, path: Union[str, Path]) -> "FirmwareImage":
        """
        Open an image file and report its length.

        Raises:
            SourceReadError: If the file cannot be opened or sized.
        """
        path = Path(path)
        try:
            stream = path.open("rb")
        except OSError as e:
            raise SourceReadError(f"cannot open image: {e.strerror or e}", path=str(path)) from e

        try:
            length = path.stat().st_size
        except OSError as e:
            stream.close()
            raise SourceReadError(f"cannot determine image size: {e.strerror or e}", path=str(path)) from e

        logger.debug("Opened image %s (%d bytes)", path, length)
        try:
            return cls(stream, length, path)
        except SourceReadError:
            stream.close()
            raise

    def chunks(self, max_size: int) -> Iterator[bytes]:
        """
        Iterate over the image in chunks of at most ``max_size`` bytes.

        May only be called once; the image is not seekable by contract.
        """
        if self._consumed:
            raise RuntimeError(f"Image {self.path} has already been read")
        self._consumed = True
        return iter_chunks(self._stream, self.length, max_size, name=self.path)

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> "FirmwareImage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FirmwareImage({self.path!r}, length={self.length})"
