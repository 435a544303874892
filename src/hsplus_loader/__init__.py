"""
hsplus-loader - Firmware Loader for the NI GPIB-USB-HS+
=======================================================

A factory-default GPIB-USB-HS+ adapter enumerates as USB 3923:761E and
needs two firmware images uploaded before it becomes a working GPIB
controller (3923:7618). This package implements that upload protocol on
top of pyusb.

Main Components
---------------
- **usb**: device discovery, the stage-1 and stage-2 loaders, and the
  upload orchestrator
- **config**: protocol constants and environment overrides
- **cli**: the ``hsload`` command

Quick Start
-----------
    $ hsload stage1.bin stage2.bin

Or from Python:
    >>> from hsplus_loader import FirmwareUploader
    >>> result = FirmwareUploader().run("stage1.bin", "stage2.bin")
    >>> result.ok
    True
"""

__version__ = "1.0.0"

from hsplus_loader.config import (
    NI_VENDOR_ID,
    OPERATIONAL_PRODUCT_ID,
    UNINITIALIZED_PRODUCT_ID,
    LoaderConfig,
)
from hsplus_loader.errors import (
    AmbiguousDeviceError,
    DeviceNotFoundError,
    HandleInvalidatedError,
    HsplusError,
    IdentityMismatchError,
    LoaderConfigError,
    ShortTransferError,
    SourceReadError,
    TransportError,
    UnexpectedResponseError,
    UploadError,
)
from hsplus_loader.usb import (
    FirmwareImage,
    FirmwareUploader,
    Stage1Loader,
    Stage2Loader,
    UploadResult,
    UploadState,
    open_device,
)

__all__ = [
    "__version__",
    # Configuration
    "NI_VENDOR_ID",
    "UNINITIALIZED_PRODUCT_ID",
    "OPERATIONAL_PRODUCT_ID",
    "LoaderConfig",
    # Exception hierarchy
    "HsplusError",
    "LoaderConfigError",
    "UploadError",
    "DeviceNotFoundError",
    "AmbiguousDeviceError",
    "IdentityMismatchError",
    "ShortTransferError",
    "UnexpectedResponseError",
    "SourceReadError",
    "TransportError",
    "HandleInvalidatedError",
    # Upload
    "FirmwareImage",
    "FirmwareUploader",
    "Stage1Loader",
    "Stage2Loader",
    "UploadResult",
    "UploadState",
    "open_device",
]
