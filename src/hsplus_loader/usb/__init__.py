"""
GPIB-USB-HS+ Firmware Upload
============================

This module loads firmware into a National Instruments GPIB-USB-HS+
adapter that is still in its factory-default state. Such an adapter
enumerates as 3923:761E and does nothing useful until two firmware
images are uploaded; it then re-enumerates as 3923:7618.

Module Structure
----------------
- **encoding**: little-endian integer encoding for request payloads
- **image**: firmware image sources and the chunked reader
- **device**: pyusb discovery, DeviceHandle, control/bulk transfers
- **transfers**: StageLoader base with length-checked transfers
- **stage1**: bootstrap upload over control transfers
- **stage2**: main firmware upload with bulk acknowledgements
- **upload**: discovery -> stage 1 -> stage 2 orchestration

Quick Start
-----------
    from hsplus_loader.usb import FirmwareUploader

    result = FirmwareUploader().run("stage1.bin", "stage2.bin")
    if not result.ok:
        print(result.describe())

Driving the stages by hand:

    from hsplus_loader.usb import (
        FirmwareImage, Stage1Loader, Stage2Loader, open_device,
    )

    with open_device(0x3923, 0x761E) as handle:
        with FirmwareImage.open("stage1.bin") as image:
            Stage1Loader(handle).load(image)
        with FirmwareImage.open("stage2.bin") as image:
            Stage2Loader(handle).load(image)

Error Handling
--------------
All upload errors inherit from `UploadError` and are defined in
`hsplus_loader.errors`. Nothing is retried: the first failure ends the
session and the adapter is left in whatever state the last successful
step produced. Unplug and replug it to start over.

Thread Safety
-------------
The upload protocol is strictly sequential and must not run on two
threads against the same device.
"""

from hsplus_loader.usb.encoding import (
    from_little_endian,
    to_little_endian,
    u16_le,
    u32_le,
)

from hsplus_loader.usb.image import (
    MAX_IMAGE_LENGTH,
    FirmwareImage,
    chunk_count,
    iter_chunks,
)

from hsplus_loader.usb.device import (
    ControlRequest,
    DeviceHandle,
    Direction,
    HandleState,
    Transport,
    describe_device,
    find_devices,
    open_device,
    wait_for_device,
)

from hsplus_loader.usb.transfers import ProgressCallback, StageLoader

from hsplus_loader.usb.stage1 import Stage1Loader

from hsplus_loader.usb.stage2 import Checkpoint, Stage2Loader

from hsplus_loader.usb.upload import FirmwareUploader, UploadResult, UploadState

__all__ = [
    # Encoding
    "to_little_endian",
    "from_little_endian",
    "u16_le",
    "u32_le",
    # Images
    "MAX_IMAGE_LENGTH",
    "FirmwareImage",
    "chunk_count",
    "iter_chunks",
    # Device access
    "ControlRequest",
    "DeviceHandle",
    "Direction",
    "HandleState",
    "Transport",
    "describe_device",
    "find_devices",
    "open_device",
    "wait_for_device",
    # Loaders
    "ProgressCallback",
    "StageLoader",
    "Stage1Loader",
    "Stage2Loader",
    "Checkpoint",
    # Orchestration
    "FirmwareUploader",
    "UploadResult",
    "UploadState",
]
