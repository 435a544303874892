"""
Upload Orchestration
====================

Sequences one complete firmware upload:

    DISCOVERING -> STAGE1 -> STAGE2 -> DONE
         \\            \\        \\
          +------------+--------+--> FAILED

Transitions only move forward and nothing is retried. The first error
ends the session; run() reports it as an UploadResult rather than
raising, so callers get the failing stage alongside the error. The
device handle is released on every path out of run().
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from hsplus_loader.config import LoaderConfig
from hsplus_loader.errors import HsplusError, UploadError
from hsplus_loader.usb.device import open_device, wait_for_device
from hsplus_loader.usb.image import FirmwareImage
from hsplus_loader.usb.stage1 import Stage1Loader
from hsplus_loader.usb.stage2 import Stage2Loader
from hsplus_loader.usb.transfers import ProgressCallback

logger = logging.getLogger(__name__)


class UploadState(Enum):
    DISCOVERING = "discovery"
    STAGE1 = "stage 1"
    STAGE2 = "stage 2"
    DONE = "done"
    FAILED = "failed"


# Forward order of the non-terminal states
_ORDER = (UploadState.DISCOVERING, UploadState.STAGE1, UploadState.STAGE2, UploadState.DONE)


@dataclass
class UploadResult:
    """
    Outcome of one upload attempt.

    Attributes:
        state: DONE on success, FAILED otherwise
        failed_stage: State that was active when the error occurred
        error: The error that ended the session
        stage1_requests: Stage-1 payload requests issued
        stage2_writes: Stage-2 bulk writes issued
    """

    state: UploadState
    failed_stage: Optional[UploadState] = None
    error: Optional[HsplusError] = None
    stage1_requests: int = 0
    stage2_writes: int = 0

    @property
    def ok(self) -> bool:
        return self.state is UploadState.DONE

    def raise_for_error(self) -> None:
        """Re-raise the error that ended the session, if any."""
        if self.error is not None:
            raise self.error

    def describe(self) -> str:
        if self.ok:
            return "firmware upload complete"
        return f"{self.failed_stage.value} failed: {self.error}"


class FirmwareUploader:
    """
    Runs discovery, stage 1 and stage 2 against a single adapter.

    Example:
        uploader = FirmwareUploader(LoaderConfig.from_env())
        result = uploader.run("stage1.bin", "stage2.bin")
        if not result.ok:
            print(result.describe())

    Args:
        config: Loader settings (defaults match the adapter's protocol)
        progress: Called with (bytes_done, total) during each payload upload
        on_stage: Called with the new state on every transition
        opener: Discovery function returning a handle; defaults to
            open_device and is replaced in tests
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        progress: Optional[ProgressCallback] = None,
        on_stage: Optional[Callable[[UploadState], None]] = None,
        opener: Callable = open_device,
    ):
        self.config = config or LoaderConfig()
        self.progress = progress
        self.on_stage = on_stage
        self.opener = opener
        self.state = UploadState.DISCOVERING

    def _advance(self, new_state: UploadState) -> None:
        if new_state is not UploadState.FAILED:
            if _ORDER.index(new_state) <= _ORDER.index(self.state):
                raise RuntimeError(f"Invalid transition {self.state.name} -> {new_state.name}")
        logger.debug("Upload state %s -> %s", self.state.name, new_state.name)
        self.state = new_state
        if self.on_stage:
            self.on_stage(new_state)

    def run(
        self,
        stage1_path: Union[str, Path],
        stage2_path: Union[str, Path],
    ) -> UploadResult:
        """
        Perform one upload attempt.

        Returns:
            UploadResult with state DONE, or FAILED plus the stage and error.
        """
        self.state = UploadState.DISCOVERING
        result = UploadResult(state=UploadState.DISCOVERING)
        config = self.config

        try:
            with self.opener(
                config.vendor_id,
                config.uninitialized_product_id,
                strict=config.strict,
            ) as handle:
                logger.info("Found uninitialized GPIB-USB-HS+ %s", handle.description)

                self._advance(UploadState.STAGE1)
                with FirmwareImage.open(stage1_path) as image:
                    loader = Stage1Loader(handle, config, self.progress)
                    result.stage1_requests = loader.load(image)

                self._advance(UploadState.STAGE2)
                with FirmwareImage.open(stage2_path) as image:
                    loader = Stage2Loader(handle, config, self.progress)
                    result.stage2_writes = loader.load(image)

        except UploadError as e:
            failed_stage = self.state
            e.tag(failed_stage.value)
            logger.debug("%s failed: %s", failed_stage.value, e)
            self._advance(UploadState.FAILED)
            result.state = UploadState.FAILED
            result.failed_stage = failed_stage
            result.error = e
            return result

        self._advance(UploadState.DONE)
        result.state = UploadState.DONE
        return result

    def wait_for_operational(self, timeout: float) -> bool:
        """
        Wait for the adapter to reappear under its operational identity.

        Returns:
            True if it appeared within ``timeout`` seconds.
        """
        config = self.config
        logger.info(
            "Waiting up to %.1f s for %04x:%04x to appear",
            timeout, config.vendor_id, config.operational_product_id,
        )
        return wait_for_device(config.vendor_id, config.operational_product_id, timeout)
