"""
hsload - GPIB-USB-HS+ Firmware Upload Command
=============================================

Uploads the two firmware stages to a factory-default NI GPIB-USB-HS+
adapter (USB id 3923:761E). After stage 2 the adapter disconnects and
comes back as 3923:7618, ready for the GPIB driver.

Usage Examples
--------------
Upload both stages:
    $ hsload stage1.bin stage2.bin

Upload and wait for the adapter to come back:
    $ hsload --wait 10 stage1.bin stage2.bin

Refuse to guess when two uninitialized adapters are plugged in:
    $ hsload --strict stage1.bin stage2.bin

Hardware Setup
--------------
On Linux the user needs write access to the USB device node. A udev
rule matching ATTRS{idVendor}=="3923" with a suitable GROUP or MODE is
the usual way to grant it.

Environment
-----------
HSPLUS_TIMEOUT_MS, HSPLUS_BULK_OUT_EP, HSPLUS_BULK_IN_EP and
HSPLUS_STRICT override the defaults; command-line options win over
the environment.

Exit Codes
----------
0 - Success
1 - Device, protocol, transport or image error
2 - Invalid arguments or configuration error
3 - Internal error
"""

import logging
from pathlib import Path
from typing import Optional

import click

from hsplus_loader import __version__
from hsplus_loader.cli.errors import handle_cli_exception
from hsplus_loader.config import LoaderConfig
from hsplus_loader.errors import HsplusError
from hsplus_loader.usb import FirmwareUploader, UploadState

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for image uploads."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False, err=True)
    if current >= total:
        click.echo(err=True)


def announce_stage(state: UploadState) -> None:
    if state is UploadState.STAGE1:
        click.echo("Stage 1: uploading bootstrap image...", err=True)
    elif state is UploadState.STAGE2:
        click.echo("Stage 2: uploading firmware image...", err=True)


@click.command()
@click.argument(
    "stage1_image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.argument(
    "stage2_image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--strict",
    is_flag=True,
    help="Fail if more than one uninitialized adapter is attached",
)
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Per-transfer timeout in milliseconds (default: 3000)",
)
@click.option(
    "--wait",
    type=click.FloatRange(min=0),
    default=0.0,
    show_default=True,
    help="Seconds to wait for the adapter to re-enumerate after upload",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Do not draw progress bars",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="hsload")
def main(
    stage1_image: Path,
    stage2_image: Path,
    strict: bool,
    timeout: Optional[int],
    wait: float,
    no_progress: bool,
    verbose: bool,
) -> None:
    """
    Load firmware into an uninitialized NI GPIB-USB-HS+ adapter.

    STAGE1_IMAGE is the bootstrap image sent over control transfers.
    STAGE2_IMAGE is the main firmware sent over bulk transfers.

    Example:
        hsload stage1.bin stage2.bin
    """
    setup_logging(verbose)

    try:
        config = LoaderConfig.from_env().with_overrides(strict=strict or None, timeout_ms=timeout)
    except HsplusError as e:
        handle_cli_exception(e, verbose)

    uploader = FirmwareUploader(
        config,
        progress=None if no_progress else progress_bar,
        on_stage=announce_stage,
    )

    try:
        result = uploader.run(stage1_image, stage2_image)
    except Exception as e:
        handle_cli_exception(e, verbose)

    if not result.ok:
        handle_cli_exception(result.error, verbose)

    click.echo("Firmware upload complete.", err=True)

    if wait > 0:
        try:
            appeared = uploader.wait_for_operational(wait)
        except HsplusError as e:
            logger.warning("Could not check for the re-enumerated adapter: %s", e)
            return
        if appeared:
            click.echo(
                f"Adapter re-enumerated as {config.vendor_id:04x}:{config.operational_product_id:04x}.",
                err=True,
            )
        else:
            logger.warning(
                "Adapter did not reappear as %04x:%04x within %.1f s",
                config.vendor_id, config.operational_product_id, wait,
            )


if __name__ == "__main__":
    main()
