"""
Loader Configuration
====================

USB identities, endpoints and timing used by the firmware loader.
Configuration can come from:
- Default values (defined here, matching the adapter's wire contract)
- Environment variables
- Command-line options (applied by the CLI on top of the above)

Environment variables (all optional):
    HSPLUS_TIMEOUT_MS   Per-transfer timeout in milliseconds
    HSPLUS_BULK_OUT_EP  Bulk-out endpoint address used by stage 2
    HSPLUS_BULK_IN_EP   Bulk-in endpoint address used by stage 2
    HSPLUS_STRICT       Non-zero to reject multiple matching devices

Integer values accept decimal or 0x-prefixed hex.
"""

import os
from dataclasses import dataclass, replace
from typing import Final, Mapping, Optional

from hsplus_loader.errors import LoaderConfigError

# =============================================================================
# Wire Contract Constants
# =============================================================================

NI_VENDOR_ID: Final[int] = 0x3923

# Product id reported by a factory-default adapter
UNINITIALIZED_PRODUCT_ID: Final[int] = 0x761E

# Product id after both firmware stages are loaded
OPERATIONAL_PRODUCT_ID: Final[int] = 0x7618

DEFAULT_TIMEOUT_MS: Final[int] = 3000

STAGE1_CHUNK_SIZE: Final[int] = 0x1000
STAGE2_CHUNK_SIZE: Final[int] = 0x8000

DEFAULT_BULK_OUT_EP: Final[int] = 0x02
DEFAULT_BULK_IN_EP: Final[int] = 0x86


@dataclass(frozen=True)
class LoaderConfig:
    """
    Settings for one upload attempt.

    Attributes:
        vendor_id: USB vendor id of the adapter
        uninitialized_product_id: Product id expected before stage 1
        operational_product_id: Product id after re-enumeration
        timeout_ms: Timeout applied to every transfer
        stage1_chunk_size: Maximum payload per stage-1 control request
        stage2_chunk_size: Maximum payload per stage-2 bulk write
        bulk_out_endpoint: Endpoint for stage-2 payload writes
        bulk_in_endpoint: Endpoint for stage-2 acknowledgement reads
        strict: Fail with AmbiguousDeviceError when several devices match
    """

    vendor_id: int = NI_VENDOR_ID
    uninitialized_product_id: int = UNINITIALIZED_PRODUCT_ID
    operational_product_id: int = OPERATIONAL_PRODUCT_ID
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    stage1_chunk_size: int = STAGE1_CHUNK_SIZE
    stage2_chunk_size: int = STAGE2_CHUNK_SIZE
    bulk_out_endpoint: int = DEFAULT_BULK_OUT_EP
    bulk_in_endpoint: int = DEFAULT_BULK_IN_EP
    strict: bool = False

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise LoaderConfigError(f"Timeout must be positive, got {self.timeout_ms} ms")
        if self.stage1_chunk_size <= 0 or self.stage2_chunk_size <= 0:
            raise LoaderConfigError("Chunk sizes must be positive")
        for endpoint in (self.bulk_out_endpoint, self.bulk_in_endpoint):
            if not 0 <= endpoint <= 0xFF:
                raise LoaderConfigError(f"Endpoint address 0x{endpoint:x} does not fit in one byte")
        if self.bulk_out_endpoint & 0x80:
            raise LoaderConfigError(
                f"Bulk-out endpoint 0x{self.bulk_out_endpoint:02x} has the IN direction bit set"
            )
        if not self.bulk_in_endpoint & 0x80:
            raise LoaderConfigError(
                f"Bulk-in endpoint 0x{self.bulk_in_endpoint:02x} lacks the IN direction bit"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LoaderConfig":
        """
        Create a LoaderConfig from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            LoaderConfigError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        overrides = {}

        if timeout := env.get("HSPLUS_TIMEOUT_MS"):
            overrides["timeout_ms"] = _parse_int("HSPLUS_TIMEOUT_MS", timeout)

        if endpoint := env.get("HSPLUS_BULK_OUT_EP"):
            overrides["bulk_out_endpoint"] = _parse_int("HSPLUS_BULK_OUT_EP", endpoint)

        if endpoint := env.get("HSPLUS_BULK_IN_EP"):
            overrides["bulk_in_endpoint"] = _parse_int("HSPLUS_BULK_IN_EP", endpoint)

        if strict := env.get("HSPLUS_STRICT"):
            overrides["strict"] = bool(_parse_int("HSPLUS_STRICT", strict))

        return cls(**overrides)

    def with_overrides(self, **changes) -> "LoaderConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _parse_int(name: str, text: str) -> int:
    try:
        return int(text, 0)
    except ValueError:
        raise LoaderConfigError(f"{name}: not an integer: {text!r}") from None
