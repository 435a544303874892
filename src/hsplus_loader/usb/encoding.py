"""
Little-Endian Integer Encoding
==============================

The adapter's vendor requests carry lengths and identities as unsigned
little-endian integers: the product id comes back as 16 bits, image
lengths go out as 32 bits.

Usage
-----
    from hsplus_loader.usb.encoding import u32_le, from_little_endian

    u32_le(5000)                          # b'\\x88\\x13\\x00\\x00'
    from_little_endian(b'\\x1e\\x76')     # 0x761E
"""

from typing import Final

# Bit widths used on the wire
U16_BITS: Final[int] = 16
U32_BITS: Final[int] = 32


def to_little_endian(value: int, width_bits: int) -> bytes:
    """
    Encode an unsigned integer least-significant byte first.

    The value is truncated to the given width; no sign handling and no
    padding beyond ``width_bits // 8`` bytes.

    Args:
        value: Unsigned integer to encode.
        width_bits: Field width in bits (a positive multiple of 8).

    Returns:
        Exactly ``width_bits // 8`` bytes.

    Raises:
        ValueError: If width_bits is not a positive multiple of 8.

    Example:
        >>> to_little_endian(0x761E, 16)
        b'\\x1ev'
    """
    if width_bits <= 0 or width_bits % 8:
        raise ValueError(f"Width must be a positive multiple of 8, got {width_bits}")

    out = bytearray()
    for _ in range(width_bits // 8):
        out.append(value & 0xFF)
        value >>= 8
    return bytes(out)


def from_little_endian(data: bytes) -> int:
    """
    Decode an unsigned little-endian integer of any length.

    Example:
        >>> hex(from_little_endian(bytes([0x1E, 0x76])))
        '0x761e'
    """
    value = 0
    for shift, byte in enumerate(data):
        value |= byte << (8 * shift)
    return value


def u16_le(value: int) -> bytes:
    """Encode a 16-bit value (2 bytes)."""
    return to_little_endian(value, U16_BITS)


def u32_le(value: int) -> bytes:
    """Encode a 32-bit value (4 bytes), as used by the length announcements."""
    return to_little_endian(value, U32_BITS)
