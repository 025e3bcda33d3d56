"""NPDM primitive codec - fixed-layout packing, digests and padding."""
from __future__ import annotations

import hashlib
import string
import struct
from warnings import warn

from .errors import InvalidValue, LayoutInvariantError


def pack_struct(fmt: str, expected_len: int, *fields) -> bytes:
    """Pack a fixed-layout little-endian record and check its size."""
    data = struct.pack(fmt, *fields)
    if len(data) != expected_len:
        raise LayoutInvariantError(f"FATAL: record {fmt!r} packed to {len(data)} bytes, expected {expected_len}")
    return data


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def align(size: int, alignment: int) -> int:
    """Round size up to a multiple of alignment (a power of two)."""
    mask = alignment - 1
    return (size + mask) & ~mask


def add_padding(data: bytes, alignment: int) -> bytes:
    return data + b"\x00" * (align(len(data), alignment) - len(data))


def fixed_string(text: str, width: int, field: str) -> bytes:
    """Null-padded fixed-width field holding at most width - 1 bytes of text."""
    raw = text.encode("utf-8")
    if len(raw) >= width:
        warn(f"Truncating {field} to 0x{width - 1:x} bytes")
        raw = raw[: width - 1]
    return raw.ljust(width, b"\x00")


def parse_hex_or_num(value: object, field: str) -> int:
    """Accept a bare non-negative integer or a '0x'-prefixed hex string."""
    # bool is an int subclass; JSON true/false is never a number here.
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise InvalidValue(field)
        return value
    if _is_hex_string(value):
        return int(value[2:], 16)
    raise InvalidValue(field)


def is_hex_or_num(value: object) -> bool:
    if isinstance(value, int) and not isinstance(value, bool):
        return value >= 0
    return _is_hex_string(value)


def _is_hex_string(value: object) -> bool:
    if not isinstance(value, str) or not value.startswith("0x"):
        return False
    digits = value[2:]
    return bool(digits) and all(c in string.hexdigits for c in digits)


def fits(value: int, bits: int) -> bool:
    return 0 <= value < (1 << bits)
