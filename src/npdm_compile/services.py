"""Service access control table encoding."""
from __future__ import annotations

from typing import Sequence

from npdm_core.errors import InvalidValue
from npdm_core.protocol import SAC_HOST_FLAG, SAC_MAX_NAME_LEN


def _entry(name: str, field: str, flags: int) -> bytes:
    try:
        raw = name.encode("ascii")
    except UnicodeEncodeError:
        raise InvalidValue(f"{field}.{name}") from None
    if not 1 <= len(raw) <= SAC_MAX_NAME_LEN:
        raise InvalidValue(f"{field}.{name}")
    return bytes([flags | (len(raw) - 1)]) + raw


def encode_services(accessed: Sequence[str], hosted: Sequence[str]) -> bytes:
    """Length-prefixed table: callable services first, then hosted services."""
    out = bytearray()
    for name in accessed:
        out += _entry(name, "accessed_services", 0)
    for name in hosted:
        out += _entry(name, "hosted_services", SAC_HOST_FLAG)
    return bytes(out)


def encoded_len(names: Sequence[str]) -> int:
    return sum(1 + len(name) for name in names)
