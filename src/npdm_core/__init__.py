"""NPDM Core - Shared protocol layout, primitive codec and error taxonomy."""
from .codec import align, add_padding, fixed_string, pack_struct, parse_hex_or_num, sha256
from .errors import (
    InvalidDebugFlags,
    InvalidValue,
    KeyLoadError,
    LayoutInvariantError,
    MissingField,
    NpdmError,
)

__all__ = [
    "align",
    "add_padding",
    "fixed_string",
    "pack_struct",
    "parse_hex_or_num",
    "sha256",
    "InvalidDebugFlags",
    "InvalidValue",
    "KeyLoadError",
    "LayoutInvariantError",
    "MissingField",
    "NpdmError",
]
