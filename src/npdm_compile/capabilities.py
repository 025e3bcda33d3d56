"""Kernel capability encoding.

Each capability becomes one or more 32-bit words. The low bits of a word
hold a unary type tag: N consecutive one-bits terminated by a zero bit.
Payload fields sit above the terminating zero.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, Union

from npdm_core.codec import fits
from npdm_core.errors import InvalidDebugFlags, InvalidValue, LayoutInvariantError
from npdm_core.protocol import (
    KAC_TAG_DEBUG_FLAGS,
    KAC_TAG_ENABLE_INTERRUPTS,
    KAC_TAG_ENABLE_SYSTEM_CALLS,
    KAC_TAG_HANDLE_TABLE_SIZE,
    KAC_TAG_IO_MEMORY_MAP,
    KAC_TAG_KERNEL_VERSION,
    KAC_TAG_MEMORY_MAP,
    KAC_TAG_MISC_PARAMS,
    KAC_TAG_THREAD_INFO,
    MIN_KERNEL_VERSION,
    PROGRAM_TYPES,
    SYSCALL_BUCKET_COUNT,
    SYSCALLS_PER_BUCKET,
)

from .svc import resolve_syscall


def tag(width: int) -> int:
    """Unary type tag: `width` one-bits, with bit `width` left clear."""
    return (1 << width) - 1


def set_bits(word: int, lo: int, hi: int, value: int) -> int:
    """Place value into bits [lo, hi) of word."""
    if not fits(value, hi - lo):
        raise LayoutInvariantError(f"FATAL: value {value:#x} does not fit bits {lo}..{hi}")
    mask = ((1 << (hi - lo)) - 1) << lo
    return (word & ~mask) | (value << lo)


def get_bits(word: int, lo: int, hi: int) -> int:
    return (word >> lo) & ((1 << (hi - lo)) - 1)


def set_bit(word: int, bit: int, flag: bool) -> int:
    return word | (1 << bit) if flag else word & ~(1 << bit)


# ---------------------------------------------------------------------------
# Per-field variants. Parse order for polymorphic fields is fixed:
# numeric first, then the string form.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgramTypeValue:
    value: int

    def code(self) -> int | None:
        return self.value if 0 <= self.value <= 2 else None


@dataclass(frozen=True)
class ProgramTypeName:
    name: str

    def code(self) -> int | None:
        return PROGRAM_TYPES.get(self.name.lower())


ProgramType = Union[ProgramTypeValue, ProgramTypeName]


@dataclass(frozen=True)
class KernelVersionValue:
    value: int

    def packed(self) -> int | None:
        if self.value < MIN_KERNEL_VERSION or not fits(self.value, 16):
            return None
        return self.value


@dataclass(frozen=True)
class KernelVersionString:
    version: str

    def packed(self) -> int | None:
        parts = self.version.split(".")
        if len(parts) != 2 or not all(p.isascii() and p.isdigit() for p in parts):
            return None
        major, minor = int(parts[0]), int(parts[1])
        if not fits(major, 12) or not fits(minor, 4):
            return None
        return set_bits(set_bits(0, 0, 4, minor), 4, 16, major)


KernelVersion = Union[KernelVersionValue, KernelVersionString]


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThreadInfo:
    highest_priority: int
    lowest_priority: int
    min_core_number: int
    max_core_number: int

    def encode(self) -> list[int]:
        if not (fits(self.highest_priority, 6) and fits(self.lowest_priority, 6)
                and fits(self.min_core_number, 8) and fits(self.max_core_number, 8)):
            raise InvalidValue("thread_info")
        word = tag(KAC_TAG_THREAD_INFO)
        word = set_bits(word, 4, 10, self.highest_priority)
        word = set_bits(word, 10, 16, self.lowest_priority)
        word = set_bits(word, 16, 24, self.min_core_number)
        word = set_bits(word, 24, 32, self.max_core_number)
        return [word]


def encode_syscalls(svc_ids: Iterable[int]) -> list[int]:
    """Pack syscall ids into bucket masks; buckets with no call are dropped."""
    masks = [set_bits(tag(KAC_TAG_ENABLE_SYSTEM_CALLS), 29, 32, idx) for idx in range(SYSCALL_BUCKET_COUNT)]
    used = [False] * SYSCALL_BUCKET_COUNT
    for svc_id in svc_ids:
        bucket = svc_id // SYSCALLS_PER_BUCKET
        masks[bucket] = set_bit(masks[bucket], (svc_id % SYSCALLS_PER_BUCKET) + 5, True)
        used[bucket] = True
    return [mask for mask, hit in zip(masks, used) if hit]


@dataclass(frozen=True)
class EnableSystemCalls:
    # Each entry is an integer, a '0x' hex string, or a call name.
    calls: tuple[Union[int, str], ...]

    def encode(self) -> list[int]:
        return encode_syscalls(resolve_syscall(c) for c in self.calls)


@dataclass(frozen=True)
class MemoryMap:
    address: int
    size: int
    is_ro: bool
    is_io: bool

    def encode(self) -> list[int]:
        if not (fits(self.address, 24) and fits(self.size, 24)):
            raise InvalidValue("memory_map")
        first = set_bit(set_bits(tag(KAC_TAG_MEMORY_MAP), 7, 31, self.address), 31, self.is_ro)
        second = set_bit(set_bits(tag(KAC_TAG_MEMORY_MAP), 7, 31, self.size), 31, self.is_io)
        return [first, second]


@dataclass(frozen=True)
class IoMemoryMap:
    page: int

    def encode(self) -> list[int]:
        if not fits(self.page, 24):
            raise InvalidValue("io_memory_map")
        return [set_bits(tag(KAC_TAG_IO_MEMORY_MAP), 8, 32, self.page)]


@dataclass(frozen=True)
class EnableInterrupts:
    first: int
    second: int

    def encode(self) -> list[int]:
        if not (fits(self.first, 10) and fits(self.second, 10)):
            raise InvalidValue("enable_interrupts")
        word = set_bits(tag(KAC_TAG_ENABLE_INTERRUPTS), 12, 22, self.first)
        return [set_bits(word, 22, 32, self.second)]


@dataclass(frozen=True)
class MiscParams:
    program_type: ProgramType

    def encode(self) -> list[int]:
        code = self.program_type.code()
        if code is None:
            raise InvalidValue("misc_params (program_type)")
        return [set_bits(tag(KAC_TAG_MISC_PARAMS), 14, 17, code)]


@dataclass(frozen=True)
class KernelVersionCap:
    version: KernelVersion

    def encode(self) -> list[int]:
        packed = self.version.packed()
        if packed is None:
            raise InvalidValue("kernel_version")
        return [set_bits(tag(KAC_TAG_KERNEL_VERSION), 15, 32, packed)]


@dataclass(frozen=True)
class HandleTableSize:
    size: int

    def encode(self) -> list[int]:
        if not fits(self.size, 10):
            raise InvalidValue("handle_table_size")
        return [set_bits(tag(KAC_TAG_HANDLE_TABLE_SIZE), 16, 26, self.size)]


@dataclass(frozen=True)
class DebugFlags:
    allow_debug: bool = False
    force_debug_prod: bool = False
    force_debug: bool = False

    def encode(self) -> list[int]:
        if self.allow_debug + self.force_debug_prod + self.force_debug > 1:
            raise InvalidDebugFlags()
        word = set_bit(tag(KAC_TAG_DEBUG_FLAGS), 17, self.allow_debug)
        word = set_bit(word, 18, self.force_debug_prod)
        return [set_bit(word, 19, self.force_debug)]


KernelCapability = Union[
    ThreadInfo,
    EnableSystemCalls,
    MemoryMap,
    IoMemoryMap,
    EnableInterrupts,
    MiscParams,
    KernelVersionCap,
    HandleTableSize,
    DebugFlags,
]


def encode_all(capabilities: Iterable[KernelCapability]) -> list[int]:
    """Encode capabilities in descriptor order and concatenate their words."""
    words: list[int] = []
    for cap in capabilities:
        words.extend(cap.encode())
    return words


def to_bytes(words: Iterable[int]) -> bytes:
    words = list(words)
    return struct.pack(f"<{len(words)}I", *words)
