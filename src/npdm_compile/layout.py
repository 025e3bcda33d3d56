"""Section layout for the ACID and ACI0 containers.

Capability and service tables are encoded exactly once. Those same bytes
size every header field and are later written, so the sizing pass and the
writing pass cannot diverge.
"""
from __future__ import annotations

from dataclasses import dataclass

from npdm_core.errors import LayoutInvariantError
from npdm_core.protocol import (
    ACI0_FAC_LEN,
    ACI0_LEN,
    ACID_FAC_LEN,
    ACID_LEN,
    KAC_WORD_LEN,
    META_LEN,
    SIGNATURE_LEN,
)

from .capabilities import encode_all, to_bytes
from .descriptor import ProgramDescriptor
from .services import encode_services, encoded_len


@dataclass(frozen=True)
class EncodedTables:
    sac: bytes
    kac: bytes
    word_count: int


def encode_tables(desc: ProgramDescriptor) -> EncodedTables:
    accessed, hosted = desc.service_lists()
    sac = encode_services(accessed, hosted)
    if len(sac) != encoded_len(accessed) + encoded_len(hosted):
        raise LayoutInvariantError("FATAL: service table size does not match its entries")
    words = encode_all(desc.kernel_capabilities)
    kac = to_bytes(words)
    if len(kac) != KAC_WORD_LEN * len(words):
        raise LayoutInvariantError("FATAL: capability table size does not match its words")
    return EncodedTables(sac=sac, kac=kac, word_count=len(words))


@dataclass(frozen=True)
class Section:
    name: str
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass(frozen=True)
class SectionLayout:
    """Sections of one container; offsets are relative to the container start."""

    container: str
    sections: tuple[Section, ...]

    @property
    def size(self) -> int:
        return sum(s.size for s in self.sections)

    def __getitem__(self, name: str) -> Section:
        for s in self.sections:
            if s.name == name:
                return s
        raise KeyError(name)

    def check(self) -> None:
        cur = 0
        for s in self.sections:
            if s.offset != cur:
                raise LayoutInvariantError(
                    f"FATAL: {self.container}.{s.name} at {s.offset:#x}, expected {cur:#x}"
                )
            cur = s.end


def _stack(container: str, sizes: list[tuple[str, int]]) -> SectionLayout:
    sections = []
    cur = 0
    for name, size in sizes:
        sections.append(Section(name, cur, size))
        cur += size
    layout = SectionLayout(container, tuple(sections))
    layout.check()
    return layout


def declaration_layout(tables: EncodedTables) -> SectionLayout:
    return _stack("acid", [
        ("signature", SIGNATURE_LEN),
        ("header", ACID_LEN),
        ("fs_access", ACID_FAC_LEN),
        ("service_access", len(tables.sac)),
        ("kernel_access", len(tables.kac)),
    ])


def instance_layout(tables: EncodedTables) -> SectionLayout:
    return _stack("aci0", [
        ("header", ACI0_LEN),
        ("fs_access", ACI0_FAC_LEN),
        ("service_access", len(tables.sac)),
        ("kernel_access", len(tables.kac)),
    ])


@dataclass(frozen=True)
class FileLayout:
    """Absolute placement of the two containers behind the META header."""

    acid_offset: int
    acid_size: int
    aci0_offset: int
    aci0_size: int

    @property
    def total(self) -> int:
        return self.aci0_offset + self.aci0_size


def file_layout(acid_size: int, aci0: SectionLayout) -> FileLayout:
    """acid_size is the computed size, or the length of a reused ACID file."""
    return FileLayout(
        acid_offset=META_LEN,
        acid_size=acid_size,
        aci0_offset=META_LEN + acid_size,
        aci0_size=aci0.size,
    )
