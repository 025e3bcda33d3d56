"""NPDM blob assembly.

Everything that can fail on user input (descriptor validation, key
loading, reading a reused ACID) happens before the first byte reaches the
sink. The sink is then written append-only, once, start to finish.
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from npdm_core.errors import LayoutInvariantError
from npdm_core.protocol import META_LEN

from .descriptor import ProgramDescriptor
from .headers import (
    build_aci0_fs_access,
    build_aci0_header,
    build_acid_fs_access,
    build_acid_header,
    build_meta,
)
from .layout import (
    FileLayout,
    SectionLayout,
    declaration_layout,
    encode_tables,
    file_layout,
    instance_layout,
)
from .signing import load_private_key, placeholder_signature, sign_acid


@dataclass(frozen=True)
class AcidMode:
    """How the ACID container is produced: 'sign', 'empty' or 'use'."""

    kind: str
    path: Path | None = None

    @classmethod
    def sign(cls, pem_path: Path) -> "AcidMode":
        return cls("sign", Path(pem_path))

    @classmethod
    def empty(cls) -> "AcidMode":
        return cls("empty")

    @classmethod
    def use(cls, acid_path: Path) -> "AcidMode":
        return cls("use", Path(acid_path))


@dataclass(frozen=True)
class CompileResult:
    placement: FileLayout
    acid: SectionLayout
    aci0: SectionLayout
    kac_words: int
    signed: bool


def _sections(layout: SectionLayout, parts: dict[str, bytes]) -> list[bytes]:
    """Order section payloads by layout, checking each against its size."""
    out = []
    for s in layout.sections:
        data = parts[s.name]
        if len(data) != s.size:
            raise LayoutInvariantError(
                f"FATAL: {layout.container}.{s.name} is {len(data)} bytes, layout says {s.size}"
            )
        out.append(data)
    return out


def compile_npdm(desc: ProgramDescriptor, sink: BinaryIO, mode: AcidMode) -> CompileResult:
    """Encode desc and write the META + ACID + ACI0 blob to sink."""
    tables = encode_tables(desc)
    acid = declaration_layout(tables)
    aci0 = instance_layout(tables)

    if mode.kind == "use":
        acid_blob = [mode.path.read_bytes()]
        acid_size = len(acid_blob[0])
    elif mode.kind in ("sign", "empty"):
        key = load_private_key(mode.path) if mode.kind == "sign" else None
        body = {
            "header": build_acid_header(desc, acid),
            "fs_access": build_acid_fs_access(desc),
            "service_access": tables.sac,
            "kernel_access": tables.kac,
        }
        unsigned = b"".join(body[s.name] for s in acid.sections if s.name != "signature")
        body["signature"] = sign_acid(key, unsigned) if key is not None else placeholder_signature()
        acid_blob = _sections(acid, body)
        acid_size = acid.size
    else:
        raise ValueError(f"unknown ACID mode {mode.kind!r}")

    placement = file_layout(acid_size, aci0)
    meta = build_meta(desc, placement)
    aci0_blob = _sections(aci0, {
        "header": build_aci0_header(desc, aci0),
        "fs_access": build_aci0_fs_access(desc),
        "service_access": tables.sac,
        "kernel_access": tables.kac,
    })

    if len(meta) != META_LEN or placement.acid_offset != META_LEN:
        raise LayoutInvariantError("FATAL: META header does not match its placement")

    chunks = [meta, *acid_blob, *aci0_blob]
    total = sum(len(c) for c in chunks)
    if total != placement.total:
        raise LayoutInvariantError(f"FATAL: assembled {total} bytes, layout says {placement.total}")
    for chunk in chunks:
        sink.write(chunk)

    return CompileResult(
        placement=placement,
        acid=acid,
        aci0=aci0,
        kac_words=tables.word_count,
        signed=mode.kind == "sign",
    )


def compile_file(desc: ProgramDescriptor, out_path: Path, mode: AcidMode) -> CompileResult:
    """Compile to a file. Nothing is created unless compilation succeeds."""
    buf = io.BytesIO()
    result = compile_npdm(desc, buf, mode)
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(buf.getvalue())
    return result
