import hashlib
import struct
from pathlib import Path

from npdm_core.protocol import (
    ACI0_FIXED_LEN,
    ACI0_FMT,
    ACI0_LEN,
    ACID_FIXED_LEN,
    ACID_FMT,
    ACID_LEN,
    CAPABILITY_KINDS,
    KAC_TAG_MEMORY_MAP,
    KAC_WORD_LEN,
    MAGIC_ACI0,
    MAGIC_ACID,
    MAGIC_META,
    META_FMT,
    META_LEN,
    SAC_HOST_FLAG,
    SIGNATURE_LEN,
)
from .const import ERRORS


def _fail(code, **extra):
    err = {"code": code, "message": ERRORS[code], **extra}
    return {"status": "FAIL", "error_count": 1, "errors": [err], "sections": []}


def tag_width(word: int) -> int:
    """Number of consecutive one-bits starting at bit 0."""
    n = 0
    while word & 1:
        n += 1
        word >>= 1
    return n


def decode_services(table: bytes):
    accessed, hosted = [], []
    ofs = 0
    while ofs < len(table):
        ctrl = table[ofs]
        ofs += 1
        name_len = (ctrl & 0x7) + 1
        if ofs + name_len > len(table):
            raise ValueError(f"entry at {ofs - 1} runs past the table")
        name = table[ofs:ofs + name_len].decode("ascii")
        ofs += name_len
        (hosted if ctrl & SAC_HOST_FLAG else accessed).append(name)
    return accessed, hosted


def decode_capabilities(table: bytes):
    if len(table) % KAC_WORD_LEN:
        raise ValueError(f"table length {len(table)} is not a multiple of {KAC_WORD_LEN}")
    words = struct.unpack(f"<{len(table) // KAC_WORD_LEN}I", table)
    kinds = []
    i = 0
    while i < len(words):
        width = tag_width(words[i])
        if width not in CAPABILITY_KINDS:
            raise ValueError(f"word {i} ({words[i]:#010x}) has unknown tag width {width}")
        if width == KAC_TAG_MEMORY_MAP:
            # address word and size word always travel together
            if i + 1 >= len(words) or tag_width(words[i + 1]) != KAC_TAG_MEMORY_MAP:
                raise ValueError(f"memory map at word {i} has no size word")
            i += 1
        kinds.append(CAPABILITY_KINDS[width])
        i += 1
    return kinds


def _check_container(name, base, size, first, table_fields):
    """Container sections must tile [first, size) exactly, in order."""
    cur = first
    rows = []
    for section, (off, sz) in table_fields:
        if off != cur:
            return None, _fail("E_SECTION_GAP", container=name, section=section, offset=off, expected=cur)
        if off + sz > size:
            return None, _fail("E_SECTION_BOUNDS", container=name, section=section, offset=off, size=sz)
        rows.append((section, base + off, sz))
        cur = off + sz
    if cur != size:
        return None, _fail("E_SIZE_MISMATCH", container=name, expected=size, computed=cur)
    return rows, None


def inspect_bytes(data: bytes) -> dict:
    if len(data) < META_LEN:
        return _fail("E_TRUNCATED", length=len(data))

    meta = struct.unpack(META_FMT, data[:META_LEN])
    if meta[0] != MAGIC_META:
        return _fail("E_META_MAGIC")
    aci0_off, aci0_size, acid_off, acid_size = meta[-4:]

    if acid_off != META_LEN or aci0_off != acid_off + acid_size:
        return _fail("E_SECTION_GAP", container="meta", acid_offset=acid_off, aci0_offset=aci0_off)
    if aci0_off + aci0_size != len(data):
        return _fail("E_SIZE_MISMATCH", container="meta", expected=len(data), computed=aci0_off + aci0_size)
    if acid_size < ACID_FIXED_LEN or aci0_size < ACI0_FIXED_LEN:
        return _fail("E_TRUNCATED", acid_size=acid_size, aci0_size=aci0_size)

    acid = data[acid_off:acid_off + acid_size]
    acid_hdr = struct.unpack(ACID_FMT, acid[SIGNATURE_LEN:SIGNATURE_LEN + ACID_LEN])
    if acid_hdr[1] != MAGIC_ACID:
        return _fail("E_ACID_MAGIC")
    if acid_hdr[2] != acid_size - SIGNATURE_LEN:
        return _fail("E_SIZE_MISMATCH", container="acid", expected=acid_size - SIGNATURE_LEN, computed=acid_hdr[2])
    acid_tables = acid_hdr[7:13]

    aci0 = data[aci0_off:aci0_off + aci0_size]
    aci0_hdr = struct.unpack(ACI0_FMT, aci0[:ACI0_LEN])
    if aci0_hdr[0] != MAGIC_ACI0:
        return _fail("E_ACI0_MAGIC")
    aci0_tables = aci0_hdr[4:10]

    sections = [("meta", "header", 0, META_LEN)]
    names = ("fs_access", "service_access", "kernel_access")
    for container, base, size, first, tables in (
        ("acid", acid_off, acid_size, SIGNATURE_LEN + ACID_LEN, acid_tables),
        ("aci0", aci0_off, aci0_size, ACI0_LEN, aci0_tables),
    ):
        pairs = list(zip(names, zip(tables[0::2], tables[1::2])))
        rows, err = _check_container(container, base, size, first, pairs)
        if err:
            return err
        if container == "acid":
            sections.append((container, "signature", base, SIGNATURE_LEN))
            sections.append((container, "header", base + SIGNATURE_LEN, ACID_LEN))
        else:
            sections.append((container, "header", base, ACI0_LEN))
        sections.extend((container, s, off, sz) for s, off, sz in rows)

    decoded = {}
    for container, _, off, sz in [s for s in sections if s[1] == "service_access"]:
        try:
            decoded[container + "_services"] = decode_services(data[off:off + sz])
        except ValueError as e:
            return _fail("E_SAC_DECODE", container=container, detail=str(e))
    for container, _, off, sz in [s for s in sections if s[1] == "kernel_access"]:
        try:
            decoded[container + "_capabilities"] = decode_capabilities(data[off:off + sz])
        except ValueError as e:
            return _fail("E_KAC_DECODE", container=container, detail=str(e))

    accessed, hosted = decoded["aci0_services"]
    return {
        "status": "PASS",
        "error_count": 0,
        "errors": [],
        "sections": [
            {
                "container": c,
                "section": s,
                "offset": off,
                "size": sz,
                "sha256": hashlib.sha256(data[off:off + sz]).hexdigest(),
            }
            for c, s, off, sz in sections
        ],
        "accessed_services": accessed,
        "hosted_services": hosted,
        "capabilities": decoded["aci0_capabilities"],
    }


def inspect_npdm(path: Path) -> dict:
    return inspect_bytes(Path(path).read_bytes())
