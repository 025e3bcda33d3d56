import io
import struct

import pytest

import npdm_compile.assembler as assembler
from npdm_compile.assembler import AcidMode, _sections, compile_file, compile_npdm
from npdm_compile.descriptor import from_dict
from npdm_compile.layout import (
    FileLayout,
    Section,
    SectionLayout,
    declaration_layout,
    encode_tables,
    instance_layout,
)
from npdm_core.errors import InvalidValue, LayoutInvariantError, MissingField
from npdm_core.protocol import (
    ACI0_FAC_FMT,
    ACI0_FMT,
    ACID_FAC_FMT,
    ACID_FMT,
    META_FMT,
    META_LEN,
)
from npdm_inspect.logic import inspect_bytes


def _compile(desc, mode=None) -> bytes:
    buf = io.BytesIO()
    compile_npdm(desc, buf, mode or AcidMode.empty())
    return buf.getvalue()


def test_record_formats_match_lengths():
    assert struct.calcsize(META_FMT) == 0x80
    assert struct.calcsize(ACID_FMT) == 0x140
    assert struct.calcsize(ACID_FAC_FMT) == 0x2C
    assert struct.calcsize(ACI0_FMT) == 0x40
    assert struct.calcsize(ACI0_FAC_FMT) == 0x1C


def test_layout_sizes_follow_encoded_tables(descriptor_dict):
    desc = from_dict(descriptor_dict)
    tables = encode_tables(desc)
    assert len(tables.kac) == 4 * tables.word_count
    # sm: + fsp-srv + aa
    assert len(tables.sac) == 4 + 8 + 3

    acid = declaration_layout(tables)
    aci0 = instance_layout(tables)
    assert acid["fs_access"].offset == 0x240
    assert acid["service_access"].offset == 0x240 + 0x2C
    assert acid.size == 0x100 + 0x140 + 0x2C + len(tables.sac) + len(tables.kac)
    assert aci0["fs_access"].offset == 0x40
    assert aci0["kernel_access"].end == aci0.size


def test_headers_agree_with_written_bytes(descriptor_dict):
    desc = from_dict(descriptor_dict)
    data = _compile(desc)
    tables = encode_tables(desc)
    kac_bytes = 4 * tables.word_count

    meta = struct.unpack(META_FMT, data[:META_LEN])
    assert meta[0] == b"META"
    aci0_off, aci0_size, acid_off, acid_size = meta[-4:]
    assert acid_off == META_LEN
    assert aci0_off == acid_off + acid_size
    assert aci0_off + aci0_size == len(data)

    acid_hdr = struct.unpack(ACID_FMT, data[acid_off + 0x100:acid_off + 0x240])
    assert acid_hdr[1] == b"ACID"
    assert acid_hdr[2] == acid_size - 0x100
    assert acid_hdr[12] == kac_bytes

    aci0_hdr = struct.unpack(ACI0_FMT, data[aci0_off:aci0_off + 0x40])
    assert aci0_hdr[0] == b"ACI0"
    assert aci0_hdr[2] == 0x0100000000000042
    assert aci0_hdr[9] == kac_bytes

    # Both containers carry identical service and capability tables.
    acid_sac = data[acid_off + acid_hdr[9]:acid_off + acid_hdr[9] + acid_hdr[10]]
    aci0_sac = data[aci0_off + aci0_hdr[6]:aci0_off + aci0_hdr[6] + aci0_hdr[7]]
    assert acid_sac == aci0_sac == tables.sac
    assert data[-kac_bytes:] == tables.kac


def test_sections_are_contiguous_and_cover_file(descriptor_dict):
    data = _compile(from_dict(descriptor_dict))
    report = inspect_bytes(data)
    assert report["status"] == "PASS", report
    cur = 0
    for s in sorted(report["sections"], key=lambda s: s["offset"]):
        assert s["offset"] == cur
        cur += s["size"]
    assert cur == len(data)
    assert report["accessed_services"] == ["sm:", "fsp-srv"]
    assert report["hosted_services"] == ["aa"]
    assert report["capabilities"] == [
        "thread_info", "enable_system_calls", "memory_map", "handle_table_size", "misc_params",
    ]


def test_meta_fields(descriptor_dict):
    descriptor_dict["optimize_memory_allocation"] = True
    descriptor_dict["signature_key_generation"] = 1
    descriptor_dict["version"] = "0x10"
    data = _compile(from_dict(descriptor_dict))
    meta = struct.unpack(META_FMT, data[:META_LEN])
    assert meta[1] == 1
    # is_64_bit | address space 3 << 1 | optimize memory allocation
    assert meta[3] == 0b0001_0111
    assert meta[5] == 49
    assert meta[6] == 3
    assert meta[9] == 0x10
    assert meta[10] == 0x4000
    assert meta[11] == b"sysmod".ljust(16, b"\x00")


def test_acid_fields(descriptor_dict):
    descriptor_dict["program_id_range_max"] = "0x01000000000000FF"
    descriptor_dict["unqualified_approval"] = True
    descriptor_dict["developer_key"] = "ab" * 0x100
    data = _compile(from_dict(descriptor_dict))
    acid_hdr = struct.unpack(ACID_FMT, data[META_LEN + 0x100:META_LEN + 0x240])
    assert acid_hdr[0] == b"\xab" * 0x100
    # production | unqualified approval | memory region 2
    assert acid_hdr[4] == 0b1011
    assert acid_hdr[5] == 0x0100000000000042
    assert acid_hdr[6] == 0x01000000000000FF

    fac = struct.unpack(ACID_FAC_FMT, data[META_LEN + 0x240:META_LEN + 0x26C])
    assert fac[0] == 1
    assert fac[4] == (1).to_bytes(8, "little")


def test_aci0_fs_access_block(descriptor_dict):
    desc = from_dict(descriptor_dict)
    data = _compile(desc)
    aci0_off = struct.unpack(META_FMT, data[:META_LEN])[-4]
    fac = struct.unpack(ACI0_FAC_FMT, data[aci0_off + 0x40:aci0_off + 0x5C])
    assert fac == (1, b"\x00" * 3, (1).to_bytes(8, "little"), 0x1C, 0, 0x1C, 0)


def test_placeholder_signature_is_zero(descriptor_dict):
    data = _compile(from_dict(descriptor_dict))
    assert data[META_LEN:META_LEN + 0x100] == b"\x00" * 0x100


def test_long_name_truncated_with_warning(descriptor_dict):
    descriptor_dict["name"] = "a" * 20
    with pytest.warns(UserWarning, match="name"):
        data = _compile(from_dict(descriptor_dict))
    meta = struct.unpack(META_FMT, data[:META_LEN])
    assert meta[11] == b"a" * 15 + b"\x00"


@pytest.mark.parametrize("field,value", [
    ("address_space_type", 4),
    ("memory_region", 4),
    ("developer_key", "abcd"),
])
def test_invalid_header_values_write_nothing(descriptor_dict, field, value):
    descriptor_dict[field] = value
    buf = io.BytesIO()
    with pytest.raises(InvalidValue) as e:
        compile_npdm(from_dict(descriptor_dict), buf, AcidMode.empty())
    assert e.value.field == field
    assert buf.getvalue() == b""


def test_invalid_capability_writes_nothing(descriptor_dict):
    descriptor_dict["kernel_capabilities"].append({"type": "misc_params", "value": 5})
    buf = io.BytesIO()
    with pytest.raises(InvalidValue):
        compile_npdm(from_dict(descriptor_dict), buf, AcidMode.empty())
    assert buf.getvalue() == b""


def test_missing_services_write_nothing(tmp_path, descriptor_dict):
    del descriptor_dict["accessed_services"]
    out = tmp_path / "main.npdm"
    with pytest.raises(MissingField):
        compile_file(from_dict(descriptor_dict), out, AcidMode.empty())
    assert not out.exists()


def test_reused_acid_is_copied_verbatim(tmp_path, descriptor_dict):
    original = _compile(from_dict(descriptor_dict))
    acid_off, acid_size = struct.unpack(META_FMT, original[:META_LEN])[-2:]
    acid_file = tmp_path / "acid.bin"
    acid_file.write_bytes(original[acid_off:acid_off + acid_size])

    assert _compile(from_dict(descriptor_dict), AcidMode.use(acid_file)) == original


def test_reused_acid_size_comes_from_file(tmp_path, descriptor_dict):
    bigger = dict(descriptor_dict, hosted_services=["aa", "bbbbbbbb"])
    donor = _compile(from_dict(bigger))
    acid_off, acid_size = struct.unpack(META_FMT, donor[:META_LEN])[-2:]
    acid_file = tmp_path / "acid.bin"
    acid_file.write_bytes(donor[acid_off:acid_off + acid_size])

    data = _compile(from_dict(descriptor_dict), AcidMode.use(acid_file))
    meta = struct.unpack(META_FMT, data[:META_LEN])
    assert meta[-1] == acid_size
    assert meta[-4] == META_LEN + acid_size
    assert data[META_LEN:META_LEN + acid_size] == acid_file.read_bytes()
    assert inspect_bytes(data)["status"] == "PASS"


def test_missing_reused_acid_raises_oserror(tmp_path, descriptor_dict):
    with pytest.raises(OSError):
        _compile(from_dict(descriptor_dict), AcidMode.use(tmp_path / "nope.bin"))


def test_compile_is_deterministic(descriptor_dict):
    desc = from_dict(descriptor_dict)
    assert _compile(desc) == _compile(desc)


def test_inspector_flags_overlapping_containers(descriptor_dict):
    data = bytearray(_compile(from_dict(descriptor_dict)))
    data[0x70] ^= 0x01
    report = inspect_bytes(bytes(data))
    assert report["status"] == "FAIL"
    assert report["errors"][0]["code"] == "E_SECTION_GAP"


def test_inspector_flags_bad_magic(descriptor_dict):
    data = bytearray(_compile(from_dict(descriptor_dict)))
    data[0] = ord("X")
    assert inspect_bytes(bytes(data))["errors"][0]["code"] == "E_META_MAGIC"
    assert inspect_bytes(b"META")["errors"][0]["code"] == "E_TRUNCATED"


def test_section_payload_must_match_its_size():
    layout = SectionLayout("aci0", (Section("header", 0, 0x40), Section("fs_access", 0x40, 0x1C)))
    assert _sections(layout, {"header": b"\x00" * 0x40, "fs_access": b"\x01" * 0x1C})[1] == b"\x01" * 0x1C
    with pytest.raises(LayoutInvariantError, match="aci0.fs_access"):
        _sections(layout, {"header": b"\x00" * 0x40, "fs_access": b"\x01" * 0x1B})


def test_short_header_halts_before_writing(monkeypatch, descriptor_dict):
    real = assembler.build_aci0_header
    monkeypatch.setattr(assembler, "build_aci0_header", lambda desc, layout: real(desc, layout)[:-4])
    buf = io.BytesIO()
    with pytest.raises(LayoutInvariantError, match="aci0.header"):
        compile_npdm(from_dict(descriptor_dict), buf, AcidMode.empty())
    assert buf.getvalue() == b""


def test_total_length_mismatch_halts_before_writing(monkeypatch, descriptor_dict):
    real = assembler.file_layout

    def padded(acid_size, aci0):
        p = real(acid_size, aci0)
        return FileLayout(p.acid_offset, p.acid_size, p.aci0_offset, p.aci0_size + 4)

    monkeypatch.setattr(assembler, "file_layout", padded)
    buf = io.BytesIO()
    with pytest.raises(LayoutInvariantError, match="layout says"):
        compile_npdm(from_dict(descriptor_dict), buf, AcidMode.empty())
    assert buf.getvalue() == b""
