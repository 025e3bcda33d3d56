import pytest

from npdm_compile.capabilities import (
    DebugFlags,
    EnableInterrupts,
    EnableSystemCalls,
    HandleTableSize,
    IoMemoryMap,
    KernelVersionCap,
    KernelVersionString,
    KernelVersionValue,
    MemoryMap,
    MiscParams,
    ProgramTypeName,
    ProgramTypeValue,
    ThreadInfo,
    encode_all,
    encode_syscalls,
    get_bits,
    tag,
    to_bytes,
)
from npdm_core.errors import InvalidDebugFlags, InvalidValue
from npdm_inspect.logic import tag_width


def test_unary_tag_widths():
    assert tag(3) == 0b111
    assert tag_width(tag(16) | (1 << 17)) == 16
    assert tag_width(0) == 0


def test_thread_info_packs_and_recovers_fields():
    (word,) = ThreadInfo(highest_priority=0, lowest_priority=63, min_core_number=0, max_core_number=3).encode()
    assert word == 0x0300FC07
    assert tag_width(word) == 3
    assert get_bits(word, 4, 10) == 0
    assert get_bits(word, 10, 16) == 63
    assert get_bits(word, 16, 24) == 0
    assert get_bits(word, 24, 32) == 3


def test_thread_info_rejects_wide_priority():
    with pytest.raises(InvalidValue):
        ThreadInfo(highest_priority=64, lowest_priority=0, min_core_number=0, max_core_number=0).encode()


def test_syscalls_one_word_per_used_bucket():
    words = encode_syscalls([0, 24, 48])
    assert words == [0x0000002F, 0x2000002F, 0x4000002F]
    assert sorted(get_bits(w, 29, 32) for w in words) == [0, 1, 2]
    assert all(w & (1 << 5) for w in words)
    assert all(tag_width(w) == 4 for w in words)


def test_syscalls_empty_emits_nothing():
    assert encode_syscalls([]) == []
    assert EnableSystemCalls(()).encode() == []


def test_syscalls_drop_unused_middle_bucket():
    words = encode_syscalls([0, 0x30])
    assert [get_bits(w, 29, 32) for w in words] == [0, 2]


def test_syscalls_bit_position_within_bucket():
    (word,) = encode_syscalls([23])
    assert word == 0xF | (1 << 28)


def test_syscalls_accept_names_hex_and_numbers():
    words = EnableSystemCalls(("svcSetHeapSize", "ExitProcess", "0x18", 0x7F)).encode()
    assert [get_bits(w, 29, 32) for w in words] == [0, 1, 5]
    assert words[0] == 0xF | (1 << 6) | (1 << 12)
    assert words[1] == (1 << 29) | 0xF | (1 << 5)


@pytest.mark.parametrize("bad", [144, 191, "0x90", "svcDoesNotExist", 1.5])
def test_syscalls_out_of_range_or_unknown_rejected(bad):
    with pytest.raises(InvalidValue) as e:
        EnableSystemCalls((bad,)).encode()
    assert e.value.field.startswith("enable_system_calls")


def test_memory_map_emits_address_and_size_words():
    words = MemoryMap(address=0x70000, size=0x1, is_ro=True, is_io=False).encode()
    assert words == [0x8380003F, 0x000000BF]
    assert [tag_width(w) for w in words] == [6, 6]


def test_memory_map_rejects_wide_address():
    with pytest.raises(InvalidValue):
        MemoryMap(address=1 << 24, size=1, is_ro=False, is_io=False).encode()


def test_io_memory_map():
    assert IoMemoryMap(0x70006).encode() == [0x0700067F]


def test_enable_interrupts():
    assert EnableInterrupts(32, 1023).encode() == [0xFFC207FF]
    with pytest.raises(InvalidValue):
        EnableInterrupts(1024, 0).encode()


def test_program_type_by_name_is_case_insensitive():
    assert MiscParams(ProgramTypeName("Application")).encode() == [0x5FFF]
    assert get_bits(MiscParams(ProgramTypeName("APPLET")).encode()[0], 14, 17) == 2
    assert MiscParams(ProgramTypeValue(0)).encode() == [0x1FFF]


@pytest.mark.parametrize("ptype", [ProgramTypeValue(5), ProgramTypeName("daemon")])
def test_program_type_invalid(ptype):
    with pytest.raises(InvalidValue) as e:
        MiscParams(ptype).encode()
    assert e.value.field == "misc_params (program_type)"


def test_kernel_version_forms():
    assert KernelVersionCap(KernelVersionString("3.0")).encode() == [0x183FFF]
    assert KernelVersionCap(KernelVersionValue(0x30)).encode() == [0x183FFF]
    (word,) = KernelVersionCap(KernelVersionString("9.2")).encode()
    assert get_bits(word, 15, 19) == 2
    assert get_bits(word, 19, 31) == 9


@pytest.mark.parametrize("ver", [
    KernelVersionValue(0x2F),
    KernelVersionString("3"),
    KernelVersionString("3.0.1"),
    KernelVersionString("a.b"),
    KernelVersionString("1.16"),
])
def test_kernel_version_invalid(ver):
    with pytest.raises(InvalidValue) as e:
        KernelVersionCap(ver).encode()
    assert e.value.field == "kernel_version"


def test_handle_table_size():
    assert HandleTableSize(512).encode() == [0x02007FFF]
    with pytest.raises(InvalidValue):
        HandleTableSize(1024).encode()


@pytest.mark.parametrize("kwargs,bit", [
    ({"allow_debug": True}, 17),
    ({"force_debug_prod": True}, 18),
    ({"force_debug": True}, 19),
])
def test_debug_flags_single(kwargs, bit):
    (word,) = DebugFlags(**kwargs).encode()
    assert word == 0xFFFF | (1 << bit)


@pytest.mark.parametrize("kwargs", [
    {"allow_debug": True, "force_debug": True},
    {"allow_debug": True, "force_debug_prod": True},
    {"force_debug_prod": True, "force_debug": True},
])
def test_debug_flags_exclusive(kwargs):
    with pytest.raises(InvalidDebugFlags):
        DebugFlags(**kwargs).encode()


def test_encode_all_preserves_order_and_size():
    caps = [
        HandleTableSize(1),
        ThreadInfo(0, 63, 0, 3),
        MemoryMap(1, 1, False, False),
        EnableSystemCalls((0, 24)),
    ]
    words = encode_all(caps)
    assert [tag_width(w) for w in words] == [15, 3, 6, 6, 4, 4]
    assert len(to_bytes(words)) == 4 * len(words)
    assert to_bytes([0x0300FC07]) == bytes([0x07, 0xFC, 0x00, 0x03])


def test_encoding_is_repeatable():
    caps = [ThreadInfo(0, 63, 0, 3), EnableSystemCalls(("svcBreak", 1))]
    assert encode_all(caps) == encode_all(caps)
