"""Fixed-size META, ACID and ACI0 header records."""
from __future__ import annotations

from npdm_core.codec import fixed_string, pack_struct
from npdm_core.errors import InvalidValue
from npdm_core.protocol import (
    ACI0_FAC_FMT,
    ACI0_FAC_LEN,
    ACI0_FMT,
    ACI0_LEN,
    ACID_FAC_FMT,
    ACID_FAC_LEN,
    ACID_FLAG_LOAD_BROWSER_CORE_DLL,
    ACID_FLAG_PRODUCTION,
    ACID_FLAG_UNQUALIFIED_APPROVAL,
    ACID_FMT,
    ACID_LEN,
    ACID_MEMORY_REGION_SHIFT,
    DEVELOPER_KEY_LEN,
    FAC_VERSION,
    MAGIC_ACI0,
    MAGIC_ACID,
    MAGIC_META,
    META_ADDRESS_SPACE_SHIFT,
    META_FLAG_64_BIT,
    META_FLAG_DISABLE_DEVICE_AS_MERGE,
    META_FLAG_ENABLE_ALIAS_REGION_EXTRA_SIZE,
    META_FLAG_OPTIMIZE_MEMORY_ALLOCATION,
    META_FLAG_PREVENT_CODE_READS,
    META_FMT,
    META_LEN,
    NAME_LEN,
    PRODUCT_CODE_LEN,
    SIGNATURE_LEN,
    TWO_BIT_MASK,
)

from .descriptor import ProgramDescriptor
from .layout import FileLayout, SectionLayout


def meta_flags(desc: ProgramDescriptor) -> int:
    if desc.address_space_type & ~TWO_BIT_MASK:
        raise InvalidValue("address_space_type")
    flags = desc.address_space_type << META_ADDRESS_SPACE_SHIFT
    if desc.is_64_bit:
        flags |= META_FLAG_64_BIT
    if desc.optimize_memory_allocation:
        flags |= META_FLAG_OPTIMIZE_MEMORY_ALLOCATION
    if desc.disable_device_address_space_merge:
        flags |= META_FLAG_DISABLE_DEVICE_AS_MERGE
    if desc.enable_alias_region_extra_size:
        flags |= META_FLAG_ENABLE_ALIAS_REGION_EXTRA_SIZE
    if desc.prevent_code_reads:
        flags |= META_FLAG_PREVENT_CODE_READS
    return flags


def acid_flags(desc: ProgramDescriptor) -> int:
    if desc.memory_region & ~TWO_BIT_MASK:
        raise InvalidValue("memory_region")
    flags = desc.memory_region << ACID_MEMORY_REGION_SHIFT
    if desc.is_production:
        flags |= ACID_FLAG_PRODUCTION
    if desc.unqualified_approval:
        flags |= ACID_FLAG_UNQUALIFIED_APPROVAL
    if desc.load_browser_core_dll:
        flags |= ACID_FLAG_LOAD_BROWSER_CORE_DLL
    return flags


def developer_key(desc: ProgramDescriptor) -> bytes:
    if desc.developer_key is None:
        return b"\x00" * DEVELOPER_KEY_LEN
    try:
        key = bytes.fromhex(desc.developer_key)
    except ValueError:
        raise InvalidValue("developer_key") from None
    if len(key) != DEVELOPER_KEY_LEN:
        raise InvalidValue("developer_key")
    return key


def fs_access_bitmask(desc: ProgramDescriptor) -> bytes:
    return desc.fs_access_flags.to_bytes(8, "little")


def build_meta(desc: ProgramDescriptor, placement: FileLayout) -> bytes:
    return pack_struct(
        META_FMT, META_LEN,
        MAGIC_META,
        desc.signature_key_generation,
        0,
        meta_flags(desc),
        0,
        desc.main_thread_priority,
        desc.main_thread_core_number,
        0,
        desc.system_resource_size,
        desc.version,
        desc.main_thread_stack_size,
        fixed_string(desc.name, NAME_LEN, "name"),
        fixed_string(desc.product_code, PRODUCT_CODE_LEN, "product_code"),
        b"",
        placement.aci0_offset,
        placement.aci0_size,
        placement.acid_offset,
        placement.acid_size,
    )


def build_acid_header(desc: ProgramDescriptor, acid: SectionLayout) -> bytes:
    fac = acid["fs_access"]
    sac = acid["service_access"]
    kac = acid["kernel_access"]
    pid_min = desc.program_id if desc.program_id_range_min is None else desc.program_id_range_min
    pid_max = desc.program_id if desc.program_id_range_max is None else desc.program_id_range_max
    return pack_struct(
        ACID_FMT, ACID_LEN,
        developer_key(desc),
        MAGIC_ACID,
        acid.size - SIGNATURE_LEN,
        0,
        acid_flags(desc),
        pid_min,
        pid_max,
        fac.offset, fac.size,
        sac.offset, sac.size,
        kac.offset, kac.size,
        b"",
    )


def build_acid_fs_access(desc: ProgramDescriptor) -> bytes:
    # No content-owner or save-data-owner ids; their ranges stay zero.
    return pack_struct(
        ACID_FAC_FMT, ACID_FAC_LEN,
        FAC_VERSION, 0, 0, 0,
        fs_access_bitmask(desc),
        0, 0, 0, 0,
    )


def build_aci0_header(desc: ProgramDescriptor, aci0: SectionLayout) -> bytes:
    fac = aci0["fs_access"]
    sac = aci0["service_access"]
    kac = aci0["kernel_access"]
    return pack_struct(
        ACI0_FMT, ACI0_LEN,
        MAGIC_ACI0,
        b"",
        desc.program_id,
        b"",
        fac.offset, fac.size,
        sac.offset, sac.size,
        kac.offset, kac.size,
        b"",
    )


def build_aci0_fs_access(desc: ProgramDescriptor) -> bytes:
    # Owner info tables are empty; both point just past this block.
    return pack_struct(
        ACI0_FAC_FMT, ACI0_FAC_LEN,
        FAC_VERSION,
        b"",
        fs_access_bitmask(desc),
        ACI0_FAC_LEN, 0,
        ACI0_FAC_LEN, 0,
    )
