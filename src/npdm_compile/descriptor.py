"""Program descriptor model and JSON loader.

The loader normalizes both kernel-capability surface forms (the explicit
type/value list and the convenience struct) into one ordered tuple of
capabilities. It also resolves the field aliases that older descriptors
still use.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from npdm_core.codec import is_hex_or_num, parse_hex_or_num
from npdm_core.errors import InvalidValue, MissingField

from .capabilities import (
    DebugFlags,
    EnableInterrupts,
    EnableSystemCalls,
    HandleTableSize,
    IoMemoryMap,
    KernelCapability,
    KernelVersionCap,
    KernelVersionString,
    KernelVersionValue,
    MemoryMap,
    MiscParams,
    ProgramTypeName,
    ProgramTypeValue,
    ThreadInfo,
)

# Top-level aliases: old name -> canonical name
FIELD_ALIASES = {
    "default_cpu_id": "main_thread_core_number",
    "process_category": "version",
    "is_retail": "is_production",
    "pool_partition": "memory_region",
    "title_id_range_min": "program_id_range_min",
    "title_id_range_max": "program_id_range_max",
    "title_id": "program_id",
    "filesystem_access": "fs_access_control",
    "service_access": "accessed_services",
    "service_host": "hosted_services",
}

CAPABILITY_ALIASES = {
    "kernel_flags": "thread_info",
    "syscalls": "enable_system_calls",
    "map": "memory_map",
    "map_page": "io_memory_map",
    "irq_pair": "enable_interrupts",
    "application_type": "misc_params",
    "min_kernel_version": "kernel_version",
}

THREAD_INFO_ALIASES = {
    "highest_thread_priority": "highest_priority",
    "lowest_thread_priority": "lowest_priority",
    "highest_cpu_id": "max_core_number",
    "lowest_cpu_id": "min_core_number",
}


@dataclass(frozen=True)
class ProgramDescriptor:
    # META
    name: str
    main_thread_stack_size: int
    main_thread_priority: int
    main_thread_core_number: int
    address_space_type: int
    is_64_bit: bool
    product_code: str = ""
    signature_key_generation: int = 0
    system_resource_size: int = 0
    version: int = 0
    optimize_memory_allocation: bool = False
    disable_device_address_space_merge: bool = False
    enable_alias_region_extra_size: bool = False
    prevent_code_reads: bool = False
    # ACID
    memory_region: int = 0
    is_production: bool = True
    unqualified_approval: bool = False
    load_browser_core_dll: bool = False
    program_id_range_min: int | None = None
    program_id_range_max: int | None = None
    developer_key: str | None = None
    # ACI0
    program_id: int = 0
    # FS access control bitmask
    fs_access_flags: int = 0
    # Service access control; None when the descriptor omitted the list
    accessed_services: tuple[str, ...] | None = None
    hosted_services: tuple[str, ...] | None = None
    kernel_capabilities: tuple[KernelCapability, ...] = field(default_factory=tuple)

    def service_lists(self) -> tuple[tuple[str, ...], tuple[str, ...]]:
        if self.accessed_services is None:
            raise MissingField("accessed_services")
        if self.hosted_services is None:
            raise MissingField("hosted_services")
        return self.accessed_services, self.hosted_services


def _canonical(obj: dict, aliases: dict[str, str]) -> dict:
    out = {}
    for key, value in obj.items():
        canonical = aliases.get(key, key)
        if canonical in out:
            # alias and canonical name given together
            raise InvalidValue(canonical)
        out[canonical] = value
    return out


def _require(obj: dict, key: str) -> Any:
    if key not in obj:
        raise MissingField(key)
    return obj[key]


def _u8(value: object, name: str) -> int:
    num = parse_hex_or_num(value, name)
    if num > 0xFF:
        raise InvalidValue(name)
    return num


def _u32(value: object, name: str) -> int:
    num = parse_hex_or_num(value, name)
    if num > 0xFFFFFFFF:
        raise InvalidValue(name)
    return num


def _u64(value: object, name: str) -> int:
    num = parse_hex_or_num(value, name)
    if num > 0xFFFFFFFFFFFFFFFF:
        raise InvalidValue(name)
    return num


def _bool(value: object, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidValue(name)
    return value


def _opt(obj: dict, key: str, conv, default):
    value = obj.get(key)
    return default if value is None else conv(value, key)


def _names(value: object, name: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidValue(name)
    return tuple(value)


# ---------------------------------------------------------------------------
# Polymorphic fields
# ---------------------------------------------------------------------------


def parse_program_type(value: object):
    if is_hex_or_num(value):
        return ProgramTypeValue(parse_hex_or_num(value, "misc_params (program_type)"))
    if isinstance(value, str):
        return ProgramTypeName(value)
    raise InvalidValue("misc_params (program_type)")


def parse_kernel_version(value: object):
    if is_hex_or_num(value):
        return KernelVersionValue(parse_hex_or_num(value, "kernel_version"))
    if isinstance(value, str):
        return KernelVersionString(value)
    raise InvalidValue("kernel_version")


def parse_syscalls(value: object) -> EnableSystemCalls:
    """Either {name: id} (ids are used) or a list of ids and names."""
    if isinstance(value, dict):
        return EnableSystemCalls(tuple(value.values()))
    if isinstance(value, list):
        return EnableSystemCalls(tuple(value))
    raise InvalidValue("enable_system_calls")


def _irq_pair(value: object) -> EnableInterrupts:
    if not isinstance(value, list) or len(value) != 2:
        raise InvalidValue("enable_interrupts")
    return EnableInterrupts(
        parse_hex_or_num(value[0], "enable_interrupts"),
        parse_hex_or_num(value[1], "enable_interrupts"),
    )


def _memory_map(value: object) -> MemoryMap:
    if not isinstance(value, dict):
        raise InvalidValue("memory_map")
    return MemoryMap(
        address=parse_hex_or_num(_require(value, "address"), "memory_map"),
        size=parse_hex_or_num(_require(value, "size"), "memory_map"),
        is_ro=_bool(_require(value, "is_ro"), "memory_map"),
        is_io=_bool(_require(value, "is_io"), "memory_map"),
    )


def _thread_info(value: object) -> ThreadInfo:
    if not isinstance(value, dict):
        raise InvalidValue("thread_info")
    value = _canonical(value, THREAD_INFO_ALIASES)
    return ThreadInfo(
        highest_priority=_u8(_require(value, "highest_priority"), "thread_info"),
        lowest_priority=_u8(_require(value, "lowest_priority"), "thread_info"),
        min_core_number=_u8(_require(value, "min_core_number"), "thread_info"),
        max_core_number=_u8(_require(value, "max_core_number"), "thread_info"),
    )


def _debug_flags(value: object) -> DebugFlags:
    if not isinstance(value, dict):
        raise InvalidValue("debug_flags")
    return DebugFlags(
        allow_debug=_bool(value.get("allow_debug", False), "debug_flags"),
        force_debug_prod=_bool(value.get("force_debug_prod", False), "debug_flags"),
        force_debug=_bool(value.get("force_debug", False), "debug_flags"),
    )


def parse_capability(entry: object) -> KernelCapability:
    """One {"type": ..., "value": ...} entry of the explicit list form."""
    if not isinstance(entry, dict) or "type" not in entry:
        raise InvalidValue("kernel_capabilities")
    kind = CAPABILITY_ALIASES.get(entry["type"], entry["type"])
    value = entry.get("value")

    if kind == "thread_info":
        return _thread_info(value)
    if kind == "enable_system_calls":
        return parse_syscalls(value)
    if kind == "memory_map":
        return _memory_map(value)
    if kind == "io_memory_map":
        return IoMemoryMap(parse_hex_or_num(value, "io_memory_map"))
    if kind == "enable_interrupts":
        return _irq_pair(value)
    if kind == "misc_params":
        return MiscParams(parse_program_type(value))
    if kind == "kernel_version":
        return KernelVersionCap(parse_kernel_version(value))
    if kind == "handle_table_size":
        return HandleTableSize(parse_hex_or_num(value, "handle_table_size"))
    if kind == "debug_flags":
        return _debug_flags(value)
    raise InvalidValue(f"kernel_capabilities.{entry['type']}")


def normalize_capability_struct(obj: dict) -> tuple[KernelCapability, ...]:
    """Convenience form -> ordered list.

    Order: ThreadInfo, EnableSystemCalls, MemoryMap*, IoMemoryMap*,
    EnableInterrupts*, MiscParams?, KernelVersion?, DebugFlags?.
    """
    caps: list[KernelCapability] = [_thread_info(obj), parse_syscalls(_require(obj, "enable_system_calls"))]

    for mem_map in obj.get("memory_maps") or []:
        caps.append(_memory_map(mem_map))
    for page in obj.get("io_memory_maps") or []:
        caps.append(IoMemoryMap(parse_hex_or_num(page, "io_memory_map")))
    for pair in obj.get("enable_interrupts") or []:
        caps.append(_irq_pair(pair))

    if obj.get("program_type") is not None:
        caps.append(MiscParams(parse_program_type(obj["program_type"])))
    if obj.get("kernel_version") is not None:
        caps.append(KernelVersionCap(parse_kernel_version(obj["kernel_version"])))

    debug_keys = ("allow_debug", "force_debug_prod", "force_debug")
    if any(obj.get(k) is not None for k in debug_keys):
        caps.append(_debug_flags({k: obj[k] for k in debug_keys if obj.get(k) is not None}))

    return tuple(caps)


def parse_kernel_capabilities(value: object) -> tuple[KernelCapability, ...]:
    if isinstance(value, list):
        return tuple(parse_capability(entry) for entry in value)
    if isinstance(value, dict):
        return normalize_capability_struct(_canonical(value, THREAD_INFO_ALIASES))
    raise InvalidValue("kernel_capabilities")


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------


def _services(obj: dict) -> tuple[tuple[str, ...] | None, tuple[str, ...] | None]:
    combined = obj.get("service_access_control")
    if combined is not None:
        if not isinstance(combined, dict):
            raise InvalidValue("service_access_control")
        return (
            _names(_require(combined, "accessed_services"), "accessed_services"),
            _names(_require(combined, "hosted_services"), "hosted_services"),
        )
    accessed = obj.get("accessed_services")
    hosted = obj.get("hosted_services")
    return (
        None if accessed is None else _names(accessed, "accessed_services"),
        None if hosted is None else _names(hosted, "hosted_services"),
    )


def _fs_flags(obj: dict) -> int:
    fac = _require(obj, "fs_access_control")
    if not isinstance(fac, dict):
        raise InvalidValue("fs_access_control")
    fac = _canonical(fac, {"permissions": "flags"})
    return _u64(_require(fac, "flags"), "fs_access_control.flags")


def from_dict(raw: dict) -> ProgramDescriptor:
    if not isinstance(raw, dict):
        raise InvalidValue("descriptor")
    obj = _canonical(raw, FIELD_ALIASES)

    name = _require(obj, "name")
    if not isinstance(name, str):
        raise InvalidValue("name")
    product_code = obj.get("product_code", "")
    if not isinstance(product_code, str):
        raise InvalidValue("product_code")
    developer_key = obj.get("developer_key")
    if developer_key is not None and not isinstance(developer_key, str):
        raise InvalidValue("developer_key")

    accessed, hosted = _services(obj)

    return ProgramDescriptor(
        name=name,
        product_code=product_code,
        signature_key_generation=_opt(obj, "signature_key_generation", _u32, 0),
        main_thread_stack_size=_u32(_require(obj, "main_thread_stack_size"), "main_thread_stack_size"),
        main_thread_priority=_u8(_require(obj, "main_thread_priority"), "main_thread_priority"),
        main_thread_core_number=_u8(_require(obj, "main_thread_core_number"), "main_thread_core_number"),
        system_resource_size=_opt(obj, "system_resource_size", _u32, 0),
        version=_opt(obj, "version", _u32, 0),
        address_space_type=_u8(_require(obj, "address_space_type"), "address_space_type"),
        is_64_bit=_bool(_require(obj, "is_64_bit"), "is_64_bit"),
        optimize_memory_allocation=_opt(obj, "optimize_memory_allocation", _bool, False),
        disable_device_address_space_merge=_opt(obj, "disable_device_address_space_merge", _bool, False),
        enable_alias_region_extra_size=_opt(obj, "enable_alias_region_extra_size", _bool, False),
        prevent_code_reads=_opt(obj, "prevent_code_reads", _bool, False),
        memory_region=_u32(_require(obj, "memory_region"), "memory_region"),
        is_production=_opt(obj, "is_production", _bool, True),
        unqualified_approval=_opt(obj, "unqualified_approval", _bool, False),
        load_browser_core_dll=_opt(obj, "load_browser_core_dll", _bool, False),
        program_id_range_min=_opt(obj, "program_id_range_min", _u64, None),
        program_id_range_max=_opt(obj, "program_id_range_max", _u64, None),
        developer_key=developer_key,
        program_id=_u64(_require(obj, "program_id"), "program_id"),
        fs_access_flags=_fs_flags(obj),
        accessed_services=accessed,
        hosted_services=hosted,
        kernel_capabilities=parse_kernel_capabilities(_require(obj, "kernel_capabilities")),
    )


def from_json(path: Path) -> ProgramDescriptor:
    """Load a descriptor file. OSError propagates unchanged."""
    data = Path(path).read_bytes()
    try:
        raw = json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise InvalidValue(f"descriptor (invalid UTF-8 at byte {e.start})") from e
    except json.JSONDecodeError as e:
        raise InvalidValue(f"descriptor ({e.msg} at line {e.lineno})") from e
    return from_dict(raw)
