"""NPDM protocol constants.

Single source of truth for on-disk magic values and record layouts.
Keep this file stable. Compiler and Inspector must remain synchronized.
All multi-byte fields are little-endian.
"""

# Container magics
MAGIC_META = b"META"
MAGIC_ACID = b"ACID"
MAGIC_ACI0 = b"ACI0"

# META: [Magic(4) | SigKeyGen(4) | Rsvd(4) | Flags(1) | Rsvd(1) | Prio(1) | Core(1)
#        | Rsvd(4) | SysResSize(4) | Version(4) | StackSize(4) | Name(16) | ProductCode(16)
#        | Rsvd(48) | AciOff(4) | AciSize(4) | AcidOff(4) | AcidSize(4)] = 0x80 bytes
META_FMT = "<4sII4BIIII16s16s48sIIII"
META_LEN = 0x80

# Signature block in front of the ACID header
SIGNATURE_LEN = 0x100

# ACID: [DevKey(256) | Magic(4) | SignedSize(4) | Rsvd(4) | Flags(4) | PidMin(8) | PidMax(8)
#        | FacOff(4) | FacSize(4) | SacOff(4) | SacSize(4) | KacOff(4) | KacSize(4) | Rsvd(8)]
ACID_FMT = "<256s4sIIIQQIIIIII8s"
ACID_LEN = 0x140

# ACID FS access: [Version(1) | CoiCount(1) | SdoiCount(1) | Pad(1) | Flags(8)
#                  | CoiMin(8) | CoiMax(8) | SdoiMin(8) | SdoiMax(8)]
ACID_FAC_FMT = "<4B8sQQQQ"
ACID_FAC_LEN = 0x2C

# ACI0: [Magic(4) | Rsvd(12) | ProgramId(8) | Rsvd(8)
#        | FacOff(4) | FacSize(4) | SacOff(4) | SacSize(4) | KacOff(4) | KacSize(4) | Rsvd(8)]
ACI0_FMT = "<4s12sQ8sIIIIII8s"
ACI0_LEN = 0x40

# ACI0 FS access: [Version(1) | Pad(3) | Flags(8) | CoiOff(4) | CoiSize(4) | SdoiOff(4) | SdoiSize(4)]
ACI0_FAC_FMT = "<B3s8sIIII"
ACI0_FAC_LEN = 0x1C

FAC_VERSION = 1

# String fields
NAME_LEN = 0x10
PRODUCT_CODE_LEN = 0x10
DEVELOPER_KEY_LEN = 0x100

# META flag bits
META_FLAG_64_BIT = 1 << 0
META_ADDRESS_SPACE_SHIFT = 1
META_FLAG_OPTIMIZE_MEMORY_ALLOCATION = 1 << 4
META_FLAG_DISABLE_DEVICE_AS_MERGE = 1 << 5
META_FLAG_ENABLE_ALIAS_REGION_EXTRA_SIZE = 1 << 6
META_FLAG_PREVENT_CODE_READS = 1 << 7

# ACID flag bits
ACID_FLAG_PRODUCTION = 1 << 0
ACID_FLAG_UNQUALIFIED_APPROVAL = 1 << 1
ACID_MEMORY_REGION_SHIFT = 2
ACID_FLAG_LOAD_BROWSER_CORE_DLL = 1 << 7

# Two-bit fields (address space type, memory region)
TWO_BIT_MASK = 0b11

# Service access control entries
SAC_HOST_FLAG = 0x80
SAC_MAX_NAME_LEN = 8

# Kernel access control
KAC_WORD_LEN = 4
SYSCALL_BUCKET_COUNT = 6
SYSCALLS_PER_BUCKET = 24
MAX_SYSCALL_ID = SYSCALL_BUCKET_COUNT * SYSCALLS_PER_BUCKET - 1

PROGRAM_TYPES = {"system": 0, "application": 1, "applet": 2}
MIN_KERNEL_VERSION = 0x30

# Fixed container sizes, excluding the variable service and kernel tables
ACID_FIXED_LEN = SIGNATURE_LEN + ACID_LEN + ACID_FAC_LEN
ACI0_FIXED_LEN = ACI0_LEN + ACI0_FAC_LEN

RSA_KEY_BITS = 2048

# Kernel capability unary tag widths (number of low one-bits)
KAC_TAG_THREAD_INFO = 3
KAC_TAG_ENABLE_SYSTEM_CALLS = 4
KAC_TAG_MEMORY_MAP = 6
KAC_TAG_IO_MEMORY_MAP = 7
KAC_TAG_ENABLE_INTERRUPTS = 11
KAC_TAG_MISC_PARAMS = 13
KAC_TAG_KERNEL_VERSION = 14
KAC_TAG_HANDLE_TABLE_SIZE = 15
KAC_TAG_DEBUG_FLAGS = 16

CAPABILITY_KINDS = {
    KAC_TAG_THREAD_INFO: "thread_info",
    KAC_TAG_ENABLE_SYSTEM_CALLS: "enable_system_calls",
    KAC_TAG_MEMORY_MAP: "memory_map",
    KAC_TAG_IO_MEMORY_MAP: "io_memory_map",
    KAC_TAG_ENABLE_INTERRUPTS: "enable_interrupts",
    KAC_TAG_MISC_PARAMS: "misc_params",
    KAC_TAG_KERNEL_VERSION: "kernel_version",
    KAC_TAG_HANDLE_TABLE_SIZE: "handle_table_size",
    KAC_TAG_DEBUG_FLAGS: "debug_flags",
}
