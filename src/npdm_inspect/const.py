ERRORS = {
  "E_TRUNCATED": "File shorter than the headers it declares",
  "E_META_MAGIC": "META header missing META magic bytes",
  "E_ACID_MAGIC": "ACID header missing ACID magic bytes",
  "E_ACI0_MAGIC": "ACI0 header missing ACI0 magic bytes",
  "E_SECTION_BOUNDS": "Section extends past its container",
  "E_SECTION_GAP": "Sections are not contiguous",
  "E_SIZE_MISMATCH": "Header size field disagrees with section sizes",
  "E_SAC_DECODE": "Service access table does not decode",
  "E_KAC_DECODE": "Kernel capability table does not decode",
}
