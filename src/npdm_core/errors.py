"""NPDM error taxonomy.

Every user-facing failure carries a stable code so the CLIs can report it
on a single line. Internal defects use LayoutInvariantError instead.
"""
from __future__ import annotations

ERRORS = {
    "E_INVALID_VALUE": "Descriptor field fails a range or format constraint",
    "E_INVALID_DEBUG_FLAGS": "Mutually exclusive debug flags are both set",
    "E_KEY": "Private key could not be parsed or validated",
    "E_MISSING_FIELD": "Required descriptor field missing",
}


class NpdmError(ValueError):
    code = "E_NPDM"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"{ERRORS.get(self.code, self.code)}: {detail}")


class InvalidValue(NpdmError):
    code = "E_INVALID_VALUE"

    def __init__(self, field: str):
        self.field = field
        super().__init__(field)


class InvalidDebugFlags(NpdmError):
    code = "E_INVALID_DEBUG_FLAGS"

    def __init__(self, detail: str = "allow_debug, force_debug_prod and force_debug are exclusive"):
        super().__init__(detail)


class KeyLoadError(NpdmError):
    code = "E_KEY"


class MissingField(NpdmError):
    code = "E_MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(field)


class LayoutInvariantError(RuntimeError):
    """Computed sizes and written bytes disagree. Always a bug, never bad input."""
