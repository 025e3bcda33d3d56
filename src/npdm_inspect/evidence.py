from __future__ import annotations

from pathlib import Path

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

SECTION_SCHEMA = pa.schema(
    [
        ("container", pa.string()),
        ("section", pa.string()),
        ("offset", pa.int64()),
        ("size", pa.int64()),
        ("sha256", pa.string()),
    ]
)


def write_section_table(report: dict, out_path: Path) -> int:
    """Write the inspected section table as Parquet. Returns the row count."""
    df = pd.DataFrame(report["sections"], columns=SECTION_SCHEMA.names)
    if df.empty:
        return 0

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    table = pa.Table.from_pandas(df.sort_values("offset", kind="stable"), schema=SECTION_SCHEMA, preserve_index=False)
    pq.write_table(table, out_path)
    return len(df)
