"""Print the section table exported by `npdm-inspect layout --parquet`."""
from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd


def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python sections.py <sections.parquet>")
        sys.exit(1)

    df = pd.read_parquet(Path(sys.argv[1]))
    if df.empty:
        print("No sections found.")
        return

    print(f"--- {len(df)} sections ---\n")
    for _, row in df.iterrows():
        print(f"{row['container']:>5} {row['section']:<15} 0x{row['offset']:05X} +0x{row['size']:04X}  {row['sha256'][:16]}")

    end = int((df["offset"] + df["size"]).max())
    print(f"\nFile length: 0x{end:X}")


if __name__ == "__main__":
    main()
