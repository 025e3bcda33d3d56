import json
from pathlib import Path
import click
from .evidence import write_section_table
from .logic import inspect_npdm

@click.group()
def main():
    pass

@main.command("layout")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--parquet", "parquet_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Also write the section table to this Parquet file")
def layout_cmd(path: Path, parquet_path: Path | None):
    result = inspect_npdm(path)
    if parquet_path is not None:
        write_section_table(result, parquet_path)
    click.echo(json.dumps(result, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    if result["status"] != "PASS":
        raise SystemExit(1)

if __name__ == "__main__":
    main()
