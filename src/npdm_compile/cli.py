"""NPDM Compiler - Descriptor to NPDM blob."""
from __future__ import annotations

from pathlib import Path

import click

from npdm_core.errors import NpdmError

from .assembler import AcidMode, CompileResult, compile_file
from .descriptor import from_json


def compile_descriptor(
    descriptor_path: Path,
    out_path: Path,
    pem_path: Path | None = None,
    acid_path: Path | None = None,
) -> CompileResult:
    """Compile a JSON descriptor into an NPDM blob."""
    if pem_path is not None and acid_path is not None:
        raise click.UsageError("--sign and --acid are mutually exclusive")

    if pem_path is not None:
        mode = AcidMode.sign(pem_path)
    elif acid_path is not None:
        mode = AcidMode.use(acid_path)
    else:
        mode = AcidMode.empty()

    click.echo(f"Compiling descriptor: {descriptor_path}")
    desc = from_json(descriptor_path)
    result = compile_file(desc, out_path, mode)

    p = result.placement
    click.echo(f"PASS: NPDM written to {out_path}")
    click.echo(f"  ACID: offset 0x{p.acid_offset:X} size 0x{p.acid_size:X} ({mode.kind})")
    click.echo(f"  ACI0: offset 0x{p.aci0_offset:X} size 0x{p.aci0_size:X}")
    click.echo(f"  Kernel capability words: {result.kac_words}")
    return result


@click.command()
@click.argument("descriptor", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("out", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--sign", "pem_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="PEM RSA-2048 private key used to sign the ACID")
@click.option("--acid", "acid_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Copy an already signed ACID verbatim instead of generating one")
def main(descriptor: Path, out: Path, pem_path: Path | None, acid_path: Path | None) -> None:
    """Compile a program descriptor into an NPDM."""
    try:
        compile_descriptor(descriptor, out, pem_path=pem_path, acid_path=acid_path)
    except click.UsageError:
        raise
    except (NpdmError, OSError) as e:
        # Fail closed, with a single-line reason.
        click.echo(f"FATAL: {e}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
