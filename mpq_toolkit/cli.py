"""MPQ Toolkit CLI."""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from . import __version__

HASH_TYPES = {
    "offset": 0,
    "hash-a": 1,
    "hash-b": 2,
    "table": 3,
}


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Log archive loading details")
def main(verbose: bool):
    """MPQ Toolkit - Inspect and extract files from MPQ archives.

    \b
    File names use the archive's own paths, e.g. "DBFilesClient\\Spell.dbc".
    Forward slashes are accepted and case is ignored.
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


@main.command()
@click.argument("archive", type=click.Path(exists=True, path_type=Path))
def info(archive: Path):
    """Show the archive header."""
    from .mpq import MPQArchive

    try:
        with MPQArchive(archive) as reader:
            header = reader.header
            click.echo(f"Archive:       {archive}")
            click.echo(f"Archive size:  {header.archive_size}")
            click.echo(f"Format:        {header.format_version}")
            click.echo(f"Sector size:   {header.sector_size}")
            click.echo(f"Hash table:    {header.hash_table_entries} entries at 0x{header.hash_table_offset:08X}")
            click.echo(f"Block table:   {header.block_table_entries} entries at 0x{header.block_table_offset:08X}")
            click.echo(f"Files:         {sum(1 for b in reader.block_table if b.exists)}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command(name="list")
@click.argument("archive", type=click.Path(exists=True, path_type=Path))
def list_(archive: Path):
    """List files named in the archive's (listfile)."""
    from .mpq import MPQArchive

    try:
        with MPQArchive(archive) as reader:
            filenames = reader.list_files()
            if not filenames:
                click.echo("No (listfile) in archive.")
                return

            click.echo(f"Files in archive ({len(filenames)}):")
            for filename in filenames:
                click.echo(f"  {filename}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.argument("archive", type=click.Path(exists=True, path_type=Path))
@click.argument("names", nargs=-1, required=True)
def exists(archive: Path, names: Tuple[str, ...]):
    """Check whether files are stored in the archive.

    Exits with status 1 if any name is missing.
    """
    from .mpq import MPQArchive

    try:
        with MPQArchive(archive) as reader:
            missing = 0
            for name in names:
                found = reader.exists(name)
                if not found:
                    missing += 1
                click.echo(f"{'found' if found else 'missing'}: {name}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if missing:
        sys.exit(1)


@main.command()
@click.argument("archive", type=click.Path(exists=True, path_type=Path))
@click.argument("names", nargs=-1)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    help="Output directory (default: <archive_name>_extracted)",
)
@click.option(
    "--all",
    "extract_all",
    is_flag=True,
    help="Extract every file named in the archive's (listfile)",
)
def extract(archive: Path, names: Tuple[str, ...], output: Optional[Path], extract_all: bool):
    """Extract files from an MPQ archive."""
    from .mpq import MPQArchive

    click.echo(f"Opening: {archive}")

    try:
        with MPQArchive(archive) as reader:
            filenames = list(names)
            if extract_all:
                filenames.extend(reader.list_files())
            if not filenames:
                click.echo("Nothing to extract.")
                return

            if output is None:
                output = archive.parent / f"{archive.stem}_extracted"

            click.echo(f"Output:  {output}")
            click.echo()

            extracted_count = 0
            with click.progressbar(
                list(reader.extract_to(filenames, output)),
                label="Extracting",
                item_show_func=lambda x: x[0] if x else "",
            ) as items:
                for filename, path in items:
                    extracted_count += 1

            click.echo()
            click.echo(f"Extracted: {extracted_count} files")
            skipped = len(filenames) - extracted_count
            if skipped:
                click.echo(f"Missing:   {skipped} files")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command(name="hash")
@click.argument("name")
@click.option(
    "--type",
    "hash_type",
    type=click.Choice(list(HASH_TYPES)),
    default="table",
    help="Hash purpose",
)
def hash_(name: str, hash_type: str):
    """Print the 32-bit MPQ hash of a file name."""
    from .mpq import HashType, hash_string

    try:
        click.echo(f"0x{hash_string(name, HashType(HASH_TYPES[hash_type])):08X}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
