"""strata schema command - Export JSON Schema."""

from __future__ import annotations

from pathlib import Path

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR
from strata_cli.output import error, success


@click.group()
def schema() -> None:
    """Manage JSON Schema for editor support.

    **Commands:**

    - `strata schema export` - Export page, artifact and strata.yaml schemas
    """
    pass


@schema.command("export")
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(file_okay=False),
    default="./schemas",
    help="Output directory [default: ./schemas]",
)
def export_schema(output_path: str) -> None:
    """Export JSON Schemas.

    Writes one ``<name>.schema.json`` file per schema to the output
    directory.

    Examples:

        strata schema export

        strata schema export --output docs/schemas
    """
    output = Path(output_path)

    from strata_core.export import export_all_schemas

    try:
        written = export_all_schemas(output)
    except PermissionError:
        error(f"Cannot write to: {output_path}")
        raise SystemExit(EXIT_SYSTEM_ERROR) from None

    for path in written:
        success(f"Schema exported to {path}")
