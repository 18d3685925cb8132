"""strata compile command - Write CompiledArtifacts for an authoring tree."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR, EXIT_USER_ERROR
from strata_cli.output import error, print_table, success
from strata_cli.settings import config_option, load_config, verbose_option


@click.command("compile")
@click.option(
    "-d",
    "--dir",
    "authoring_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Authoring directory [default: authoring_dir from strata.yaml]",
)
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(file_okay=False),
    default=".strata/build",
    help="Output directory [default: .strata/build]",
)
@config_option
@verbose_option
def compile_cmd(authoring_dir: str | None, output_path: str, config_path: str | None, verbose: bool) -> None:
    """Compile an authoring tree to CompiledArtifacts.

    One JSON file is written per layer. Nothing is written unless every
    document compiles.

    Examples:

        strata compile

        strata compile --dir pages/ --output build/
    """
    config = load_config(config_path, verbose=verbose)
    source = Path(authoring_dir) if authoring_dir else config.authoring_dir
    output = Path(output_path)

    if not source.is_dir():
        error(f"Authoring directory not found: {source}")
        raise SystemExit(EXIT_SYSTEM_ERROR)

    from strata_core.compiler import Compiler

    report = Compiler().compile_tree(source)
    if report.failures:
        rows = [
            (failure.source_path, issue.node_id, issue.reason.value, issue.message)
            for failure in report.failures
            for issue in failure.issues
        ]
        print_table("Compilation issues", ["File", "Node", "Reason", "Message"], rows)
        error(f"Compilation failed: {len(report.failures)} document(s) with issues")
        raise SystemExit(EXIT_USER_ERROR)

    try:
        output.mkdir(parents=True, exist_ok=True)
        for artifact in report.artifacts:
            target = output / f"{quote(artifact.layer_key, safe='')}.json"
            target.write_text(artifact.model_dump_json(indent=2) + "\n", encoding="utf-8")
    except PermissionError:
        error(f"Cannot write to: {output}")
        raise SystemExit(EXIT_SYSTEM_ERROR) from None

    success(f"Compiled {len(report.artifacts)} artifact(s) to {output}")
