"""strata validate command - Check authored pages without writing anything."""

from __future__ import annotations

from pathlib import Path

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR, EXIT_USER_ERROR, fail
from strata_cli.output import error, print_table, success
from strata_cli.settings import config_option, load_config, verbose_option


@click.command()
@click.argument("path", required=False, type=click.Path(exists=False))
@config_option
@verbose_option
def validate(path: str | None, config_path: str | None, verbose: bool) -> None:
    """Validate authored pages.

    PATH may be a single document or a directory; it defaults to the
    `authoring_dir` of strata.yaml. Directories are validated as one batch,
    so overlays are checked against the blueprints next to them.

    Examples:

        strata validate

        strata validate pages/members/list.yaml
    """
    config = load_config(config_path, verbose=verbose)
    target = Path(path) if path else config.authoring_dir

    if not target.exists():
        error(f"Path not found: {target}")
        raise SystemExit(EXIT_SYSTEM_ERROR)

    from strata_core.compiler import Compiler
    from strata_core.errors import CompileError

    compiler = Compiler()
    if target.is_file():
        try:
            artifact = compiler.compile_file(target)
        except CompileError as exc:
            fail(exc)
        success(f"{target} is valid ({artifact.layer_key})")
        return

    report = compiler.compile_tree(target)
    if report.failures:
        for failure in report.failures:
            error(f"{failure.source_path}: {len(failure.issues)} issue(s)")
            print_table(
                f"Issues in {failure.source_path}",
                ["Node", "Reason", "Message"],
                [(issue.node_id, issue.reason.value, issue.message) for issue in failure.issues],
            )
        error(f"{len(report.failures)} document(s) failed, {len(report.artifacts)} valid")
        raise SystemExit(EXIT_USER_ERROR)

    success(f"{len(report.artifacts)} document(s) valid")
