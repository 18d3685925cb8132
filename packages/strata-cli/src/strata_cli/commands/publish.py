"""strata publish command - Compile an authoring tree and publish it."""

from __future__ import annotations

from pathlib import Path

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR, EXIT_USER_ERROR, fail
from strata_cli.output import error, info, print_table, success
from strata_cli.settings import config_option, load_config, verbose_option


@click.command()
@click.option(
    "-d",
    "--dir",
    "authoring_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Authoring directory [default: authoring_dir from strata.yaml]",
)
@click.option(
    "-s",
    "--store",
    "store_root",
    type=click.Path(file_okay=False),
    default=None,
    help="Store root [default: store_root from strata.yaml]",
)
@config_option
@verbose_option
def publish(authoring_dir: str | None, store_root: str | None, config_path: str | None, verbose: bool) -> None:
    """Compile and publish pages into the store.

    Overlays are validated against blueprints in the same tree or, failing
    that, against the blueprint already live in the store. Content versions
    may not go backwards.

    Examples:

        strata publish

        strata publish --dir pages/ --store /srv/strata/store
    """
    config = load_config(config_path, verbose=verbose)
    source = Path(authoring_dir) if authoring_dir else config.authoring_dir
    store = Path(store_root) if store_root else config.store_root

    if not source.is_dir():
        error(f"Authoring directory not found: {source}")
        raise SystemExit(EXIT_SYSTEM_ERROR)

    from strata_core.compiler import Compiler
    from strata_core.errors import StrataError
    from strata_core.publisher import Publisher
    from strata_core.registry import Registry

    publisher = Publisher(store)
    try:
        registry = Registry.from_store_root(store)
        snapshot = registry.refresh()
        bases = {page: registry.load_artifact(pointer).ir for page, pointer in snapshot.blueprints.items()}
    except StrataError as exc:
        fail(exc)

    report = Compiler(prior_versions=publisher.live_version).compile_tree(source, bases=bases)
    if report.failures:
        rows = [
            (failure.source_path, issue.node_id, issue.reason.value, issue.message)
            for failure in report.failures
            for issue in failure.issues
        ]
        print_table("Compilation issues", ["File", "Node", "Reason", "Message"], rows)
        error(f"Nothing published: {len(report.failures)} document(s) with issues")
        raise SystemExit(EXIT_USER_ERROR)

    try:
        results = publisher.publish_many(report.artifacts)
    except StrataError as exc:
        fail(exc)

    print_table(
        "Published layers",
        ["Layer key", "Version", "Status"],
        [(r.layer_key, r.content_version, "published" if r.changed else "unchanged") for r in results],
    )
    changed = sum(1 for r in results if r.changed)
    if changed:
        success(f"Published {changed} layer(s) to {store}")
    else:
        info("Store already up to date")
