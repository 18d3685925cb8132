"""strata resolve command - Show the layers and merged page for a request."""

from __future__ import annotations

import json
from pathlib import Path

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR, fail
from strata_cli.output import error, info, print_table, success
from strata_cli.settings import build_request_context, config_option, context_options, load_config, verbose_option


@click.command()
@context_options
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the merged page as JSON to this file.",
)
@config_option
@verbose_option
def resolve(
    module: str,
    route: str,
    tenant: str | None,
    roles: tuple[str, ...],
    variant: str | None,
    locale: str | None,
    store_root: str | None,
    output_path: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Resolve the page a request would see.

    Prints the contributing layers in application order and the resolution
    fingerprint.

    Examples:

        strata resolve -m members -r list

        strata resolve -m members -r list -t acme --role admin -o page.json
    """
    config = load_config(config_path, verbose=verbose)
    store = Path(store_root) if store_root else config.store_root

    from strata_core.errors import StrataError
    from strata_core.registry import Registry
    from strata_core.resolver import Resolver

    context = build_request_context(module, route, tenant, roles, variant, locale)
    try:
        resolved = Resolver().resolve_request(Registry.from_store_root(store), context)
    except StrataError as exc:
        fail(exc)

    print_table("Layers", ["#", "Layer key"], [(i, key) for i, key in enumerate(resolved.layers, start=1)])
    info(f"Fingerprint: {resolved.fingerprint}")

    if output_path:
        output = Path(output_path)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(resolved.page.model_dump(mode="json"), indent=2) + "\n", encoding="utf-8")
        except PermissionError:
            error(f"Cannot write to: {output}")
            raise SystemExit(EXIT_SYSTEM_ERROR) from None
        success(f"Merged page written to {output}")
