"""strata render command - Evaluate a page for a viewer."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from strata_cli.errors import EXIT_SYSTEM_ERROR, fail
from strata_cli.output import error, info, print_table, success, warning
from strata_cli.settings import build_request_context, config_option, context_options, load_config, verbose_option

if TYPE_CHECKING:
    from strata_core.config import StrataConfig
    from strata_core.evaluator import RenderModel
    from strata_core.resolver import ResolvedPage
    from strata_core.schemas.context import ViewerContext


async def _evaluate(resolved: ResolvedPage, viewer: ViewerContext, config: StrataConfig) -> RenderModel:
    from strata_core.evaluator import Evaluator, HttpDataSourceClient, ServiceDispatcher

    async with HttpDataSourceClient(retry=config.retry) as http:
        evaluator = Evaluator(http, ServiceDispatcher(), config=config.evaluation)
        return await evaluator.evaluate(resolved, viewer)


@click.command()
@context_options
@click.option("-e", "--entitlement", "entitlements", multiple=True, help="Viewer entitlement (repeatable).")
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the render model as JSON to this file.",
)
@config_option
@verbose_option
def render(
    module: str,
    route: str,
    tenant: str | None,
    roles: tuple[str, ...],
    variant: str | None,
    locale: str | None,
    store_root: str | None,
    entitlements: tuple[str, ...],
    output_path: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Resolve and evaluate a page for a viewer.

    Data sources are fetched; http sources use the retry settings of
    strata.yaml. Service data sources have no handlers from the command
    line and are reported as failed.

    Examples:

        strata render -m members -r list --role staff

        strata render -m members -r list -t acme --role admin -e beta -o render.json
    """
    config = load_config(config_path, verbose=verbose)
    store = Path(store_root) if store_root else config.store_root

    import asyncio

    from strata_core.errors import StrataError
    from strata_core.registry import Registry
    from strata_core.resolver import Resolver
    from strata_core.schemas.context import ViewerContext

    context = build_request_context(module, route, tenant, roles, variant, locale)
    try:
        resolved = Resolver().resolve_request(Registry.from_store_root(store), context)
    except StrataError as exc:
        fail(exc)

    viewer = ViewerContext.from_request(context, frozenset(entitlements))
    model = asyncio.run(_evaluate(resolved, viewer, config))

    print_table(
        "Components",
        ["Region", "Component", "Type"],
        [(region.id, c.id, c.type) for region in model.regions for c in region.components],
    )
    if model.issues:
        print_table(
            "Issues",
            ["Node", "Prop", "Code", "Message"],
            [(i.node_id, i.prop, i.code.value, i.message) for i in model.issues],
        )
        warning(f"{len(model.issues)} issue(s) during evaluation")
    info(f"Fingerprint: {model.fingerprint}")

    if output_path:
        output = Path(output_path)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(model.model_dump_json(indent=2) + "\n", encoding="utf-8")
        except PermissionError:
            error(f"Cannot write to: {output}")
            raise SystemExit(EXIT_SYSTEM_ERROR) from None
        success(f"Render model written to {output}")
