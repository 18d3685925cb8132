"""CLI entry point for strata.

The main group loads subcommands lazily so ``strata --help`` stays fast
and does not import strata-core.
"""

from __future__ import annotations

import importlib
from typing import Any

import click
import rich_click as rclick

from strata_cli import __version__
from strata_cli.output import set_no_color

rclick.rich_click.TEXT_MARKUP = "markdown"
rclick.rich_click.SHOW_ARGUMENTS = True
rclick.rich_click.GROUP_ARGUMENTS_OPTIONS = True


class LazyGroup(rclick.RichGroup):
    """Group whose subcommands are ``module.attribute`` paths imported on first use."""

    def __init__(self, *args: Any, lazy_subcommands: dict[str, str] | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.lazy_subcommands: dict[str, str] = dict(lazy_subcommands or {})

    def list_commands(self, ctx: click.Context) -> list[str]:
        return sorted({*super().list_commands(ctx), *self.lazy_subcommands})

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        eager = super().get_command(ctx, cmd_name)  # type: ignore[arg-type]
        target = self.lazy_subcommands.get(cmd_name)
        if eager is not None or target is None:
            return eager
        module_path, _, attribute = target.rpartition(".")
        return getattr(importlib.import_module(module_path), attribute)  # type: ignore[no-any-return]


LAZY_COMMANDS = {
    "validate": "strata_cli.commands.validate.validate",
    "compile": "strata_cli.commands.compile.compile_cmd",
    "publish": "strata_cli.commands.publish.publish",
    "resolve": "strata_cli.commands.resolve.resolve",
    "render": "strata_cli.commands.render.render",
    "schema": "strata_cli.commands.schema.schema",
}


@click.command(cls=LazyGroup, lazy_subcommands=LAZY_COMMANDS)
@click.version_option(version=__version__, prog_name="strata")
@click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable colored output.",
    is_eager=True,
    expose_value=False,
    callback=lambda ctx, param, value: set_no_color(value) if value else None,
)
def cli() -> None:
    """Strata - layered page composition.

    Compile authored pages, publish them, and resolve what a request sees.

    **Getting Started:**

    - `strata validate` - Check authored pages
    - `strata compile` - Write compiled artifacts
    - `strata publish` - Compile and publish into the store
    - `strata resolve` - Show the layers and merged page for a request
    - `strata render` - Evaluate a page for a viewer
    - `strata schema export` - Export JSON Schemas for editor support
    """
    pass


if __name__ == "__main__":
    cli()
