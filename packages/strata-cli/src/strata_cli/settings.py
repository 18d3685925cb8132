"""Shared options and configuration loading for strata commands."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import click

from strata_cli.errors import fail

if TYPE_CHECKING:
    from strata_core.config import StrataConfig
    from strata_core.schemas.context import RequestContext

F = TypeVar("F", bound=Callable[..., Any])


def config_option(func: F) -> F:
    """Add ``-c/--config`` (path to strata.yaml) to a command."""
    return click.option(
        "-c",
        "--config",
        "config_path",
        type=click.Path(dir_okay=False),
        default=None,
        help="Path to strata.yaml [default: discovered]",
    )(func)


def verbose_option(func: F) -> F:
    return click.option("-v", "--verbose", is_flag=True, default=False, help="Show debug logs.")(func)


def load_config(config_path: str | None, *, verbose: bool = False) -> StrataConfig:
    """Load strata.yaml and configure logging for the command.

    Logs go to stderr at WARNING unless ``verbose`` is set, so command
    output stays readable.
    """
    from strata_core.config import ConfigResolver
    from strata_core.errors import ConfigurationError
    from strata_core.observability import configure_logging

    try:
        config = ConfigResolver().load(Path(config_path) if config_path else None)
    except ConfigurationError as exc:
        fail(exc)

    configure_logging(
        log_level="DEBUG" if verbose else "WARNING",
        json_format=config.logging.json_format,
        add_timestamp=config.logging.json_format,
    )
    return config


def context_options(func: F) -> F:
    """Add the request context options used by ``resolve`` and ``render``."""
    options = [
        click.option("-m", "--module", required=True, help="Application module."),
        click.option("-r", "--route", required=True, help="Route within the module."),
        click.option("-t", "--tenant", default=None, help="Requesting tenant."),
        click.option("--role", "roles", multiple=True, help="Viewer role (repeatable)."),
        click.option("--variant", default=None, help="Variant key."),
        click.option("--locale", default=None, help="Locale."),
        click.option(
            "-s",
            "--store",
            "store_root",
            type=click.Path(file_okay=False),
            default=None,
            help="Store root [default: store_root from strata.yaml]",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_request_context(
    module: str,
    route: str,
    tenant: str | None,
    roles: tuple[str, ...],
    variant: str | None,
    locale: str | None,
) -> RequestContext:
    from strata_core.schemas.context import RequestContext

    return RequestContext(
        tenant=tenant,
        module=module,
        route=route,
        roles=frozenset(roles),
        variant=variant,
        locale=locale,
    )
