"""Contract alias table.

Bindings reference data source fields indirectly through contract aliases
(``stats.count``). The table mapping ``"<source>.<alias>"`` to
``(source_id, field_path)`` is built once at compile time, so runtime
resolution is a plain dictionary lookup.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from strata_core.schemas.page import PageDefinition

AliasTable = dict[str, tuple[str, str]]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def lookup_path(value: Any, path: str | None) -> Any:
    """Follow a dot path (``data.items.0.name``) into nested mappings and lists.

    Returns:
        The value found, or ``MISSING`` when any segment does not resolve.
        An empty path returns ``value`` itself.
    """
    if not path:
        return value
    current = value
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not segment.isdigit() or int(segment) >= len(current):
                return MISSING
            current = current[int(segment)]
        else:
            return MISSING
    return current


def split_alias(alias: str) -> tuple[str, str] | None:
    """Split ``"source.field"`` into its parts.

    Returns:
        ``(source_id, field)`` or None when the alias has no dot or an empty part.
    """
    source_id, dot, field = alias.partition(".")
    if not dot or not source_id or not field:
        return None
    return source_id, field


def build_alias_table(page: PageDefinition) -> AliasTable:
    """Build the contract alias table of a page, sorted by alias.

    Example:
        >>> table = build_alias_table(page)
        >>> table["stats.count"]
        ('stats', 'data.count')
    """
    table: AliasTable = {}
    for source in page.data_sources:
        for alias, field_path in source.contract.items():
            table[f"{source.id}.{alias}"] = (source.id, field_path)
    return dict(sorted(table.items()))
