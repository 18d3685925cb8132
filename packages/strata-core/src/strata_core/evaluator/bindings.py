"""Binding resolution against fetched data sources."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from strata_core.compiler.aliases import MISSING, AliasTable, lookup_path
from strata_core.evaluator.datasources import FetchResult
from strata_core.evaluator.models import DataSourceStatus, IssueCode, Unavailable, UnavailableReason
from strata_core.schemas.page import Prop

_STATUS_REASONS = {
    DataSourceStatus.FAILED: UnavailableReason.DATA_SOURCE_FAILED,
    DataSourceStatus.TIMEOUT: UnavailableReason.DATA_SOURCE_TIMEOUT,
    DataSourceStatus.DENIED: UnavailableReason.DATA_SOURCE_DENIED,
}


@dataclass(frozen=True)
class BindingOutcome:
    """Resolved value of a binding prop plus the issue to record, if any."""

    value: Any
    issue: tuple[IssueCode, str] | None = None


def resolve_binding(
    prop: Prop,
    aliases: AliasTable,
    results: Mapping[str, FetchResult],
) -> BindingOutcome:
    """Resolve a binding prop.

    Contract bindings go through the alias table; explicit bindings read
    ``source`` at ``path``. Whatever cannot be read becomes an Unavailable
    marker carrying the prop's fallback. Source failures are reported once
    per source elsewhere, so they produce no issue here.
    """
    if prop.contract:
        target = aliases.get(prop.contract)
        if target is None:
            return BindingOutcome(
                Unavailable(reason=UnavailableReason.UNKNOWN_ALIAS, path=prop.contract, fallback=prop.fallback),
                (IssueCode.UNKNOWN_ALIAS, f"unknown contract alias '{prop.contract}'"),
            )
        source_id, path = target
    else:
        source_id, path = prop.source or "", prop.path or ""

    result = results.get(source_id)
    if result is None:
        return BindingOutcome(
            Unavailable(
                reason=UnavailableReason.UNKNOWN_DATA_SOURCE, source=source_id, path=path, fallback=prop.fallback
            ),
            (IssueCode.UNKNOWN_DATA_SOURCE, f"unknown data source '{source_id}'"),
        )
    if not result.ok:
        return BindingOutcome(
            Unavailable(reason=_STATUS_REASONS[result.status], source=source_id, path=path, fallback=prop.fallback)
        )

    value = lookup_path(result.value, path)
    if value is MISSING:
        return BindingOutcome(
            Unavailable(reason=UnavailableReason.MISSING_FIELD, source=source_id, path=path, fallback=prop.fallback),
            (IssueCode.MISSING_FIELD, f"'{path}' is not present in data source '{source_id}'"),
        )
    return BindingOutcome(value)
