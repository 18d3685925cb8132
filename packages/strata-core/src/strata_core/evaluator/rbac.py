"""Role-based visibility filtering.

Directives are evaluated against the viewer's role and entitlement sets:

1. a role in ``deny`` hides the node
2. otherwise, when ``allow`` is present, the node needs at least one of its roles
3. every code in ``features`` must be entitled
4. no directive means visible

A hidden component hides its whole subtree.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from strata_core.schemas.context import ViewerContext
from strata_core.schemas.page import Action, Component, DataSource, PageDefinition, RBACDirective, Region

NodeT = TypeVar("NodeT", DataSource, Action)


def is_visible(directive: RBACDirective | None, viewer: ViewerContext) -> bool:
    """Decide whether a node with ``directive`` is visible to ``viewer``.

    Example:
        >>> viewer = ViewerContext(roles={"staff"})
        >>> is_visible(RBACDirective(allow=("staff", "admin")), viewer)
        True
        >>> is_visible(RBACDirective(allow=("staff",), deny=("staff",)), viewer)
        False
    """
    if directive is None:
        return True
    if directive.deny and viewer.roles.intersection(directive.deny):
        return False
    if directive.allow is not None and not viewer.roles.intersection(directive.allow):
        return False
    return not directive.features or set(directive.features) <= viewer.entitlements


@dataclass(frozen=True)
class VisiblePage:
    """The parts of a page a viewer may see.

    Attributes:
        regions: Regions with their visible components, in order.
        data_sources: Visible data sources.
        actions: Visible actions.
        hidden_components: Ids of removed components, descendants included.
        hidden_sources: Ids of data sources the viewer may not fetch.
        hidden_actions: Ids of actions the viewer may not see.
    """

    regions: tuple[tuple[Region, tuple[Component, ...]], ...]
    data_sources: tuple[DataSource, ...]
    actions: tuple[Action, ...]
    hidden_components: frozenset[str] = field(default_factory=frozenset)
    hidden_sources: frozenset[str] = field(default_factory=frozenset)
    hidden_actions: frozenset[str] = field(default_factory=frozenset)


def _split(nodes: Iterable[NodeT], viewer: ViewerContext) -> tuple[tuple[NodeT, ...], frozenset[str]]:
    visible: list[NodeT] = []
    hidden: set[str] = set()
    for node in nodes:
        if is_visible(node.rbac, viewer):
            visible.append(node)
        else:
            hidden.add(node.id)
    return tuple(visible), frozenset(hidden)


def filter_page(page: PageDefinition, viewer: ViewerContext) -> VisiblePage:
    """Apply access control to a whole page."""
    hidden: set[str] = set()
    regions = []
    for region in page.regions:
        kept = []
        for component in region.components:
            if component.parent in hidden or not is_visible(component.rbac, viewer):
                hidden.add(component.id)
            else:
                kept.append(component)
        regions.append((region, tuple(kept)))

    data_sources, hidden_sources = _split(page.data_sources, viewer)
    actions, hidden_actions = _split(page.actions, viewer)
    return VisiblePage(
        regions=tuple(regions),
        data_sources=data_sources,
        actions=actions,
        hidden_components=frozenset(hidden),
        hidden_sources=hidden_sources,
        hidden_actions=hidden_actions,
    )
