"""Overlay application.

``apply_overlay`` takes a page and one overlay and returns a new page; the
inputs are never modified. Work happens on a JSON-shaped copy of the page
that is validated back into a PageDefinition at the end of each overlay,
so every fold step yields a fresh immutable tree.

Patch semantics:

- region merge: new components (which must carry a type) are appended;
  components already in the region merge their props by name
- component merge: fields are replaced, props merge by name, payload
  children are merged in place or inserted after the target's subtree
- data source merge: ``contract``, ``config`` and ``request`` mappings
  shallow-merge, other fields are replaced
- action merge: config props merge by name
- replace substitutes the whole target subtree
- remove deletes the target subtree
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from strata_core.errors import DanglingOverlayTargetError, ResolutionError
from strata_core.schemas.page import (
    OverlayPatch,
    PageDefinition,
    PatchOperation,
    PatchTarget,
)

logger = structlog.get_logger(__name__)

Node = dict[str, Any]

_MAPPING_FIELDS = frozenset({"contract", "config", "request"})


def merge_named(existing: list[Node], incoming: list[Node], key: str = "name") -> list[Node]:
    """Merge two named lists: same-named entries are overridden in place, new ones appended.

    Example:
        >>> merge_named([{"name": "a", "value": 1}, {"name": "b", "value": 2}],
        ...             [{"name": "b", "value": 3}, {"name": "c", "value": 4}])
        [{'name': 'a', 'value': 1}, {'name': 'b', 'value': 3}, {'name': 'c', 'value': 4}]
    """
    merged = list(existing)
    positions = {item[key]: index for index, item in enumerate(merged)}
    for item in incoming:
        index = positions.get(item[key])
        if index is None:
            positions[item[key]] = len(merged)
            merged.append(item)
        else:
            merged[index] = item
    return merged


class _Page:
    """Mutable JSON view of a page used while one overlay is applied."""

    def __init__(self, page: PageDefinition, layer_key: str) -> None:
        self.data: Node = page.model_dump(mode="json")
        self.layer_key = layer_key

    # -- lookups -----------------------------------------------------------

    @property
    def regions(self) -> list[Node]:
        return self.data["regions"]

    def region(self, region_id: str) -> Node | None:
        return next((r for r in self.regions if r["id"] == region_id), None)

    def locate(self, component_id: str) -> tuple[Node, int] | None:
        for region in self.regions:
            for index, component in enumerate(region["components"]):
                if component["id"] == component_id:
                    return region, index
        return None

    def subtree(self, component_id: str) -> set[str]:
        parents = {c["id"]: c.get("parent") for r in self.regions for c in r["components"]}
        found = {component_id}
        changed = True
        while changed:
            changed = False
            for child, parent in parents.items():
                if parent in found and child not in found:
                    found.add(child)
                    changed = True
        return found

    def named(self, collection: str, node_id: str) -> int | None:
        return next((i for i, node in enumerate(self.data[collection]) if node["id"] == node_id), None)

    def dangling(self, patch: OverlayPatch) -> DanglingOverlayTargetError:
        return DanglingOverlayTargetError(self.layer_key, patch.target.value, patch.target_id)

    def duplicate(self, what: str, node_id: str) -> ResolutionError:
        return ResolutionError(f"Overlay {self.layer_key} declares {what} '{node_id}' which already exists")

    # -- component helpers -------------------------------------------------

    def drop(self, ids: set[str]) -> None:
        for region in self.regions:
            region["components"] = [c for c in region["components"] if c["id"] not in ids]

    def insert_after_subtree(self, region: Node, anchor_id: str, component: Node) -> None:
        members = self.subtree(anchor_id)
        components = region["components"]
        last = max((i for i, c in enumerate(components) if c["id"] in members), default=len(components) - 1)
        components.insert(last + 1, component)

    def place(self, region: Node, component: Node, default_anchor: str | None) -> None:
        """Merge ``component`` into an existing node, or insert it under its parent."""
        located = self.locate(component["id"])
        if located is not None:
            owner, index = located
            if owner is not region:
                raise self.duplicate("component", component["id"])
            merge_component_fields(owner["components"][index], component, props_only=True)
            return
        if component.get("type") is None:
            raise ResolutionError(
                f"Overlay {self.layer_key} adds component '{component['id']}' without a type"
            )
        anchor = component.get("parent") or default_anchor
        if anchor is not None and any(c["id"] == anchor for c in region["components"]):
            self.insert_after_subtree(region, anchor, component)
        else:
            region["components"].append(component)


def merge_component_fields(target: Node, payload: Node, *, props_only: bool = False) -> None:
    """Merge a component payload into ``target`` in place.

    With ``props_only`` only props, rbac and version are taken from the
    payload; type and namespace of the existing component are kept.
    """
    for key, value in payload.items():
        if key in ("id", "children"):
            continue
        if key == "props":
            target["props"] = merge_named(target.get("props", []), value)
        elif props_only and key not in ("rbac", "version"):
            continue
        else:
            target[key] = value


# -- declarations ------------------------------------------------------------


def _declare(page: _Page, overlay: PageDefinition) -> None:
    """Add the regions, data sources and actions an overlay declares."""
    existing_components = {c["id"] for r in page.regions for c in r["components"]}
    for region in overlay.regions:
        if page.region(region.id) is not None:
            raise page.duplicate("region", region.id)
        for component in region.components:
            if component.id in existing_components:
                raise page.duplicate("component", component.id)
        page.regions.append(region.model_dump(mode="json"))

    for collection, nodes, what in (
        ("data_sources", overlay.data_sources, "data source"),
        ("actions", overlay.actions, "action"),
    ):
        for node in nodes:
            if page.named(collection, node.id) is not None:
                raise page.duplicate(what, node.id)
            page.data[collection].append(node.model_dump(mode="json"))

    page.data["constants"] = {**page.data["constants"], **overlay.constants}
    if overlay.title is not None:
        page.data["title"] = overlay.title


# -- patches -----------------------------------------------------------------


def _patch_region(page: _Page, patch: OverlayPatch) -> None:
    region = page.region(patch.target_id)
    if region is None:
        raise page.dangling(patch)
    if patch.operation is PatchOperation.REMOVE:
        page.regions.remove(region)
        return

    incoming = list((patch.payload or {}).get("components", []))
    if patch.operation is PatchOperation.REPLACE:
        region["components"] = []
    for component in incoming:
        page.place(region, component, default_anchor=None)


def _patch_component(page: _Page, patch: OverlayPatch) -> None:
    located = page.locate(patch.target_id)
    if located is None:
        raise page.dangling(patch)
    region, index = located
    payload = dict(patch.payload or {})
    children = payload.pop("children", [])

    if patch.operation is PatchOperation.REMOVE:
        page.drop(page.subtree(patch.target_id))
        return

    if patch.operation is PatchOperation.REPLACE:
        original = region["components"][index]
        page.drop(page.subtree(patch.target_id) - {patch.target_id})
        index = next(i for i, c in enumerate(region["components"]) if c["id"] == patch.target_id)
        region["components"][index] = {"parent": original.get("parent"), **payload, "id": patch.target_id}
    else:
        merge_component_fields(region["components"][index], payload)

    for child in children:
        page.place(region, child, default_anchor=patch.target_id)


def _patch_named(collection: str, merge: Callable[[Node, Node], None]) -> Callable[[_Page, OverlayPatch], None]:
    def apply(page: _Page, patch: OverlayPatch) -> None:
        index = page.named(collection, patch.target_id)
        if index is None:
            raise page.dangling(patch)
        nodes = page.data[collection]
        if patch.operation is PatchOperation.REMOVE:
            del nodes[index]
        elif patch.operation is PatchOperation.REPLACE:
            nodes[index] = {**(patch.payload or {}), "id": patch.target_id}
        else:
            merge(nodes[index], patch.payload or {})

    return apply


def _merge_data_source(target: Node, payload: Node) -> None:
    for key, value in payload.items():
        if key in _MAPPING_FIELDS and isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key] = {**target[key], **value}
        else:
            target[key] = value


def _merge_action(target: Node, payload: Node) -> None:
    for key, value in payload.items():
        if key == "config":
            target["config"] = merge_named(target.get("config", []), value)
        else:
            target[key] = value


_PATCHERS: dict[PatchTarget, Callable[[_Page, OverlayPatch], None]] = {
    PatchTarget.REGION: _patch_region,
    PatchTarget.COMPONENT: _patch_component,
    PatchTarget.DATA_SOURCE: _patch_named("data_sources", _merge_data_source),
    PatchTarget.ACTION: _patch_named("actions", _merge_action),
}


def apply_overlay(page: PageDefinition, overlay: PageDefinition, layer_key: str) -> PageDefinition:
    """Apply one overlay to ``page`` and return the merged page.

    Declarations are added first, then patches run in authoring order.

    Args:
        page: Page to patch (a blueprint or an earlier fold result).
        overlay: Overlay IR.
        layer_key: Overlay layer key, used in error messages.

    Returns:
        New PageDefinition; ``page`` is not modified.

    Raises:
        DanglingOverlayTargetError: If a patch targets an absent node.
        ResolutionError: If a declaration collides with an existing id or
            the merged tree is not a valid page.
    """
    if not overlay.is_overlay:
        raise ResolutionError(f"Layer {layer_key} is not an overlay")

    working = _Page(page, layer_key)
    _declare(working, overlay)
    for patch in overlay.patches:
        _PATCHERS[patch.target](working, patch)

    working.data["data_sources"].sort(key=lambda node: node["id"])
    working.data["actions"].sort(key=lambda node: node["id"])
    try:
        merged = PageDefinition.model_validate(working.data)
    except ValidationError as exc:
        raise ResolutionError(
            f"Overlay {layer_key} produces an invalid page",
            internal_details=str(exc),
        ) from exc

    logger.debug("overlay_applied", layer_key=layer_key, patches=len(overlay.patches))
    return merged
