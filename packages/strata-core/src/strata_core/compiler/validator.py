"""Semantic validation of canonical IR.

The Validator checks a transformed PageDefinition and collects every issue
in one pass, grouped in this order:

1. Structural: module/route present, page id for blueprints, scope rules
   (no reserved scope values), unique ids per id namespace
2. Referential: bindings resolve to a declared data source and contract
   field, action props reference declared actions, overlay targets exist in
   the blueprint (when the blueprint is known)
3. Versioning: valid semver, no regression versus the prior version
4. Access control: non-empty role lists, no role both allowed and denied

Any issue is a hard compile-time stop.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.compiler.aliases import MISSING, lookup_path, split_alias
from strata_core.compiler.issues import ROOT_NODE, ReasonCode, ValidationIssue
from strata_core.errors import CompileError
from strata_core.schemas.manifest import RESERVED_SCOPE_VALUES
from strata_core.schemas.page import (
    DataSourceKind,
    PageDefinition,
    PageKind,
    PatchOperation,
    PatchTarget,
    Prop,
    PropKind,
    RBACDirective,
)
from strata_core.versioning import SemVer, is_valid_semver

logger = structlog.get_logger(__name__)


class ValidationResult(BaseModel):
    """Outcome of validating one IR."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    issues: tuple[ValidationIssue, ...] = Field(default=())

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def reasons(self) -> list[ReasonCode]:
        return [issue.reason for issue in self.issues]

    def raise_for_issues(self, source_path: str | None = None) -> None:
        """Raise CompileError if any issue was found."""
        if self.issues:
            raise CompileError(self.issues, source_path=source_path)


class _SourceView:
    """What the validator knows about one data source: kind, contract, inline value."""

    __slots__ = ("kind", "contract", "value")

    def __init__(self, kind: DataSourceKind | None, contract: dict[str, str], value: Any) -> None:
        self.kind = kind
        self.contract = contract
        self.value = value


class _OverlayState:
    """Id sets of a blueprint as an overlay's patches are applied in order."""

    def __init__(self, base: PageDefinition, overlay: PageDefinition) -> None:
        self.regions: dict[str, list[str]] = {}
        self.parents: dict[str, str | None] = {}
        self.sources: dict[str, _SourceView] = {}
        self.actions: set[str] = set()
        for page in (base, overlay):
            for region in page.regions:
                self.regions.setdefault(region.id, [])
                for component in region.components:
                    self.add_component(region.id, component.id, component.parent)
            for source in page.data_sources:
                self.sources[source.id] = _SourceView(source.kind, dict(source.contract), source.value)
            self.actions.update(action.id for action in page.actions)

    def add_component(self, region_id: str, component_id: str, parent: str | None) -> None:
        if component_id not in self.regions[region_id]:
            self.regions[region_id].append(component_id)
        self.parents[component_id] = parent

    def region_of(self, component_id: str) -> str | None:
        return next((rid for rid, ids in self.regions.items() if component_id in ids), None)

    def subtree(self, component_id: str) -> set[str]:
        found = {component_id}
        changed = True
        while changed:
            changed = False
            for child, parent in self.parents.items():
                if parent in found and child not in found:
                    found.add(child)
                    changed = True
        return found

    def drop_components(self, ids: set[str]) -> None:
        for region_id, members in self.regions.items():
            self.regions[region_id] = [cid for cid in members if cid not in ids]
        for cid in ids:
            self.parents.pop(cid, None)

    def exists(self, target: PatchTarget, target_id: str) -> bool:
        if target is PatchTarget.REGION:
            return target_id in self.regions
        if target is PatchTarget.COMPONENT:
            return target_id in self.parents
        if target is PatchTarget.DATA_SOURCE:
            return target_id in self.sources
        return target_id in self.actions


def _payload_components(payload: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not payload:
        return []
    return list(payload.get("components", [])) + list(payload.get("children", []))


class Validator:
    """Validate canonical IR before artifacts are produced.

    Example:
        >>> result = Validator().validate(page)
        >>> if not result.ok:
        ...     for issue in result.issues:
        ...         print(issue)
    """

    def validate(
        self,
        ir: PageDefinition,
        base: PageDefinition | None = None,
        prior_version: str | None = None,
    ) -> ValidationResult:
        """Validate one IR.

        Args:
            ir: Transformed page definition.
            base: Blueprint an overlay patches; enables target and binding checks
                against the blueprint's id sets.
            prior_version: Content version currently live for the layer key.

        Returns:
            ValidationResult with every issue found.
        """
        issues: list[ValidationIssue] = []
        state = _OverlayState(base, ir) if ir.is_overlay and base is not None else None

        issues.extend(self._structural(ir, base))
        if state is not None:
            issues.extend(self._overlay_targets(ir, state))
        issues.extend(self._references(ir, state))
        issues.extend(self._versions(ir, prior_version))
        issues.extend(self._access_control(ir))

        result = ValidationResult(issues=tuple(issues))
        logger.debug(
            "ir_validated",
            module=ir.module,
            route=ir.route,
            kind=ir.kind.value,
            issues=len(result.issues),
        )
        return result

    # -- structural --------------------------------------------------------

    def _structural(self, ir: PageDefinition, base: PageDefinition | None) -> Iterator[ValidationIssue]:
        if not ir.module:
            yield ValidationIssue(node_id=ROOT_NODE, reason=ReasonCode.MISSING_MODULE, message="module is required")
        if not ir.route:
            yield ValidationIssue(node_id=ROOT_NODE, reason=ReasonCode.MISSING_ROUTE, message="route is required")

        if ir.kind is PageKind.BLUEPRINT:
            if not ir.page_id:
                yield ValidationIssue(
                    node_id=ROOT_NODE, reason=ReasonCode.MISSING_PAGE_ID, message="blueprints must declare a page id"
                )
            if not ir.scope.is_empty:
                yield ValidationIssue(
                    node_id=ROOT_NODE,
                    reason=ReasonCode.BLUEPRINT_WITH_SCOPE,
                    message=f"blueprints cannot be scoped ({', '.join(ir.scope.dimensions())})",
                )
        else:
            if ir.scope.is_empty:
                yield ValidationIssue(
                    node_id=ROOT_NODE,
                    reason=ReasonCode.OVERLAY_WITHOUT_SCOPE,
                    message="overlays must target a tenant, role, variant or locale",
                )
            for name, value in ir.scope.dimensions().items():
                if value in RESERVED_SCOPE_VALUES:
                    yield ValidationIssue(
                        node_id=ROOT_NODE,
                        reason=ReasonCode.RESERVED_SCOPE_VALUE,
                        message=f"{name} '{value}' is reserved for unscoped layers",
                    )
            if base is not None and ir.target_page and ir.target_page != base.page_id:
                yield ValidationIssue(
                    node_id=ROOT_NODE,
                    reason=ReasonCode.PAGE_MISMATCH,
                    message=f"overlay targets page '{ir.target_page}' but the blueprint is '{base.page_id}'",
                )

        yield from self._unique_ids(ir, base if ir.is_overlay else None)
        yield from self._parents(ir, base if ir.is_overlay else None)

    def _unique_ids(self, ir: PageDefinition, base: PageDefinition | None) -> Iterator[ValidationIssue]:
        taken = base.declared_ids() if base is not None else {}
        namespaces: list[tuple[PatchTarget, Iterable[str]]] = [
            (PatchTarget.REGION, (r.id for r in ir.regions)),
            (PatchTarget.COMPONENT, (c.id for _, c in ir.iter_components())),
            (PatchTarget.DATA_SOURCE, (s.id for s in ir.data_sources)),
            (PatchTarget.ACTION, (a.id for a in ir.actions)),
        ]
        for target, ids in namespaces:
            label = target.value.replace("_", " ")
            seen = set(taken.get(target, ()))
            for node_id in ids:
                if node_id in seen:
                    yield ValidationIssue(
                        node_id=node_id,
                        reason=ReasonCode.DUPLICATE_ID,
                        message=f"duplicate {label} id '{node_id}'",
                    )
                seen.add(node_id)

    def _parents(self, ir: PageDefinition, base: PageDefinition | None) -> Iterator[ValidationIssue]:
        declared = {c.id for _, c in ir.iter_components()}
        if base is not None:
            declared |= {c.id for _, c in base.iter_components()}
        for _, component in ir.iter_components():
            if component.parent is not None and component.parent not in declared:
                yield ValidationIssue(
                    node_id=component.id,
                    reason=ReasonCode.UNKNOWN_PARENT,
                    message=f"parent component '{component.parent}' is not declared",
                )

    # -- referential -------------------------------------------------------

    def _overlay_targets(self, ir: PageDefinition, state: _OverlayState) -> Iterator[ValidationIssue]:
        for index, patch in enumerate(ir.patches):
            if not state.exists(patch.target, patch.target_id):
                yield ValidationIssue(
                    node_id=patch.target_id,
                    reason=ReasonCode.UNKNOWN_OVERLAY_TARGET,
                    message=(
                        f"patches[{index}] {patch.operation.value}s missing "
                        f"{patch.target.value} '{patch.target_id}'"
                    ),
                )
                continue
            yield from self._apply(patch.target, patch.target_id, patch.operation, patch.payload, state)

    def _apply(
        self,
        target: PatchTarget,
        target_id: str,
        operation: PatchOperation,
        payload: dict[str, Any] | None,
        state: _OverlayState,
    ) -> Iterator[ValidationIssue]:
        if target is PatchTarget.REGION:
            if operation is not PatchOperation.MERGE:
                state.drop_components(set(state.regions[target_id]))
            if operation is PatchOperation.REMOVE:
                del state.regions[target_id]
                return
            for data in _payload_components(payload):
                owner = state.region_of(data["id"])
                if owner is not None and owner != target_id:
                    yield ValidationIssue(
                        node_id=data["id"],
                        reason=ReasonCode.DUPLICATE_ID,
                        message=f"component '{data['id']}' already lives in region '{owner}'",
                    )
                    continue
                if owner == target_id:
                    # merged into the existing component, which keeps its type and parent
                    continue
                if data.get("type") is None:
                    yield ValidationIssue(
                        node_id=data["id"],
                        reason=ReasonCode.MALFORMED_NODE,
                        message=f"new component '{data['id']}' in region '{target_id}' must declare a type",
                    )
                state.add_component(target_id, data["id"], data.get("parent"))
        elif target is PatchTarget.COMPONENT:
            region_id = state.region_of(target_id)
            if region_id is None:
                return
            if operation is PatchOperation.REMOVE:
                state.drop_components(state.subtree(target_id))
                return
            if operation is PatchOperation.REPLACE:
                state.drop_components(state.subtree(target_id) - {target_id})
            for data in _payload_components(payload):
                state.add_component(region_id, data["id"], data.get("parent"))
        elif target is PatchTarget.DATA_SOURCE:
            if operation is PatchOperation.REMOVE:
                del state.sources[target_id]
                return
            payload = payload or {}
            view = state.sources[target_id]
            kind = DataSourceKind(payload["kind"]) if "kind" in payload else None
            if operation is PatchOperation.REPLACE:
                state.sources[target_id] = _SourceView(kind, dict(payload.get("contract", {})), payload.get("value"))
            else:
                view.contract.update(payload.get("contract", {}))
                view.kind = kind or view.kind
                if "value" in payload:
                    view.value = payload["value"]
        elif operation is PatchOperation.REMOVE:
            state.actions.discard(target_id)

    def _references(self, ir: PageDefinition, state: _OverlayState | None) -> Iterator[ValidationIssue]:
        if ir.is_overlay and state is None:
            # Bindings may point at blueprint declarations we cannot see
            return
        if state is not None:
            sources = state.sources
            actions = state.actions
        else:
            sources = {s.id: _SourceView(s.kind, dict(s.contract), s.value) for s in ir.data_sources}
            actions = {a.id for a in ir.actions}

        for node_id, prop in self._iter_props(ir):
            yield from self._check_prop(node_id, prop, sources, actions)

    def _iter_props(self, ir: PageDefinition) -> Iterator[tuple[str, Prop]]:
        for _, component in ir.iter_components():
            for prop in component.props:
                yield f"{component.id}.{prop.name}", prop
        for action in ir.actions:
            for prop in action.config:
                yield f"{action.id}.{prop.name}", prop
        for patch in ir.patches:
            payload = patch.payload or {}
            if patch.target is PatchTarget.COMPONENT and "props" in payload:
                for raw in payload["props"]:
                    yield f"{patch.target_id}.{raw['name']}", Prop.model_validate(raw)
            if patch.target is PatchTarget.ACTION and "config" in payload:
                for raw in payload["config"]:
                    yield f"{patch.target_id}.{raw['name']}", Prop.model_validate(raw)
            for data in _payload_components(payload):
                for raw in data.get("props", ()):
                    yield f"{data['id']}.{raw['name']}", Prop.model_validate(raw)

    def _check_prop(
        self,
        node_id: str,
        prop: Prop,
        sources: dict[str, _SourceView],
        actions: set[str],
    ) -> Iterator[ValidationIssue]:
        if prop.kind is PropKind.ACTION:
            if prop.action not in actions:
                yield ValidationIssue(
                    node_id=node_id,
                    reason=ReasonCode.UNKNOWN_ACTION,
                    message=f"action prop references unknown action '{prop.action}'",
                )
            return
        if prop.kind is not PropKind.BINDING:
            return

        if prop.contract is not None:
            parts = split_alias(prop.contract)
            if parts is None:
                yield ValidationIssue(
                    node_id=node_id,
                    reason=ReasonCode.INVALID_CONTRACT_ALIAS,
                    message=f"contract alias '{prop.contract}' is not of the form 'source.field'",
                )
                return
            source_id, alias = parts
            view = sources.get(source_id)
            if view is None:
                yield ValidationIssue(
                    node_id=node_id,
                    reason=ReasonCode.UNKNOWN_DATA_SOURCE,
                    message=f"binding references unknown data source '{source_id}'",
                )
            elif alias not in view.contract:
                yield ValidationIssue(
                    node_id=node_id,
                    reason=ReasonCode.UNKNOWN_CONTRACT_FIELD,
                    message=f"data source '{source_id}' has no contract field '{alias}'",
                )
            return

        view = sources.get(prop.source or "")
        if view is None:
            yield ValidationIssue(
                node_id=node_id,
                reason=ReasonCode.UNKNOWN_DATA_SOURCE,
                message=f"binding references unknown data source '{prop.source}'",
            )
        elif view.kind is DataSourceKind.STATIC and lookup_path(view.value, prop.path) is MISSING:
            yield ValidationIssue(
                node_id=node_id,
                reason=ReasonCode.UNKNOWN_CONTRACT_FIELD,
                message=f"static data source '{prop.source}' has no field '{prop.path}'",
            )

    # -- versioning --------------------------------------------------------

    def _versions(self, ir: PageDefinition, prior_version: str | None) -> Iterator[ValidationIssue]:
        for field, value in (("schema_version", ir.schema_version), ("content_version", ir.content_version)):
            if not is_valid_semver(value):
                yield ValidationIssue(
                    node_id=ROOT_NODE,
                    reason=ReasonCode.INVALID_SEMVER,
                    message=f"{field} '{value}' is not a semantic version",
                )
        if prior_version and is_valid_semver(prior_version) and is_valid_semver(ir.content_version):
            if SemVer.parse(ir.content_version) < SemVer.parse(prior_version):
                yield ValidationIssue(
                    node_id=ROOT_NODE,
                    reason=ReasonCode.VERSION_REGRESSION,
                    message=f"content_version {ir.content_version} is lower than published {prior_version}",
                )

    # -- access control ----------------------------------------------------

    def _access_control(self, ir: PageDefinition) -> Iterator[ValidationIssue]:
        directives: list[tuple[str, RBACDirective]] = []
        for _, component in ir.iter_components():
            if component.rbac is not None:
                directives.append((component.id, component.rbac))
        for node in (*ir.data_sources, *ir.actions):
            if node.rbac is not None:
                directives.append((node.id, node.rbac))
        for patch in ir.patches:
            payload = patch.payload or {}
            if payload.get("rbac") is not None:
                directives.append((patch.target_id, RBACDirective.model_validate(payload["rbac"])))
            for data in _payload_components(payload):
                if data.get("rbac") is not None:
                    directives.append((data["id"], RBACDirective.model_validate(data["rbac"])))

        for node_id, rbac in directives:
            for label, roles in (("allow", rbac.allow), ("deny", rbac.deny), ("features", rbac.features)):
                if roles is not None and not roles:
                    yield ValidationIssue(
                        node_id=node_id,
                        reason=ReasonCode.EMPTY_ROLE_LIST,
                        message=f"rbac {label} list is empty",
                    )
            conflicting = sorted(set(rbac.allow or ()) & set(rbac.deny or ()))
            if conflicting:
                yield ValidationIssue(
                    node_id=node_id,
                    reason=ReasonCode.CONFLICTING_RBAC_ROLE,
                    message=f"roles both allowed and denied: {', '.join(conflicting)}",
                )
