"""Canonical IR for page definitions.

This module defines the typed tree produced by compilation. Every other
component reads or writes these models:

- PageDefinition: Root node (blueprint or overlay)
- Region / Component / Prop: Layout tree
- DataSource / Action: Page-level declarations
- RBACDirective: Access-control directive attached to nodes
- OverlayPatch: One merge/replace/remove patch of an overlay

All models are immutable (frozen=True) and reject unknown fields
(extra="forbid"). Collections are tuples so a published IR cannot be
mutated in place.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Page, region, component, data source and action ids
NODE_ID_PATTERN = r"^[A-Za-z0-9_][A-Za-z0-9_.:-]*$"


class PageKind(str, Enum):
    """Kind of authored document."""

    BLUEPRINT = "blueprint"
    OVERLAY = "overlay"


class PropKind(str, Enum):
    """How a prop value is produced at evaluation time."""

    STATIC = "static"
    BINDING = "binding"
    EXPRESSION = "expression"
    ACTION = "action"


class DataSourceKind(str, Enum):
    """Execution strategy of a data source."""

    STATIC = "static"
    HTTP = "http"
    SERVICE = "service"


class PatchTarget(str, Enum):
    """Node type an overlay patch addresses."""

    REGION = "region"
    COMPONENT = "component"
    DATA_SOURCE = "data_source"
    ACTION = "action"


class PatchOperation(str, Enum):
    """Overlay patch operation."""

    MERGE = "merge"
    REPLACE = "replace"
    REMOVE = "remove"


class RBACDirective(BaseModel):
    """Access-control directive attached to a component, data source or action.

    Roles are evaluated as sets: ``deny`` wins over ``allow``, and an absent
    ``allow`` list means visible by default. ``features`` lists entitlement
    codes the viewer must hold.

    Attributes:
        allow: Roles allowed to see the node (None = no allow list).
        deny: Roles that never see the node (None = no deny list).
        features: Entitlement codes required to see the node.

    Example:
        >>> RBACDirective(allow=("admin", "staff"), deny=("guest",))
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allow: tuple[str, ...] | None = Field(
        default=None,
        description="Roles allowed to see the node",
    )
    deny: tuple[str, ...] | None = Field(
        default=None,
        description="Roles denied from seeing the node",
    )
    features: tuple[str, ...] | None = Field(
        default=None,
        description="Entitlement codes required to see the node",
    )


class Prop(BaseModel):
    """A named component or action property.

    Exactly one payload shape is used depending on ``kind``:

    - static: ``value``
    - binding: ``contract`` alias (``dataSourceId.field``) or ``source`` + ``path``
    - expression: ``expression`` source text
    - action: ``action`` id

    Attributes:
        name: Property name (unique within its owner).
        kind: Prop kind.
        value: Literal value for static props.
        contract: Contract alias for binding props.
        source: Data source id for explicit bindings.
        path: Dot path into the data source value for explicit bindings.
        fallback: Author-suggested fallback, reported alongside unavailable values.
        expression: Expression source text.
        action: Referenced action id.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Property name")
    kind: PropKind = Field(..., description="Prop kind")
    value: Any = Field(default=None, description="Static value")
    contract: str | None = Field(default=None, description="Contract alias (source.field)")
    source: str | None = Field(default=None, description="Explicit binding data source id")
    path: str | None = Field(default=None, description="Explicit binding field path")
    fallback: Any = Field(default=None, description="Fallback hint for unavailable bindings")
    expression: str | None = Field(default=None, description="Expression source text")
    action: str | None = Field(default=None, description="Referenced action id")

    @model_validator(mode="after")
    def _check_shape(self) -> Prop:
        if self.kind is PropKind.BINDING:
            if not self.contract and not self.source:
                raise ValueError(f"binding prop '{self.name}' needs a contract alias or a source")
            if self.contract and self.source:
                raise ValueError(f"binding prop '{self.name}' cannot set both contract and source")
        elif self.kind is PropKind.EXPRESSION and not self.expression:
            raise ValueError(f"expression prop '{self.name}' has no expression")
        elif self.kind is PropKind.ACTION and not self.action:
            raise ValueError(f"action prop '{self.name}' has no action id")
        return self


class Component(BaseModel):
    """A renderable component placed in a region.

    Nested authoring markup is flattened: child components follow their
    parent in the region's ordered list and carry the parent's id.

    Attributes:
        id: Component id (unique within the page).
        type: Component type in the renderer's component registry.
        namespace: Component registry namespace.
        version: Optional component version.
        props: Ordered props.
        rbac: Optional access-control directive.
        parent: Parent component id for nested components.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, pattern=NODE_ID_PATTERN, description="Component id")
    type: str = Field(..., min_length=1, description="Component type")
    namespace: str = Field(default="core", min_length=1, description="Component namespace")
    version: str | None = Field(default=None, description="Component version")
    props: tuple[Prop, ...] = Field(default=(), description="Ordered props")
    rbac: RBACDirective | None = Field(default=None, description="Access-control directive")
    parent: str | None = Field(default=None, description="Parent component id")

    def prop(self, name: str) -> Prop | None:
        """Return the prop called ``name``, if any."""
        for prop in self.props:
            if prop.name == name:
                return prop
        return None


class ComponentMerge(BaseModel):
    """Component entry of a region merge payload.

    Entries whose id already lives in the region only contribute props,
    rbac and version, so ``type`` may be omitted. A new id needs a type.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, pattern=NODE_ID_PATTERN, description="Component id")
    type: str | None = Field(default=None, min_length=1, description="Component type (new components)")
    namespace: str | None = Field(default=None, min_length=1, description="Component namespace")
    version: str | None = Field(default=None, description="Component version")
    props: tuple[Prop, ...] = Field(default=(), description="Props merged by name")
    rbac: RBACDirective | None = Field(default=None, description="Access-control directive")
    parent: str | None = Field(default=None, description="Parent component id")


class Region(BaseModel):
    """A named layout region holding an ordered list of components."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, pattern=NODE_ID_PATTERN, description="Region id")
    components: tuple[Component, ...] = Field(default=(), description="Ordered components")


class HttpRequest(BaseModel):
    """Request descriptor for ``http`` data sources."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., min_length=1, description="Request URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    params: dict[str, Any] = Field(default_factory=dict, description="Query parameters")
    body: Any = Field(default=None, description="JSON request body")


class DataSource(BaseModel):
    """A page data source.

    Attributes:
        id: Data source id (unique within the page).
        kind: static, http or service.
        contract: Named field aliases exposed to bindings (alias -> field path).
        value: Inline payload for static sources.
        request: Request descriptor for http sources.
        handler: Named handler for service sources.
        config: Handler configuration for service sources.
        timeout_seconds: Per-source fetch timeout override.
        rbac: Optional access-control directive.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, pattern=NODE_ID_PATTERN, description="Data source id")
    kind: DataSourceKind = Field(..., description="Data source kind")
    contract: dict[str, str] = Field(default_factory=dict, description="Alias -> field path")
    value: Any = Field(default=None, description="Inline payload (static)")
    request: HttpRequest | None = Field(default=None, description="Request descriptor (http)")
    handler: str | None = Field(default=None, description="Handler reference (service)")
    config: dict[str, Any] = Field(default_factory=dict, description="Handler configuration")
    timeout_seconds: float | None = Field(default=None, gt=0, le=300, description="Fetch timeout")
    rbac: RBACDirective | None = Field(default=None, description="Access-control directive")

    @model_validator(mode="after")
    def _check_payload(self) -> DataSource:
        if self.kind is DataSourceKind.HTTP and self.request is None:
            raise ValueError(f"http data source '{self.id}' has no request descriptor")
        if self.kind is DataSourceKind.SERVICE and not self.handler:
            raise ValueError(f"service data source '{self.id}' has no handler")
        return self


class Action(BaseModel):
    """A page action descriptor.

    Actions are materialized, never executed: the renderer decides when to
    invoke them. Config entries are props so they can be static, bound or
    computed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, pattern=NODE_ID_PATTERN, description="Action id")
    kind: str = Field(..., min_length=1, description="Action kind")
    config: tuple[Prop, ...] = Field(default=(), description="Kind-specific configuration")
    rbac: RBACDirective | None = Field(default=None, description="Access-control directive")


class LayerScope(BaseModel):
    """Scoping attributes of a layer. Blueprints leave all of them unset."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant: str | None = Field(default=None, description="Tenant scope")
    role: str | None = Field(default=None, description="Role scope")
    variant: str | None = Field(default=None, description="Variant scope")
    locale: str | None = Field(default=None, description="Locale scope")

    @property
    def is_empty(self) -> bool:
        return not (self.tenant or self.role or self.variant or self.locale)

    def dimensions(self) -> dict[str, str]:
        """Return the set scoping attributes, in precedence order."""
        pairs = (
            ("tenant", self.tenant),
            ("role", self.role),
            ("variant", self.variant),
            ("locale", self.locale),
        )
        return {name: value for name, value in pairs if value}


class OverlayPatch(BaseModel):
    """One patch of an overlay.

    ``payload`` is the normalized subtree (component/region/data source/action
    fields) for merge and replace, and absent for remove.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: PatchTarget = Field(..., description="Target node type")
    target_id: str = Field(..., min_length=1, description="Target node id")
    operation: PatchOperation = Field(..., description="Patch operation")
    payload: dict[str, Any] | None = Field(default=None, description="Normalized subtree")

    @model_validator(mode="after")
    def _check_payload(self) -> OverlayPatch:
        if self.operation is PatchOperation.REMOVE and self.payload:
            raise ValueError(f"remove patch for '{self.target_id}' must not carry a payload")
        if self.operation is not PatchOperation.REMOVE and self.payload is None:
            raise ValueError(f"{self.operation.value} patch for '{self.target_id}' needs a payload")
        return self


class PageDefinition(BaseModel):
    """Root node of the canonical IR.

    Attributes:
        kind: blueprint or overlay.
        schema_version: Authoring schema version (semver).
        content_version: Content version (semver).
        module: Application module the page belongs to.
        route: Route within the module.
        scope: Scoping attributes (overlays only).
        page_id: Blueprint page id, the join key overlays reference.
        target_page: Blueprint page id an overlay patches (optional).
        title: Optional page title.
        regions: Ordered layout regions.
        data_sources: Data sources, sorted by id.
        actions: Actions, sorted by id.
        constants: Declared constants exposed to expressions.
        patches: Overlay patches, in authoring order.

    Example:
        >>> page = PageDefinition(
        ...     kind=PageKind.BLUEPRINT,
        ...     schema_version="1.0.0",
        ...     content_version="1.0.0",
        ...     module="core",
        ...     route="home",
        ...     page_id="home",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: PageKind = Field(..., description="Document kind")
    schema_version: str = Field(..., description="Authoring schema version (semver)")
    content_version: str = Field(..., description="Content version (semver)")
    module: str = Field(..., description="Application module")
    route: str = Field(..., description="Route within the module")
    scope: LayerScope = Field(default_factory=LayerScope, description="Scoping attributes")
    page_id: str | None = Field(default=None, description="Blueprint page id")
    target_page: str | None = Field(default=None, description="Blueprint page id patched by an overlay")
    title: str | None = Field(default=None, description="Page title")
    regions: tuple[Region, ...] = Field(default=(), description="Layout regions")
    data_sources: tuple[DataSource, ...] = Field(default=(), description="Data sources")
    actions: tuple[Action, ...] = Field(default=(), description="Actions")
    constants: dict[str, Any] = Field(default_factory=dict, description="Expression constants")
    patches: tuple[OverlayPatch, ...] = Field(default=(), description="Overlay patches")

    @property
    def is_overlay(self) -> bool:
        return self.kind is PageKind.OVERLAY

    def iter_components(self) -> Iterator[tuple[Region, Component]]:
        """Yield ``(region, component)`` pairs in render order."""
        for region in self.regions:
            for component in region.components:
                yield region, component

    def find_component(self, component_id: str) -> tuple[Region, Component] | None:
        """Locate a component and its region by id."""
        for region, component in self.iter_components():
            if component.id == component_id:
                return region, component
        return None

    def region(self, region_id: str) -> Region | None:
        return next((r for r in self.regions if r.id == region_id), None)

    def data_source(self, source_id: str) -> DataSource | None:
        return next((s for s in self.data_sources if s.id == source_id), None)

    def action(self, action_id: str) -> Action | None:
        return next((a for a in self.actions if a.id == action_id), None)

    def declared_ids(self) -> dict[PatchTarget, set[str]]:
        """Return the declared id set of each id namespace."""
        return {
            PatchTarget.REGION: {r.id for r in self.regions},
            PatchTarget.COMPONENT: {c.id for _, c in self.iter_components()},
            PatchTarget.DATA_SOURCE: {s.id for s in self.data_sources},
            PatchTarget.ACTION: {a.id for a in self.actions},
        }
