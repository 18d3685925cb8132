"""Schema definitions for strata.

This module exports the canonical IR and the models around it:

Page IR:
- PageDefinition: Root node of a blueprint or overlay
- Region, Component, Prop: Layout tree
- DataSource, HttpRequest: Page data sources
- Action: Page action descriptors
- RBACDirective: Access-control directive
- OverlayPatch: One merge/replace/remove patch
- ComponentMerge: Component entry of a region merge payload

Publishing:
- LayerKey: Identity of a compiled document
- ManifestEntry, Manifest: Catalog of published artifacts
- RegistryPointer: Live entry of a layer key

Request:
- RequestContext: Layer selection attributes
- ViewerContext: Roles and entitlements used for access control
"""

from __future__ import annotations

from strata_core.schemas.context import RequestContext, ViewerContext
from strata_core.schemas.manifest import (
    LayerKey,
    Manifest,
    ManifestEntry,
    RegistryPointer,
)
from strata_core.schemas.page import (
    Action,
    Component,
    ComponentMerge,
    DataSource,
    DataSourceKind,
    HttpRequest,
    LayerScope,
    OverlayPatch,
    PageDefinition,
    PageKind,
    PatchOperation,
    PatchTarget,
    Prop,
    PropKind,
    RBACDirective,
    Region,
)

__all__ = [
    # Page IR
    "Action",
    "Component",
    "ComponentMerge",
    "DataSource",
    "DataSourceKind",
    "HttpRequest",
    "LayerScope",
    "OverlayPatch",
    "PageDefinition",
    "PageKind",
    "PatchOperation",
    "PatchTarget",
    "Prop",
    "PropKind",
    "RBACDirective",
    "Region",
    # Publishing
    "LayerKey",
    "Manifest",
    "ManifestEntry",
    "RegistryPointer",
    # Request
    "RequestContext",
    "ViewerContext",
]
