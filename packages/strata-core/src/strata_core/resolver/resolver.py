"""Resolve a blueprint and its overlays into one page.

Resolution is a left fold of ``apply_overlay`` over the overlays in
application order. The result carries a fingerprint: SHA-256 over the
merged tree plus every contributing layer's checksum, in order. Equal
inputs always give an equal fingerprint, so it doubles as a cache key.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import reduce
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.compiler.aliases import build_alias_table
from strata_core.compiler.checksum import compute_checksum
from strata_core.compiler.models import CompiledArtifact
from strata_core.errors import ResolutionError
from strata_core.observability import span
from strata_core.resolver.merge import apply_overlay
from strata_core.schemas.page import PageDefinition

if TYPE_CHECKING:
    from strata_core.registry.registry import Registry
    from strata_core.schemas.context import RequestContext

logger = structlog.get_logger(__name__)


class ResolvedPage(BaseModel):
    """A merged page ready for evaluation.

    Attributes:
        page: Merged page definition.
        fingerprint: SHA-256 over the merged page and the layer checksums.
        layers: Contributing layer keys, blueprint first.
        checksums: Contributing layer checksums, in the same order.
        alias_table: Contract alias table of the merged page.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    page: PageDefinition
    fingerprint: str = Field(..., min_length=64, max_length=64, description="Resolution fingerprint")
    layers: tuple[str, ...] = Field(..., min_length=1, description="Layer keys in application order")
    checksums: tuple[str, ...] = Field(..., min_length=1, description="Layer checksums in application order")
    alias_table: dict[str, tuple[str, str]] = Field(default_factory=dict, description="Contract alias table")


def fingerprint(page: PageDefinition, checksums: Sequence[str]) -> str:
    """Fingerprint a merged page together with its layer checksums."""
    return compute_checksum({"page": page.model_dump(mode="json"), "layers": list(checksums)})


class Resolver:
    """Fold overlays onto a blueprint.

    The resolver holds no state; ``resolve`` is a pure function of its
    inputs.

    Example:
        >>> resolved = Resolver().resolve(blueprint, [tenant_overlay, role_overlay])
        >>> resolved.layers
        ('blueprint::global::core::home::-::-::-', 'overlay::acme::core::home::-::-::-', ...)
    """

    def resolve(self, blueprint: CompiledArtifact, overlays: Sequence[CompiledArtifact] = ()) -> ResolvedPage:
        """Merge ``overlays`` onto ``blueprint`` in order.

        Args:
            blueprint: Compiled blueprint.
            overlays: Compiled overlays in application order.

        Returns:
            ResolvedPage with the merged tree and its fingerprint.

        Raises:
            ResolutionError: If ``blueprint`` is not a blueprint or an overlay
                targets a different page.
            DanglingOverlayTargetError: If a patch targets an absent node. The
                whole resolution fails.
        """
        if blueprint.ir.is_overlay:
            raise ResolutionError(f"Layer {blueprint.layer_key} is not a blueprint")
        for overlay in overlays:
            if (overlay.ir.module, overlay.ir.route) != (blueprint.ir.module, blueprint.ir.route):
                raise ResolutionError(
                    f"Overlay {overlay.layer_key} does not belong to {blueprint.ir.module}/{blueprint.ir.route}"
                )

        layers = (blueprint.layer_key, *(o.layer_key for o in overlays))
        with span("strata.resolve", attributes={"strata.blueprint": blueprint.layer_key, "strata.layers": len(layers)}):
            page = reduce(
                lambda merged, overlay: apply_overlay(merged, overlay.ir, overlay.layer_key),
                overlays,
                blueprint.ir,
            )
            checksums = (blueprint.checksum, *(o.checksum for o in overlays))
            resolved = ResolvedPage(
                page=page,
                fingerprint=fingerprint(page, checksums),
                layers=layers,
                checksums=checksums,
                alias_table=build_alias_table(page),
            )

        logger.info("page_resolved", layers=list(layers), fingerprint=resolved.fingerprint)
        return resolved

    def resolve_request(self, registry: Registry, context: RequestContext) -> ResolvedPage:
        """Look up the layers for ``context`` in ``registry`` and resolve them.

        Raises:
            LayerNotFoundError: If no blueprint is live for the module/route.
            DanglingOverlayTargetError: If a patch targets an absent node.
        """
        layer_set = registry.resolve_layers(context)
        blueprint, overlays = registry.load_layers(layer_set)
        return self.resolve(blueprint, overlays)
