"""Immutable registry snapshots and layer selection.

A RegistrySnapshot is built from every live pointer and never mutated;
refreshing the registry builds a new snapshot with the next generation
number and swaps the reference, so concurrent readers never see a torn
view.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.schemas.context import RequestContext
from strata_core.schemas.manifest import LayerKey, RegistryPointer

logger = structlog.get_logger(__name__)

# Overlay categories, least to most significant; later categories apply later
CATEGORY_RANK: Mapping[str, int] = MappingProxyType({"tenant": 0, "role": 1, "variant": 2, "locale": 3})


class LayerSet(BaseModel):
    """Layers that apply to one request, in application order.

    Attributes:
        blueprint: Pointer of the blueprint.
        overlays: Matching overlay pointers; later ones win conflicts.
        generation: Generation of the snapshot the set was resolved from.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    blueprint: RegistryPointer
    overlays: tuple[RegistryPointer, ...] = Field(default=())
    generation: int = Field(default=0, ge=0)

    @property
    def layer_keys(self) -> list[str]:
        return [self.blueprint.layer_key, *(p.layer_key for p in self.overlays)]

    @property
    def checksums(self) -> list[str]:
        return [self.blueprint.checksum, *(p.checksum for p in self.overlays)]


def overlay_matches(key: LayerKey, context: RequestContext) -> bool:
    """True when every scoping attribute the overlay sets equals the context value.

    The role dimension matches by membership in the context's role set.
    """
    if key.tenant is not None and key.tenant != context.tenant:
        return False
    if key.role is not None and key.role not in context.roles:
        return False
    if key.variant is not None and key.variant != context.variant:
        return False
    return key.locale is None or key.locale == context.locale


def precedence(key: LayerKey, layer_key: str) -> tuple[int, int, str]:
    """Sort key of an overlay: category rank, dimension count, layer key string."""
    dimensions = key.scope.dimensions()
    rank = max((CATEGORY_RANK[name] for name in dimensions), default=-1)
    return (rank, len(dimensions), layer_key)


@dataclass(frozen=True)
class RegistrySnapshot:
    """Point-in-time view of every live pointer.

    Attributes:
        generation: Monotonic snapshot number (0 = never refreshed).
        created_at: When the snapshot was built.
        blueprints: ``(module, route)`` -> blueprint pointer.
        overlays: ``(module, route)`` -> overlay pointers with their parsed keys.
    """

    generation: int
    created_at: datetime
    blueprints: Mapping[tuple[str, str], RegistryPointer] = field(default_factory=lambda: MappingProxyType({}))
    overlays: Mapping[tuple[str, str], tuple[tuple[LayerKey, RegistryPointer], ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def empty(cls) -> RegistrySnapshot:
        return cls(generation=0, created_at=datetime.now(UTC))

    @classmethod
    def build(cls, pointers: Iterable[RegistryPointer], generation: int) -> RegistrySnapshot:
        blueprints: dict[tuple[str, str], RegistryPointer] = {}
        overlays: dict[tuple[str, str], list[tuple[LayerKey, RegistryPointer]]] = {}
        for pointer in pointers:
            key = LayerKey.parse(pointer.layer_key)
            page = (key.module, key.route)
            if key.is_blueprint:
                blueprints[page] = pointer
            elif key.scope.is_empty:
                # would match every request
                logger.warning("unscoped_overlay_ignored", layer_key=pointer.layer_key)
            else:
                overlays.setdefault(page, []).append((key, pointer))
        return cls(
            generation=generation,
            created_at=datetime.now(UTC),
            blueprints=MappingProxyType(blueprints),
            overlays=MappingProxyType({page: tuple(items) for page, items in overlays.items()}),
        )

    @property
    def layer_count(self) -> int:
        return len(self.blueprints) + sum(len(items) for items in self.overlays.values())

    def select(self, context: RequestContext) -> LayerSet | None:
        """Select the layers applying to ``context``.

        Returns:
            LayerSet, or None when no blueprint exists for the module/route.
        """
        page = (context.module, context.route)
        blueprint = self.blueprints.get(page)
        if blueprint is None:
            return None
        matching = [(key, p) for key, p in self.overlays.get(page, ()) if overlay_matches(key, context)]
        matching.sort(key=lambda item: precedence(item[0], item[1].layer_key))
        return LayerSet(
            blueprint=blueprint,
            overlays=tuple(pointer for _, pointer in matching),
            generation=self.generation,
        )
