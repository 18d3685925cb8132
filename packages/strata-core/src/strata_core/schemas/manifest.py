"""Layer keys, manifest entries and registry pointers.

A layer key identifies one compiled document. Its string form is stable and
used as the key of the manifest and the pointer store:

    kind::tenant|global::module::route::role|-::variant|-::locale|-
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from strata_core.schemas.page import LayerScope, PageDefinition, PageKind

GLOBAL_TENANT = "global"
UNSET = "-"
SEPARATOR = "::"
RESERVED_SCOPE_VALUES = frozenset({GLOBAL_TENANT, UNSET})


class LayerKey(BaseModel):
    """Identity of one layer: ``(module, route, tenant?, role?, variant?, locale?, kind)``.

    Example:
        >>> key = LayerKey(kind=PageKind.OVERLAY, module="core", route="home", tenant="acme")
        >>> str(key)
        'overlay::acme::core::home::-::-::-'
        >>> LayerKey.parse(str(key)) == key
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: PageKind
    module: str = Field(..., min_length=1)
    route: str = Field(..., min_length=1)
    tenant: str | None = None
    role: str | None = None
    variant: str | None = None
    locale: str | None = None

    @field_validator("module", "route", "tenant", "role", "variant", "locale")
    @classmethod
    def _no_separator(cls, value: str | None) -> str | None:
        if value is not None and SEPARATOR in value:
            raise ValueError(f"'{SEPARATOR}' is not allowed in layer key parts: {value!r}")
        return value

    @field_validator("tenant", "role", "variant", "locale")
    @classmethod
    def _not_reserved(cls, value: str | None) -> str | None:
        # the string form spells unset dimensions with these markers
        if value in RESERVED_SCOPE_VALUES:
            raise ValueError(f"{value!r} is reserved and cannot be used as a scope value")
        return value

    def __str__(self) -> str:
        return SEPARATOR.join(
            (
                self.kind.value,
                self.tenant or GLOBAL_TENANT,
                self.module,
                self.route,
                self.role or UNSET,
                self.variant or UNSET,
                self.locale or UNSET,
            )
        )

    @classmethod
    def parse(cls, text: str) -> LayerKey:
        """Parse the string form of a layer key.

        Raises:
            ValueError: If ``text`` does not have seven ``::`` separated parts.
        """
        parts = text.split(SEPARATOR)
        if len(parts) != 7:
            raise ValueError(f"Malformed layer key: {text!r}")
        kind, tenant, module, route, role, variant, locale = parts
        return cls(
            kind=PageKind(kind),
            module=module,
            route=route,
            tenant=None if tenant == GLOBAL_TENANT else tenant,
            role=None if role == UNSET else role,
            variant=None if variant == UNSET else variant,
            locale=None if locale == UNSET else locale,
        )

    @classmethod
    def for_page(cls, page: PageDefinition) -> LayerKey:
        """Build the layer key of a page definition."""
        return cls(
            kind=page.kind,
            module=page.module,
            route=page.route,
            tenant=page.scope.tenant,
            role=page.scope.role,
            variant=page.scope.variant,
            locale=page.scope.locale,
        )

    @classmethod
    def blueprint(cls, module: str, route: str) -> LayerKey:
        return cls(kind=PageKind.BLUEPRINT, module=module, route=route)

    @property
    def scope(self) -> LayerScope:
        return LayerScope(
            tenant=self.tenant,
            role=self.role,
            variant=self.variant,
            locale=self.locale,
        )

    @property
    def is_blueprint(self) -> bool:
        return self.kind is PageKind.BLUEPRINT


class ManifestEntry(BaseModel):
    """Catalog record of one published artifact.

    Attributes:
        entry_id: Unique entry id (``<layer key>@<content version>``).
        layer_key: String form of the layer key.
        kind: blueprint or overlay.
        artifact_ref: Store-relative path of the artifact.
        checksum: SHA-256 of the canonical IR.
        schema_version: Authoring schema version.
        content_version: Content version.
        compiled_at: Compilation timestamp (UTC).
        source_path: Authoring file the artifact was compiled from.
        depends_on: Layer keys this entry depends on (an overlay's blueprint).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entry_id: str = Field(..., min_length=1)
    layer_key: str = Field(..., min_length=1)
    kind: PageKind
    artifact_ref: str = Field(..., min_length=1)
    checksum: str = Field(..., min_length=64, max_length=64)
    schema_version: str
    content_version: str
    compiled_at: datetime
    source_path: str | None = None
    depends_on: tuple[str, ...] = ()

    @staticmethod
    def make_entry_id(layer_key: str, content_version: str) -> str:
        return f"{layer_key}@{content_version}"


class Manifest(BaseModel):
    """Catalog of every published artifact, keyed by entry id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_version: str = Field(default="1")
    generated_at: datetime | None = None
    entries: dict[str, ManifestEntry] = Field(default_factory=dict)

    def with_entry(self, entry: ManifestEntry, generated_at: datetime) -> Manifest:
        """Return a copy holding ``entry``, with entries sorted by id."""
        entries = dict(self.entries)
        entries[entry.entry_id] = entry
        return Manifest(
            format_version=self.format_version,
            generated_at=generated_at,
            entries=dict(sorted(entries.items())),
        )

    def entries_for(self, layer_key: str) -> list[ManifestEntry]:
        """Return every entry published under ``layer_key``."""
        return [e for e in self.entries.values() if e.layer_key == layer_key]


class RegistryPointer(BaseModel):
    """Live entry of one layer key, swapped atomically on publish."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    layer_key: str = Field(..., min_length=1)
    entry_id: str = Field(..., min_length=1)
    checksum: str = Field(..., min_length=64, max_length=64)
    content_version: str
    artifact_ref: str = Field(..., min_length=1)
    updated_at: datetime
