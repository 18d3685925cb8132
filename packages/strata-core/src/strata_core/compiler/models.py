"""Compiler output models.

CompiledArtifact is the immutable contract between compilation and the
rest of the pipeline: the publisher stores it, the registry loads it and
the resolver merges its IR.

Version History:
- 1.0.0: Initial artifact format (ir, checksum, alias table, metadata)
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from strata_core.compiler.issues import ValidationIssue
from strata_core.schemas.manifest import LayerKey
from strata_core.schemas.page import PageDefinition

ARTIFACT_FORMAT_VERSION = "1.0.0"


class ArtifactMetadata(BaseModel):
    """Compilation metadata for tracking artifact provenance.

    Metadata is excluded from the checksum, so recompiling identical content
    at another time or from another path yields the same checksum.

    Attributes:
        compiled_at: Timestamp when compilation occurred (UTC).
        strata_core_version: Version of strata-core that produced the artifact.
        source_path: Authoring file the artifact was compiled from.
        source_hash: SHA-256 of the raw authoring file, if compiled from a file.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    compiled_at: datetime = Field(..., description="Timestamp when compilation occurred (UTC)")
    strata_core_version: str = Field(..., min_length=1, description="strata-core version")
    source_path: str | None = Field(default=None, description="Authoring file path")
    source_hash: str | None = Field(default=None, description="SHA-256 of the authoring file")


class CompiledArtifact(BaseModel):
    """Output of compiling one authoring document.

    Attributes:
        version: Artifact format version.
        layer_key: Layer key the artifact is published under.
        checksum: SHA-256 over the canonical JSON of ``ir``.
        schema_version: Authoring schema version (copied from the IR).
        content_version: Content version (copied from the IR).
        ir: Canonical page definition.
        alias_table: Contract alias table, ``"source.alias" -> (source_id, field)``.
        metadata: Compilation provenance.

    Example:
        >>> artifact = Compiler().compile(document)
        >>> artifact.layer_key
        'blueprint::global::core::home::-::-::-'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(default=ARTIFACT_FORMAT_VERSION, description="Artifact format version")
    layer_key: str = Field(..., min_length=1, description="Layer key (string form)")
    checksum: str = Field(..., min_length=64, max_length=64, description="SHA-256 of the canonical IR")
    schema_version: str = Field(..., description="Authoring schema version")
    content_version: str = Field(..., description="Content version")
    ir: PageDefinition = Field(..., description="Canonical page definition")
    alias_table: dict[str, tuple[str, str]] = Field(default_factory=dict, description="Contract alias table")
    metadata: ArtifactMetadata = Field(..., description="Compilation provenance")

    @property
    def key(self) -> LayerKey:
        return LayerKey.parse(self.layer_key)

    @property
    def depends_on(self) -> tuple[str, ...]:
        """Layer keys this artifact depends on (an overlay's blueprint)."""
        if not self.ir.is_overlay:
            return ()
        return (str(LayerKey.blueprint(self.ir.module, self.ir.route)),)


class CompilationFailure(BaseModel):
    """A document of a batch that failed to compile."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_path: str
    message: str
    issues: tuple[ValidationIssue, ...] = ()


class CompilationReport(BaseModel):
    """Result of compiling a whole authoring tree.

    Attributes:
        artifacts: Successfully compiled artifacts, blueprints first.
        failures: Documents that failed, with their issues.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    artifacts: tuple[CompiledArtifact, ...] = ()
    failures: tuple[CompilationFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures
