"""Compiler class for strata.

The Compiler turns authored documents into CompiledArtifacts:

- Transformer: node tree -> canonical IR (structural issues)
- Validator: IR -> issues (structural, referential, versioning, access control)
- Checksum: SHA-256 over the canonical JSON of the IR
- Packaging: layer key, alias table, provenance metadata

Compilation is pure and deterministic: the same document always yields the
same checksum. Timestamps and source paths live in metadata only.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from strata_core.compiler.aliases import build_alias_table
from strata_core.compiler.checksum import compute_checksum
from strata_core.compiler.issues import ROOT_NODE, ReasonCode, ValidationIssue
from strata_core.compiler.loader import AuthoredDocument, AuthoringLoader, load_document
from strata_core.compiler.models import (
    ArtifactMetadata,
    CompilationFailure,
    CompilationReport,
    CompiledArtifact,
)
from strata_core.compiler.transformer import Transformer
from strata_core.compiler.validator import Validator
from strata_core.errors import CompileError
from strata_core.observability import span
from strata_core.schemas.manifest import LayerKey
from strata_core.schemas.page import PageDefinition

logger = structlog.get_logger(__name__)

# Package version recorded in artifact metadata
STRATA_CORE_VERSION = "0.1.0"

PriorVersionLookup = Callable[[str], str | None]


class Compiler:
    """Compile authored page documents to CompiledArtifacts.

    Attributes:
        prior_versions: Lookup of the live content version of a layer key,
            used for the no-regression check (usually ``Publisher.live_version``).

    Example:
        >>> compiler = Compiler()
        >>> artifact = compiler.compile_file(Path("authoring/home.yaml"))
        >>> artifact.checksum
        '9f2c...'

        >>> report = Compiler(prior_versions=publisher.live_version).compile_tree("authoring")
        >>> [a.layer_key for a in report.artifacts]
    """

    def __init__(
        self,
        prior_versions: PriorVersionLookup | None = None,
        *,
        transformer: Transformer | None = None,
        validator: Validator | None = None,
    ) -> None:
        self.prior_versions = prior_versions
        self.transformer = transformer or Transformer()
        self.validator = validator or Validator()

    def compile(
        self,
        document: Any,
        source_path: str | None = None,
        base: PageDefinition | None = None,
        *,
        source_hash: str | None = None,
    ) -> CompiledArtifact:
        """Compile one parsed document.

        Args:
            document: Parsed node tree of the authoring document.
            source_path: Authoring file path (metadata and error context only).
            base: Blueprint IR an overlay is validated against, if known.
            source_hash: SHA-256 of the raw authoring file, if known.

        Returns:
            Immutable CompiledArtifact.

        Raises:
            CompileError: If transformation or validation finds any issue.
        """
        with span("strata.compile", attributes={"strata.source_path": source_path or ""}):
            ir = self.transformer.transform(document, source_path)
            return self._package(ir, source_path, base, source_hash)

    def compile_file(self, path: Path | str, base: PageDefinition | None = None) -> CompiledArtifact:
        """Parse and compile one authoring file.

        Raises:
            FileNotFoundError: If the file does not exist.
            CompileError: If the file cannot be parsed or compiled.
        """
        authored = load_document(path)
        return self.compile(authored.content, authored.source_path, base, source_hash=authored.source_hash)

    def compile_tree(
        self,
        authoring_dir: Path | str,
        bases: Mapping[tuple[str, str], PageDefinition] | None = None,
    ) -> CompilationReport:
        """Compile every document below an authoring directory in one batch.

        Blueprints are compiled first so overlays are validated against the
        blueprint of their module/route. Blueprints that are not part of the
        batch can be supplied through ``bases``.

        Args:
            authoring_dir: Root of the authoring tree.
            bases: Already-published blueprints keyed by ``(module, route)``.

        Returns:
            CompilationReport with the artifacts and per-file failures.
        """
        loader = AuthoringLoader(authoring_dir)
        failures: list[CompilationFailure] = []
        transformed: list[tuple[AuthoredDocument, PageDefinition]] = []

        with span("strata.compile_tree", attributes={"strata.authoring_dir": str(authoring_dir)}):
            for path in loader.collect():
                try:
                    authored = loader.load_document(path)
                    ir = self.transformer.transform(authored.content, authored.source_path)
                except CompileError as exc:
                    failures.append(_failure(loader.relative(path), exc))
                    continue
                transformed.append((authored, ir))

            # Blueprints first, then overlays; authoring order within each kind
            transformed.sort(key=lambda item: item[1].is_overlay)
            known: dict[tuple[str, str], PageDefinition] = dict(bases or {})
            seen_keys: dict[str, str] = {}
            artifacts: list[CompiledArtifact] = []

            for authored, ir in transformed:
                base = known.get((ir.module, ir.route)) if ir.is_overlay else None
                try:
                    artifact = self._package(ir, authored.source_path, base, authored.source_hash)
                except CompileError as exc:
                    failures.append(_failure(authored.source_path, exc))
                    continue
                if artifact.layer_key in seen_keys:
                    issue = ValidationIssue(
                        node_id=ROOT_NODE,
                        reason=ReasonCode.DUPLICATE_ID,
                        message=f"layer key {artifact.layer_key} is also defined in {seen_keys[artifact.layer_key]}",
                    )
                    error = CompileError([issue], source_path=authored.source_path)
                    failures.append(_failure(authored.source_path, error))
                    continue
                seen_keys[artifact.layer_key] = authored.source_path
                if not ir.is_overlay:
                    known[(ir.module, ir.route)] = ir
                artifacts.append(artifact)

        logger.info(
            "tree_compiled",
            authoring_dir=str(authoring_dir),
            artifacts=len(artifacts),
            failures=len(failures),
        )
        return CompilationReport(artifacts=tuple(artifacts), failures=tuple(failures))

    def _package(
        self,
        ir: PageDefinition,
        source_path: str | None,
        base: PageDefinition | None,
        source_hash: str | None,
    ) -> CompiledArtifact:
        layer_key = _layer_key(ir)
        prior = self.prior_versions(layer_key) if self.prior_versions and layer_key else None
        result = self.validator.validate(ir, base=base, prior_version=prior)
        result.raise_for_issues(source_path)
        if layer_key is None:
            issue = ValidationIssue(
                node_id=ROOT_NODE,
                reason=ReasonCode.MALFORMED_NODE,
                message="module, route and scope values must not contain '::'",
            )
            raise CompileError([issue], source_path=source_path)

        checksum = compute_checksum(ir)
        artifact = CompiledArtifact(
            layer_key=layer_key,
            checksum=checksum,
            schema_version=ir.schema_version,
            content_version=ir.content_version,
            ir=ir,
            alias_table=build_alias_table(ir),
            metadata=ArtifactMetadata(
                compiled_at=datetime.now(UTC),
                strata_core_version=STRATA_CORE_VERSION,
                source_path=source_path,
                source_hash=source_hash,
            ),
        )
        logger.info(
            "artifact_compiled",
            layer_key=layer_key,
            checksum=checksum,
            content_version=ir.content_version,
            source_path=source_path,
        )
        return artifact


def _layer_key(ir: PageDefinition) -> str | None:
    try:
        return str(LayerKey.for_page(ir))
    except ValidationError:
        return None


def _failure(source_path: str, exc: CompileError) -> CompilationFailure:
    return CompilationFailure(source_path=source_path, message=str(exc), issues=exc.issues)
