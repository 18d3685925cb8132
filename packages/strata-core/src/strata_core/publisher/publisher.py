"""Artifact publishing.

Publishing one artifact is three steps:

1. write the artifact to the content-addressed store (write-once)
2. add its entry to the manifest
3. atomically swap the layer key's pointer to the new entry

Steps 1 and 2 both succeed before step 3 runs. On any failure the pointer
keeps its prior value and PublishError is raised, so the previous version
stays live and the publish can be retried.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.compiler.checksum import compute_checksum
from strata_core.compiler.models import CompiledArtifact
from strata_core.errors import PublishError, StorageError
from strata_core.observability import span
from strata_core.publisher.store import (
    ArtifactStore,
    ArtifactStoreProtocol,
    ManifestStore,
    ManifestStoreProtocol,
    PointerStore,
    PointerStoreProtocol,
)
from strata_core.schemas.manifest import Manifest, ManifestEntry, RegistryPointer
from strata_core.versioning import compare_versions

logger = structlog.get_logger(__name__)


class PublishResult(BaseModel):
    """Outcome of publishing one artifact.

    Attributes:
        layer_key: Layer key the artifact was published under.
        entry_id: Manifest entry id now live for the layer key.
        checksum: Artifact checksum.
        content_version: Published content version.
        artifact_ref: Store reference of the artifact.
        changed: False when the publish was an idempotent no-op.
        previous_entry_id: Entry id the pointer held before, if any.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    layer_key: str
    entry_id: str
    checksum: str
    content_version: str
    artifact_ref: str
    changed: bool = Field(default=True)
    previous_entry_id: str | None = None


class Publisher:
    """Publish compiled artifacts into artifact, manifest and pointer stores.

    Publishes to the same layer key are serialized by a per-key lock;
    publishes to different keys only share the short manifest update.

    Example:
        >>> publisher = Publisher(Path(".strata/store"))
        >>> result = publisher.publish(artifact)
        >>> result.entry_id
        'blueprint::global::core::home::-::-::-@1.0.0'

        >>> # Republishing the same content is a no-op
        >>> publisher.publish(artifact).changed
        False
    """

    def __init__(
        self,
        store_root: Path | str | None = None,
        *,
        artifacts: ArtifactStoreProtocol | None = None,
        manifest: ManifestStoreProtocol | None = None,
        pointers: PointerStoreProtocol | None = None,
    ) -> None:
        """Initialize the Publisher.

        Args:
            store_root: Root directory of the filesystem stores. Required
                unless every store is passed explicitly.
            artifacts: Artifact store override.
            manifest: Manifest store override.
            pointers: Pointer store override.

        Raises:
            ValueError: If a store is missing and no ``store_root`` is given.
        """
        if store_root is None and None in (artifacts, manifest, pointers):
            raise ValueError("store_root is required unless all stores are provided")
        root = Path(store_root) if store_root is not None else Path()
        self.artifacts: ArtifactStoreProtocol = artifacts or ArtifactStore(root)
        self.manifest: ManifestStoreProtocol = manifest or ManifestStore(root)
        self.pointers: PointerStoreProtocol = pointers or PointerStore(root)
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._manifest_lock = threading.Lock()

    def _lock_for(self, layer_key: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(layer_key, threading.Lock())

    def live_version(self, layer_key: str) -> str | None:
        """Return the content version the pointer of ``layer_key`` holds, if any."""
        pointer = self.pointers.get(layer_key)
        return pointer.content_version if pointer else None

    def load_manifest(self) -> Manifest:
        return self.manifest.load()

    def publish(self, artifact: CompiledArtifact) -> PublishResult:
        """Publish one artifact.

        Args:
            artifact: Compiled artifact to publish.

        Returns:
            PublishResult describing the live entry.

        Raises:
            PublishError: On version regression, a different artifact under the
                live content version, a checksum mismatch or a storage failure.
                The pointer is left unchanged.
        """
        attributes = {"strata.layer_key": artifact.layer_key, "strata.checksum": artifact.checksum}
        with span("strata.publish", attributes=attributes), self._lock_for(artifact.layer_key):
            return self._publish_locked(artifact)

    def publish_many(self, artifacts: Iterable[CompiledArtifact]) -> list[PublishResult]:
        """Publish a batch, blueprints before overlays.

        Stops at the first failure; artifacts published before it stay live.
        """
        ordered = sorted(artifacts, key=lambda a: a.ir.is_overlay)
        return [self.publish(artifact) for artifact in ordered]

    def _publish_locked(self, artifact: CompiledArtifact) -> PublishResult:
        key = artifact.layer_key
        if compute_checksum(artifact.ir) != artifact.checksum:
            raise PublishError(
                f"Artifact checksum does not match its content for {key}",
                layer_key=key,
                reason="checksum_mismatch",
            )

        current = self._current_pointer(key)
        if current is not None:
            order = compare_versions(artifact.content_version, current.content_version)
            if order < 0:
                raise PublishError(
                    f"Refusing to publish {key} {artifact.content_version}: "
                    f"version {current.content_version} is already live",
                    layer_key=key,
                    reason="version_regression",
                )
            if order == 0:
                if current.checksum == artifact.checksum:
                    logger.info("publish_unchanged", layer_key=key, entry_id=current.entry_id)
                    return PublishResult(
                        layer_key=key,
                        entry_id=current.entry_id,
                        checksum=current.checksum,
                        content_version=current.content_version,
                        artifact_ref=current.artifact_ref,
                        changed=False,
                        previous_entry_id=current.entry_id,
                    )
                raise PublishError(
                    f"Different content already published for {key} at version {artifact.content_version}",
                    layer_key=key,
                    reason="version_conflict",
                )

        now = datetime.now(UTC)
        entry_id = ManifestEntry.make_entry_id(key, artifact.content_version)
        try:
            ref = self.artifacts.put(artifact)
            entry = ManifestEntry(
                entry_id=entry_id,
                layer_key=key,
                kind=artifact.ir.kind,
                artifact_ref=ref,
                checksum=artifact.checksum,
                schema_version=artifact.schema_version,
                content_version=artifact.content_version,
                compiled_at=artifact.metadata.compiled_at,
                source_path=artifact.metadata.source_path,
                depends_on=artifact.depends_on,
            )
            self._record(entry, now)
            pointer = RegistryPointer(
                layer_key=key,
                entry_id=entry_id,
                checksum=artifact.checksum,
                content_version=artifact.content_version,
                artifact_ref=ref,
                updated_at=now,
            )
            self.pointers.put(pointer)
        except (OSError, StorageError) as exc:
            raise PublishError(
                f"Could not publish {key}; the previous version stays live",
                layer_key=key,
                reason="storage_failure",
                internal_details=str(exc),
            ) from exc

        logger.info(
            "artifact_published",
            layer_key=key,
            entry_id=entry_id,
            checksum=artifact.checksum,
            previous_entry_id=current.entry_id if current else None,
        )
        return PublishResult(
            layer_key=key,
            entry_id=entry_id,
            checksum=artifact.checksum,
            content_version=artifact.content_version,
            artifact_ref=ref,
            previous_entry_id=current.entry_id if current else None,
        )

    def _current_pointer(self, layer_key: str) -> RegistryPointer | None:
        try:
            return self.pointers.get(layer_key)
        except StorageError as exc:
            raise PublishError(
                f"Could not read the live pointer of {layer_key}",
                layer_key=layer_key,
                reason="storage_failure",
                internal_details=str(exc),
            ) from exc

    def _record(self, entry: ManifestEntry, now: datetime) -> None:
        with self._manifest_lock:
            manifest = self.manifest.load()
            existing = manifest.entries.get(entry.entry_id)
            if existing is not None:
                if existing.checksum != entry.checksum:
                    raise PublishError(
                        f"Manifest already holds different content for {entry.entry_id}",
                        layer_key=entry.layer_key,
                        reason="version_conflict",
                    )
                # Same content recorded by an earlier, interrupted publish
                return
            self.manifest.save(manifest.with_entry(entry, now))
