"""Runtime registry of live layers.

The Registry answers "which layers apply to this request?" from an
immutable RegistrySnapshot built from the pointer store, and loads the
compiled artifacts behind a LayerSet.

Example:
    >>> registry = Registry.from_store_root(Path(".strata/store"))
    >>> registry.refresh()
    >>> layers = registry.resolve_layers(context)
    >>> blueprint, overlays = registry.load_layers(layers)
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from pathlib import Path

import structlog

from strata_core.compiler.models import CompiledArtifact
from strata_core.errors import LayerNotFoundError, StorageError, StrataError
from strata_core.observability import span
from strata_core.publisher.store import (
    ArtifactStore,
    ArtifactStoreProtocol,
    PointerStore,
    PointerStoreProtocol,
)
from strata_core.registry.snapshot import LayerSet, RegistrySnapshot
from strata_core.schemas.context import RequestContext
from strata_core.schemas.manifest import RegistryPointer

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_SIZE = 256


class Registry:
    """Serve layer sets from the live pointer store.

    Reads go through the current snapshot reference; ``refresh()`` builds a
    new snapshot off to the side and swaps it in. Readers holding the old
    snapshot keep a consistent view.

    Attributes:
        pointers: Pointer store the snapshot is built from.
        artifacts: Artifact store compiled layers are loaded from.
    """

    def __init__(
        self,
        pointers: PointerStoreProtocol,
        artifacts: ArtifactStoreProtocol,
        *,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.pointers = pointers
        self.artifacts = artifacts
        self._snapshot = RegistrySnapshot.empty()
        self._refresh_lock = threading.Lock()
        self._cache: OrderedDict[str, CompiledArtifact] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._cache_size = cache_size
        self._poll_stop: threading.Event | None = None
        self._poll_thread: threading.Thread | None = None

    @classmethod
    def from_store_root(cls, store_root: Path | str, *, cache_size: int = DEFAULT_CACHE_SIZE) -> Registry:
        """Create a registry over the filesystem stores below ``store_root``."""
        root = Path(store_root)
        return cls(PointerStore(root), ArtifactStore(root), cache_size=cache_size)

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def refresh(self) -> RegistrySnapshot:
        """Rebuild the snapshot from the pointer store and swap it in.

        Returns:
            The new snapshot.

        Raises:
            StorageError: If a pointer cannot be read. The previous
                snapshot stays in place.
        """
        with self._refresh_lock, span("strata.registry.refresh", log_start=False):
            pointers = self.pointers.all()
            snapshot = RegistrySnapshot.build(pointers, generation=self._snapshot.generation + 1)
            self._snapshot = snapshot
        logger.info("registry_refreshed", generation=snapshot.generation, layers=snapshot.layer_count)
        return snapshot

    def resolve_layers(self, context: RequestContext) -> LayerSet:
        """Select the blueprint and matching overlays for ``context``.

        A registry that was never refreshed refreshes once first.

        Raises:
            LayerNotFoundError: If no blueprint is live for the module/route.
        """
        snapshot = self._snapshot
        if snapshot.generation == 0:
            snapshot = self.refresh()
        layer_set = snapshot.select(context)
        if layer_set is None:
            raise LayerNotFoundError(context.module, context.route)
        logger.debug(
            "layers_resolved",
            module=context.module,
            route=context.route,
            tenant=context.tenant,
            layers=layer_set.layer_keys,
            generation=layer_set.generation,
        )
        return layer_set

    def load_layers(self, layer_set: LayerSet) -> tuple[CompiledArtifact, list[CompiledArtifact]]:
        """Load the compiled artifacts behind a layer set.

        Returns:
            ``(blueprint, overlays)`` with overlays in application order.

        Raises:
            StorageError: If an artifact is missing or does not carry the
                checksum its pointer names.
        """
        blueprint = self.load_artifact(layer_set.blueprint)
        overlays = [self.load_artifact(pointer) for pointer in layer_set.overlays]
        return blueprint, overlays

    def load_artifact(self, pointer: RegistryPointer) -> CompiledArtifact:
        """Load one artifact, served from the checksum cache when possible."""
        with self._cache_lock:
            cached = self._cache.get(pointer.checksum)
            if cached is not None:
                self._cache.move_to_end(pointer.checksum)
                return cached

        artifact = self.artifacts.get(pointer.artifact_ref)
        if artifact.checksum != pointer.checksum:
            raise StorageError(
                f"Artifact for {pointer.layer_key} does not match its pointer checksum",
                path=pointer.artifact_ref,
                internal_details=f"expected={pointer.checksum} actual={artifact.checksum}",
            )

        with self._cache_lock:
            self._cache[pointer.checksum] = artifact
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return artifact

    def start_polling(self, interval_seconds: float) -> None:
        """Refresh the snapshot every ``interval_seconds`` on a daemon thread.

        Raises:
            ValueError: If the interval is not positive.
            RuntimeError: If polling is already running.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._poll_thread is not None:
            raise RuntimeError("Registry polling is already running")
        stop = threading.Event()
        thread = threading.Thread(
            target=self._poll,
            args=(stop, interval_seconds),
            name="strata-registry-poll",
            daemon=True,
        )
        self._poll_stop = stop
        self._poll_thread = thread
        thread.start()
        logger.info("registry_polling_started", interval_seconds=interval_seconds)

    def stop_polling(self) -> None:
        """Stop the polling thread. Safe to call when not polling."""
        if self._poll_stop is None or self._poll_thread is None:
            return
        self._poll_stop.set()
        self._poll_thread.join(timeout=5.0)
        self._poll_stop = None
        self._poll_thread = None
        logger.info("registry_polling_stopped")

    def _poll(self, stop: threading.Event, interval_seconds: float) -> None:
        while not stop.wait(interval_seconds):
            try:
                self.refresh()
            except StrataError as exc:
                # Keep serving the previous snapshot
                logger.warning("registry_poll_failed", error=exc.user_message)
