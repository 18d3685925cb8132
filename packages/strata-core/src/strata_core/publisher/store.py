"""Storage backends for published artifacts.

Three stores back the publisher and the registry:

- ArtifactStore: content-addressed, write-once compiled artifacts
- ManifestStore: the catalog of every published entry
- PointerStore: one live pointer per layer key

The filesystem implementations write through a temp file in the target
directory followed by ``os.replace``, so readers never see a torn file.
Other backends implement the matching protocol.

Layout below ``store_root``::

    artifacts/<checksum[:2]>/<checksum>.json
    manifest.json
    pointers/<url-quoted layer key>.json
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable
from urllib.parse import quote, unquote

import structlog
from pydantic import BaseModel, ValidationError

from strata_core.compiler.models import CompiledArtifact
from strata_core.errors import StorageError
from strata_core.schemas.manifest import Manifest, RegistryPointer

logger = structlog.get_logger(__name__)

MANIFEST_FILE_NAME = "manifest.json"
POINTER_SUFFIX = ".json"

ModelT = TypeVar("ModelT", bound=BaseModel)


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` atomically (temp file + ``os.replace``)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_model(path: Path, model: type[ModelT], what: str) -> ModelT:
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError, ValueError) as exc:
        raise StorageError(f"Unreadable {what}: {path.name}", path=str(path), internal_details=str(exc)) from exc


@runtime_checkable
class ArtifactStoreProtocol(Protocol):
    """Content-addressed artifact storage."""

    def put(self, artifact: CompiledArtifact) -> str:
        """Store an artifact and return its store reference (write-once)."""
        ...

    def get(self, ref: str) -> CompiledArtifact:
        """Load the artifact stored under ``ref``."""
        ...

    def exists(self, checksum: str) -> bool:
        ...


@runtime_checkable
class ManifestStoreProtocol(Protocol):
    """Manifest persistence."""

    def load(self) -> Manifest:
        ...

    def save(self, manifest: Manifest) -> None:
        ...


@runtime_checkable
class PointerStoreProtocol(Protocol):
    """Live pointer per layer key."""

    def get(self, layer_key: str) -> RegistryPointer | None:
        ...

    def put(self, pointer: RegistryPointer) -> None:
        ...

    def all(self) -> list[RegistryPointer]:
        ...


class ArtifactStore:
    """Filesystem content-addressed artifact store.

    Artifacts are keyed by their IR checksum and never overwritten: storing
    an artifact whose checksum already exists is a no-op.

    Example:
        >>> store = ArtifactStore(Path(".strata/store"))
        >>> ref = store.put(artifact)
        >>> store.get(ref).checksum == artifact.checksum
        True
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @staticmethod
    def ref_for(checksum: str) -> str:
        return f"artifacts/{checksum[:2]}/{checksum}.json"

    def exists(self, checksum: str) -> bool:
        return (self.root / self.ref_for(checksum)).is_file()

    def put(self, artifact: CompiledArtifact) -> str:
        ref = self.ref_for(artifact.checksum)
        path = self.root / ref
        if path.is_file():
            logger.debug("artifact_already_stored", checksum=artifact.checksum)
            return ref
        atomic_write_text(path, artifact.model_dump_json(indent=2) + "\n")
        logger.debug("artifact_stored", checksum=artifact.checksum, ref=ref)
        return ref

    def get(self, ref: str) -> CompiledArtifact:
        path = self.root / ref
        if not path.is_file():
            raise StorageError(f"Artifact not found: {ref}", path=str(path))
        return _read_model(path, CompiledArtifact, "artifact")


class ManifestStore:
    """Filesystem manifest store (``manifest.json``, entries sorted by id)."""

    def __init__(self, root: Path | str) -> None:
        self.path = Path(root) / MANIFEST_FILE_NAME

    def load(self) -> Manifest:
        if not self.path.is_file():
            return Manifest()
        return _read_model(self.path, Manifest, "manifest")

    def save(self, manifest: Manifest) -> None:
        data = manifest.model_dump(mode="json")
        data["entries"] = dict(sorted(data["entries"].items()))
        atomic_write_text(self.path, json.dumps(data, indent=2) + "\n")


class PointerStore:
    """Filesystem pointer store, one JSON file per layer key."""

    def __init__(self, root: Path | str) -> None:
        self.directory = Path(root) / "pointers"

    def _path(self, layer_key: str) -> Path:
        return self.directory / f"{quote(layer_key, safe='')}{POINTER_SUFFIX}"

    def get(self, layer_key: str) -> RegistryPointer | None:
        path = self._path(layer_key)
        if not path.is_file():
            return None
        return _read_model(path, RegistryPointer, "pointer")

    def put(self, pointer: RegistryPointer) -> None:
        atomic_write_text(self._path(pointer.layer_key), pointer.model_dump_json(indent=2) + "\n")

    def all(self) -> list[RegistryPointer]:
        """Return every pointer, sorted by layer key."""
        if not self.directory.is_dir():
            return []
        pointers = []
        for path in sorted(self.directory.glob(f"*{POINTER_SUFFIX}")):
            pointer = _read_model(path, RegistryPointer, "pointer")
            if pointer.layer_key != unquote(path.name[: -len(POINTER_SUFFIX)]):
                raise StorageError(f"Pointer file name does not match its layer key: {path.name}", path=str(path))
            pointers.append(pointer)
        return sorted(pointers, key=lambda p: p.layer_key)
