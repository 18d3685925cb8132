"""Publisher module for strata.

This module provides:
- Publisher / PublishResult: Store artifact, record manifest entry, swap pointer
- ArtifactStore / ManifestStore / PointerStore: Filesystem stores
- *StoreProtocol: Interfaces for alternative storage backends
"""

from __future__ import annotations

from strata_core.publisher.publisher import Publisher, PublishResult
from strata_core.publisher.store import (
    ArtifactStore,
    ArtifactStoreProtocol,
    ManifestStore,
    ManifestStoreProtocol,
    PointerStore,
    PointerStoreProtocol,
    atomic_write_text,
)

__all__ = [
    "ArtifactStore",
    "ArtifactStoreProtocol",
    "ManifestStore",
    "ManifestStoreProtocol",
    "PointerStore",
    "PointerStoreProtocol",
    "PublishResult",
    "Publisher",
    "atomic_write_text",
]
