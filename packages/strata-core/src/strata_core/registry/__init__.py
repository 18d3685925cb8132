"""Registry module for strata.

This module provides:
- Registry: Live layer lookup over the pointer store, artifact loading
- RegistrySnapshot / LayerSet: Immutable snapshot and per-request layer selection
- ManifestWatcher: watchdog-based refresh on pointer changes
"""

from __future__ import annotations

from strata_core.registry.registry import Registry
from strata_core.registry.snapshot import (
    CATEGORY_RANK,
    LayerSet,
    RegistrySnapshot,
    overlay_matches,
    precedence,
)
from strata_core.registry.watcher import ManifestWatcher, WatcherError, WatcherState

__all__ = [
    "CATEGORY_RANK",
    "LayerSet",
    "ManifestWatcher",
    "Registry",
    "RegistrySnapshot",
    "WatcherError",
    "WatcherState",
    "overlay_matches",
    "precedence",
]
