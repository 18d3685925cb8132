"""Resolver module for strata.

This module provides:
- Resolver / ResolvedPage: Fold overlays onto a blueprint, fingerprint the result
- apply_overlay: Apply one overlay to a page
"""

from __future__ import annotations

from strata_core.resolver.merge import apply_overlay, merge_named
from strata_core.resolver.resolver import ResolvedPage, Resolver, fingerprint

__all__ = [
    "ResolvedPage",
    "Resolver",
    "apply_overlay",
    "fingerprint",
    "merge_named",
]
