"""Compiler module for strata.

This module provides:
- Transformer: Authored node tree -> canonical IR
- Validator / ValidationResult / ValidationIssue / ReasonCode: Semantic checks
- Compiler: Transformer + Validator + checksum -> CompiledArtifact
- AuthoringLoader: Discover and parse authoring files
- CompiledArtifact / ArtifactMetadata / CompilationReport: Output contract
"""

from __future__ import annotations

from strata_core.compiler.aliases import AliasTable, build_alias_table, lookup_path, split_alias
from strata_core.compiler.checksum import canonical_json, compute_checksum
from strata_core.compiler.compiler import STRATA_CORE_VERSION, Compiler
from strata_core.compiler.issues import ReasonCode, ValidationIssue
from strata_core.compiler.loader import AuthoredDocument, AuthoringLoader, load_document
from strata_core.compiler.models import (
    ArtifactMetadata,
    CompilationFailure,
    CompilationReport,
    CompiledArtifact,
)
from strata_core.compiler.transformer import Transformer
from strata_core.compiler.validator import ValidationResult, Validator

__all__ = [
    "AliasTable",
    "ArtifactMetadata",
    "AuthoredDocument",
    "AuthoringLoader",
    "CompilationFailure",
    "CompilationReport",
    "CompiledArtifact",
    "Compiler",
    "ReasonCode",
    "STRATA_CORE_VERSION",
    "Transformer",
    "ValidationIssue",
    "ValidationResult",
    "Validator",
    "build_alias_table",
    "canonical_json",
    "compute_checksum",
    "load_document",
    "lookup_path",
    "split_alias",
]
