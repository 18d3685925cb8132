"""strata-core: Layered page composition for strata.

This package provides:
- PageDefinition and friends: Canonical IR schemas
- Compiler: Authored documents -> checksummed CompiledArtifact
- Publisher: Content-addressed store, manifest and atomic pointer swap
- Registry: Live layer lookup per request context
- Resolver: Overlay fold producing a fingerprinted merged page
- Evaluator: Access control, data fetching and prop resolution -> RenderModel
- StrataConfig / ConfigResolver: strata.yaml configuration
- JSON Schema export utilities
"""

from __future__ import annotations

__version__ = "0.1.0"

from strata_core.compiler import (
    AuthoringLoader,
    CompilationReport,
    CompiledArtifact,
    Compiler,
    ReasonCode,
    Transformer,
    ValidationIssue,
    Validator,
)
from strata_core.config import ConfigResolver, StrataConfig
from strata_core.errors import (
    CompileError,
    ConfigurationError,
    DanglingOverlayTargetError,
    DataSourceError,
    LayerNotFoundError,
    PublishError,
    ResolutionError,
    StorageError,
    StrataError,
)
from strata_core.evaluator import (
    ActionRef,
    EvaluationIssue,
    Evaluator,
    HttpDataSourceClient,
    RenderModel,
    ServiceDispatcher,
    Unavailable,
)
from strata_core.export import (
    export_all_schemas,
    export_compiled_artifact_schema,
    export_config_schema,
    export_page_schema,
)
from strata_core.publisher import Publisher, PublishResult
from strata_core.registry import LayerSet, ManifestWatcher, Registry, RegistrySnapshot
from strata_core.resolver import ResolvedPage, Resolver
from strata_core.schemas import (
    LayerKey,
    PageDefinition,
    RequestContext,
    ViewerContext,
)

__all__ = [
    "__version__",
    # Compiler
    "AuthoringLoader",
    "CompilationReport",
    "CompiledArtifact",
    "Compiler",
    "ReasonCode",
    "Transformer",
    "ValidationIssue",
    "Validator",
    # Runtime
    "Publisher",
    "PublishResult",
    "Registry",
    "RegistrySnapshot",
    "LayerSet",
    "ManifestWatcher",
    "Resolver",
    "ResolvedPage",
    "Evaluator",
    "HttpDataSourceClient",
    "ServiceDispatcher",
    "RenderModel",
    "EvaluationIssue",
    "Unavailable",
    "ActionRef",
    # Configuration
    "ConfigResolver",
    "StrataConfig",
    # Errors
    "StrataError",
    "CompileError",
    "PublishError",
    "LayerNotFoundError",
    "ResolutionError",
    "DanglingOverlayTargetError",
    "StorageError",
    "ConfigurationError",
    "DataSourceError",
    # JSON Schema exports
    "export_all_schemas",
    "export_compiled_artifact_schema",
    "export_config_schema",
    "export_page_schema",
    # Schemas
    "LayerKey",
    "PageDefinition",
    "RequestContext",
    "ViewerContext",
]
