"""Evaluator module for strata.

This module provides:
- Evaluator: Resolved page + viewer -> RenderModel
- HttpDataSourceClient / ServiceDispatcher / DataSourceFetcher: Data source access
- ExpressionEngine: Sandboxed jinja2 expressions
- is_visible / filter_page: Access control
- RenderModel and friends: Evaluation output
"""

from __future__ import annotations

from strata_core.evaluator.bindings import BindingOutcome, resolve_binding
from strata_core.evaluator.datasources import (
    DataSourceFetcher,
    FetchResult,
    HttpClientProtocol,
    HttpDataSourceClient,
    ServiceDispatcher,
    ServiceDispatcherProtocol,
)
from strata_core.evaluator.evaluator import Evaluator
from strata_core.evaluator.expressions import ExpressionEngine, ExpressionError
from strata_core.evaluator.models import (
    ActionRef,
    DataSourceState,
    DataSourceStatus,
    EvaluationIssue,
    IssueCode,
    RenderedAction,
    RenderedComponent,
    RenderedRegion,
    RenderModel,
    Unavailable,
    UnavailableReason,
)
from strata_core.evaluator.rbac import VisiblePage, filter_page, is_visible

__all__ = [
    "ActionRef",
    "BindingOutcome",
    "DataSourceFetcher",
    "DataSourceState",
    "DataSourceStatus",
    "EvaluationIssue",
    "Evaluator",
    "ExpressionEngine",
    "ExpressionError",
    "FetchResult",
    "HttpClientProtocol",
    "HttpDataSourceClient",
    "IssueCode",
    "RenderModel",
    "RenderedAction",
    "RenderedComponent",
    "RenderedRegion",
    "ServiceDispatcher",
    "ServiceDispatcherProtocol",
    "Unavailable",
    "UnavailableReason",
    "VisiblePage",
    "filter_page",
    "is_visible",
    "resolve_binding",
]
