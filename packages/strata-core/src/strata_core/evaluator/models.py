"""Evaluator output models.

A RenderModel mirrors the merged page with every prop resolved and every
denied node removed. Values that could not be produced are Unavailable
markers rather than errors, so the renderer decides how to degrade.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class UnavailableReason(str, Enum):
    """Why a value could not be produced."""

    DATA_SOURCE_FAILED = "data_source_failed"
    DATA_SOURCE_TIMEOUT = "data_source_timeout"
    DATA_SOURCE_DENIED = "data_source_denied"
    UNKNOWN_DATA_SOURCE = "unknown_data_source"
    UNKNOWN_ALIAS = "unknown_alias"
    MISSING_FIELD = "missing_field"
    EXPRESSION_ERROR = "expression_error"
    ACTION_UNAVAILABLE = "action_unavailable"


class IssueCode(str, Enum):
    """Codes of evaluation issues."""

    DATA_SOURCE_FAILED = "data_source_failed"
    DATA_SOURCE_TIMEOUT = "data_source_timeout"
    UNKNOWN_ALIAS = "unknown_alias"
    UNKNOWN_DATA_SOURCE = "unknown_data_source"
    MISSING_FIELD = "missing_field"
    EXPRESSION_ERROR = "expression_error"
    UNKNOWN_ACTION = "unknown_action"


class DataSourceStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"
    DENIED = "denied"


class Unavailable(BaseModel):
    """Marker for a value that could not be produced.

    Attributes:
        reason: Why the value is missing.
        source: Data source involved, if any.
        path: Field path or alias involved, if any.
        fallback: Author-supplied fallback hint, if any.

    Example:
        >>> Unavailable(reason=UnavailableReason.DATA_SOURCE_TIMEOUT, source="stats", path="data.count")
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["unavailable"] = "unavailable"
    reason: UnavailableReason
    source: str | None = None
    path: str | None = None
    fallback: Any = None


class ActionRef(BaseModel):
    """Reference from a prop to a materialized action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["action"] = "action"
    action_id: str
    kind: str


class EvaluationIssue(BaseModel):
    """A recorded, non-fatal evaluation problem.

    Attributes:
        node_id: Component, data source or action id.
        prop: Prop name, when the issue concerns one prop.
        code: Issue code.
        message: Human-readable description.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    node_id: str
    prop: str | None = None
    code: IssueCode
    message: str


class DataSourceState(BaseModel):
    """Outcome of one data source fetch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    kind: str
    status: DataSourceStatus
    error: str | None = None
    duration_ms: float = Field(default=0.0, ge=0)


class RenderedComponent(BaseModel):
    """A visible component with resolved prop values."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    type: str
    namespace: str
    version: str | None = None
    parent: str | None = None
    props: dict[str, Any] = Field(default_factory=dict)


class RenderedRegion(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    components: tuple[RenderedComponent, ...] = ()

    def component(self, component_id: str) -> RenderedComponent | None:
        return next((c for c in self.components if c.id == component_id), None)


class RenderedAction(BaseModel):
    """A visible action with its config resolved. Never executed here."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    kind: str
    config: dict[str, Any] = Field(default_factory=dict)


class RenderModel(BaseModel):
    """Evaluated page handed to the renderer.

    Attributes:
        module: Application module.
        route: Route within the module.
        title: Page title.
        fingerprint: Resolution fingerprint, when evaluated from a resolved page.
        layers: Contributing layer keys, when known.
        regions: Visible regions and components.
        actions: Visible actions.
        data_sources: Per-source fetch status.
        issues: Recorded evaluation issues.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    module: str
    route: str
    title: str | None = None
    fingerprint: str | None = None
    layers: tuple[str, ...] = ()
    regions: tuple[RenderedRegion, ...] = ()
    actions: tuple[RenderedAction, ...] = ()
    data_sources: tuple[DataSourceState, ...] = ()
    issues: tuple[EvaluationIssue, ...] = ()

    def region(self, region_id: str) -> RenderedRegion | None:
        return next((r for r in self.regions if r.id == region_id), None)

    def find_component(self, component_id: str) -> RenderedComponent | None:
        for region in self.regions:
            found = region.component(component_id)
            if found is not None:
                return found
        return None

    def data_source(self, source_id: str) -> DataSourceState | None:
        return next((s for s in self.data_sources if s.id == source_id), None)
