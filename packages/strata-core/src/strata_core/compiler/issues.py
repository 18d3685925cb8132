"""Typed compile issues shared by the transformer and the validator."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ReasonCode(str, Enum):
    """Machine-readable reason of a compile issue."""

    # Structural
    MALFORMED_NODE = "malformed_node"
    UNKNOWN_VALUE = "unknown_value"
    MISSING_MODULE = "missing_module"
    MISSING_ROUTE = "missing_route"
    MISSING_PAGE_ID = "missing_page_id"
    OVERLAY_WITHOUT_SCOPE = "overlay_without_scope"
    BLUEPRINT_WITH_SCOPE = "blueprint_with_scope"
    RESERVED_SCOPE_VALUE = "reserved_scope_value"
    DUPLICATE_ID = "duplicate_id"
    # Referential
    UNKNOWN_DATA_SOURCE = "unknown_data_source"
    UNKNOWN_CONTRACT_FIELD = "unknown_contract_field"
    INVALID_CONTRACT_ALIAS = "invalid_contract_alias"
    UNKNOWN_ACTION = "unknown_action"
    UNKNOWN_PARENT = "unknown_parent"
    UNKNOWN_OVERLAY_TARGET = "unknown_overlay_target"
    PAGE_MISMATCH = "page_mismatch"
    # Versioning
    INVALID_SEMVER = "invalid_semver"
    VERSION_REGRESSION = "version_regression"
    # Access control
    EMPTY_ROLE_LIST = "empty_role_list"
    CONFLICTING_RBAC_ROLE = "conflicting_rbac_role"


class ValidationIssue(BaseModel):
    """One problem found in an authored document.

    Attributes:
        node_id: Id (or path) of the offending node; ``<page>`` for the root.
        reason: Reason code.
        message: Human-readable description.

    Example:
        >>> ValidationIssue(
        ...     node_id="hero.title",
        ...     reason=ReasonCode.UNKNOWN_DATA_SOURCE,
        ...     message="Binding references unknown data source 'stats'",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    node_id: str = Field(..., description="Offending node id or path")
    reason: ReasonCode = Field(..., description="Reason code")
    message: str = Field(..., description="Human-readable description")

    def __str__(self) -> str:
        return f"[{self.reason.value}] {self.node_id}: {self.message}"


ROOT_NODE = "<page>"
