"""Exceptions raised by the strata pipeline.

``str(error)`` is always the user-facing message and is safe to print from
the CLI. Anything technical (paths, tracebacks, raw payloads) goes in
``internal_details``, which is logged as a ``strata_error`` event and never
shown.

Pipeline stage to exception:

    compile   CompileError
    publish   PublishError (live pointer unchanged)
    registry  LayerNotFoundError, StorageError
    resolve   ResolutionError, DanglingOverlayTargetError
    evaluate  DataSourceError (recorded as an issue, never raised to callers)
    config    ConfigurationError
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from strata_core.compiler.issues import ValidationIssue

logger = structlog.get_logger(__name__)


class StrataError(Exception):
    """Root of every strata exception.

    Example:
        >>> raise StrataError(
        ...     "Page could not be resolved",
        ...     internal_details="pointer store unreadable: /srv/strata/pointers",
        ... )
    """

    def __init__(self, user_message: str, *, internal_details: str | None = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        if internal_details:
            logger.error(
                "strata_error",
                error_type=type(self).__name__,
                user_message=user_message,
                internal_details=internal_details,
            )


def _format_issues(issues: Sequence[ValidationIssue], source_path: str | None) -> str:
    header = "Compilation failed"
    if source_path:
        header += f" in {source_path}"
    rows = [f"{header} ({len(issues)} issue(s))"]
    rows += [f"  - [{issue.reason.value}] {issue.node_id}: {issue.message}" for issue in issues]
    return "\n".join(rows)


class CompileError(StrataError):
    """An authored document was rejected; no artifact exists for it.

    All issues found in the document are carried together, one per line in
    the message.

    Attributes:
        issues: Validation issues in reporting order.
        source_path: Authoring file, when compiled from disk.
    """

    def __init__(
        self,
        issues: Sequence[ValidationIssue],
        *,
        source_path: str | None = None,
        internal_details: str | None = None,
    ) -> None:
        self.issues: tuple[ValidationIssue, ...] = tuple(issues)
        self.source_path = source_path
        super().__init__(_format_issues(self.issues, source_path), internal_details=internal_details)

    @property
    def reasons(self) -> list[str]:
        return [issue.reason.value for issue in self.issues]


class PublishError(StrataError):
    """A layer was not published and its live pointer was left alone.

    ``reason`` is one of ``checksum_mismatch``, ``version_regression``,
    ``version_conflict`` or ``storage_failure``.
    """

    def __init__(
        self,
        user_message: str,
        *,
        layer_key: str,
        reason: str,
        internal_details: str | None = None,
    ) -> None:
        super().__init__(user_message, internal_details=internal_details)
        self.layer_key = layer_key
        self.reason = reason


class LayerNotFoundError(StrataError):
    """No blueprint is live for ``module``/``route``."""

    def __init__(self, module: str, route: str, *, internal_details: str | None = None) -> None:
        self.module = module
        self.route = route
        super().__init__(f"No blueprint published for {module}/{route}", internal_details=internal_details)


class ResolutionError(StrataError):
    """The selected layers could not be merged into a single page."""


class DanglingOverlayTargetError(ResolutionError):
    """A patch points at a node absent from the tree being merged.

    Either an earlier overlay removed it or the overlay was compiled against
    another blueprint revision. Resolution of the whole request fails.
    """

    def __init__(
        self,
        layer_key: str,
        target: str,
        target_id: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        self.layer_key = layer_key
        self.target = target
        self.target_id = target_id
        super().__init__(
            f"Overlay {layer_key} targets missing {target} '{target_id}'",
            internal_details=internal_details,
        )


class ConfigurationError(StrataError):
    """strata.yaml is missing, malformed or fails validation.

    The file and dotted field path, when known, are appended to the message:
    ``Invalid value (in strata.yaml, field 'retry.max_attempts')``.
    """

    def __init__(
        self,
        user_message: str,
        *,
        file_path: str | None = None,
        field_path: str | None = None,
        internal_details: str | None = None,
    ) -> None:
        self.file_path = file_path
        self.field_path = field_path
        where = [part for part in (file_path and f"in {file_path}", field_path and f"field '{field_path}'") if part]
        message = f"{user_message} ({', '.join(where)})" if where else user_message
        super().__init__(message, internal_details=internal_details)


class StorageError(StrataError):
    """The store could not be read or written at ``path``."""

    def __init__(self, user_message: str, *, path: str | None = None, internal_details: str | None = None) -> None:
        super().__init__(user_message, internal_details=internal_details)
        self.path = path


class DataSourceError(StrataError):
    """A client failed to fetch ``source_id``.

    The evaluator turns this into an issue and unavailable bindings; the
    rest of the page still renders.
    """

    def __init__(self, user_message: str, *, source_id: str, internal_details: str | None = None) -> None:
        super().__init__(user_message, internal_details=internal_details)
        self.source_id = source_id
