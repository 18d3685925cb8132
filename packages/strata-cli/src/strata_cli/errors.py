"""CLI error handling for strata-cli.

Maps strata-core exceptions to user-friendly messages and exit codes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import click

from strata_cli.output import error, print_table

if TYPE_CHECKING:
    from pydantic import ValidationError as PydanticValidationError
    from strata_core.errors import CompileError, StrataError


# Exit codes following sysexits.h convention
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1  # User error (invalid document, unknown page, bad config)
EXIT_SYSTEM_ERROR = 2  # System error (missing directory, unreadable store, write failure)

# PublishError reasons caused by the environment rather than the content
_SYSTEM_PUBLISH_REASONS = frozenset({"storage_failure"})


class CLIError(click.ClickException):
    """CLI-specific exception with exit code support.

    Attributes:
        message: User-facing error message.
        exit_code: Exit code for the CLI (default: 1).
    """

    def __init__(self, message: str, exit_code: int = EXIT_USER_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def show(self, file: object = None) -> None:
        """Display the error message using Rich formatting."""
        error(self.format_message())


def format_pydantic_error(err: PydanticValidationError) -> str:
    """Format a Pydantic validation error into a user-friendly message.

    Example:
        >>> format_pydantic_error(err)
        "Validation failed:\\n  - module: Field required"
    """
    lines = ["Validation failed:"]
    for detail in err.errors():
        loc = ".".join(str(x) for x in detail["loc"])
        lines.append(f"  - {loc}: {detail['msg']}")
    return "\n".join(lines)


def exit_code_for(exc: StrataError) -> int:
    """Return the CLI exit code for a strata-core exception."""
    from strata_core.errors import PublishError, StorageError

    if isinstance(exc, StorageError):
        return EXIT_SYSTEM_ERROR
    if isinstance(exc, PublishError) and exc.reason in _SYSTEM_PUBLISH_REASONS:
        return EXIT_SYSTEM_ERROR
    return EXIT_USER_ERROR


def print_compile_issues(exc: CompileError) -> None:
    """Print every issue of a CompileError as a table."""
    title = f"Issues in {exc.source_path}" if exc.source_path else "Issues"
    print_table(
        title,
        ["Node", "Reason", "Message"],
        [(issue.node_id, issue.reason.value, issue.message) for issue in exc.issues],
    )


def fail(exc: StrataError) -> NoReturn:
    """Report a strata-core exception and exit with its exit code."""
    from strata_core.errors import CompileError

    if isinstance(exc, CompileError):
        # The issue lines of the message are shown as a table instead
        error(exc.user_message.splitlines()[0])
        print_compile_issues(exc)
    else:
        error(exc.user_message)
    raise SystemExit(exit_code_for(exc))
