"""Sandboxed expression evaluation.

Expression props are jinja2 expressions (not templates) evaluated in a
SandboxedEnvironment with StrictUndefined. The context holds exactly two
names:

- ``props``: the node's resolved static and binding props
- ``const``: the page constants

Example:
    >>> engine = ExpressionEngine()
    >>> engine.evaluate("props.first ~ ' ' ~ props.last", {"first": "Ada", "last": "Lovelace"}, {})
    'Ada Lovelace'
    >>> engine.evaluate("props.count * const.multiplier", {"count": 3}, {"multiplier": 2})
    6
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

from jinja2 import StrictUndefined, TemplateError, Undefined
from jinja2.sandbox import SandboxedEnvironment


class ExpressionError(Exception):
    """Raised when an expression cannot be compiled or evaluated."""

    def __init__(self, expression: str, message: str) -> None:
        super().__init__(f"{message} in expression '{expression}'")
        self.expression = expression
        self.message = message


class ExpressionEngine:
    """Compile and evaluate expressions, caching compiled forms."""

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
        self._compiled: dict[str, Callable[..., Any]] = {}
        self._lock = threading.Lock()

    def compile(self, expression: str) -> Callable[..., Any]:
        """Compile ``expression``.

        Raises:
            ExpressionError: On a syntax error.
        """
        with self._lock:
            compiled = self._compiled.get(expression)
        if compiled is not None:
            return compiled
        try:
            compiled = self._env.compile_expression(expression, undefined_to_none=False)
        except TemplateError as exc:
            raise ExpressionError(expression, exc.message or "syntax error") from exc
        with self._lock:
            self._compiled[expression] = compiled
        return compiled

    def evaluate(self, expression: str, props: Mapping[str, Any], const: Mapping[str, Any]) -> Any:
        """Evaluate ``expression`` against ``props`` and ``const``.

        Raises:
            ExpressionError: On syntax errors, undefined names, sandbox
                violations or runtime errors of the expression itself.
        """
        compiled = self.compile(expression)
        try:
            result = compiled(props=dict(props), const=dict(const))
        except TemplateError as exc:
            raise ExpressionError(expression, exc.message or type(exc).__name__) from exc
        except (ArithmeticError, TypeError, ValueError, LookupError, AttributeError) as exc:
            raise ExpressionError(expression, f"{type(exc).__name__}: {exc}") from exc
        if isinstance(result, Undefined):
            raise ExpressionError(expression, "expression is undefined")
        return result
