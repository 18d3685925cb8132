"""Shared pytest fixtures for strata-core tests.

Provides authored sample documents (a blueprint and a few overlays for
``core/home``), compile helpers and temporary stores.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

from strata_core.compiler import CompiledArtifact, Compiler
from strata_core.config import ConfigResolver
from strata_core.publisher import Publisher


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Start every test from structlog's uncached defaults so capture_logs sees all events."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def clear_config_cache() -> Generator[None, None, None]:
    ConfigResolver.clear_cache()
    yield
    ConfigResolver.clear_cache()


def _overlay(scope: dict[str, str], patches: list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
    return {
        "kind": "overlay",
        "schema_version": "1.0.0",
        "content_version": "1.0.0",
        "module": "core",
        "route": "home",
        "target_page": "home",
        "scope": scope,
        "patches": patches,
        **extra,
    }


@pytest.fixture
def blueprint_doc() -> dict[str, Any]:
    """Return the authored ``core/home`` blueprint.

    Layout:
        header: (empty)
        main: hero (+ hero-cta child), member-count, summary, stats-card,
              admin-panel (admins only), guest-banner (hidden from guests)
    """
    return {
        "kind": "blueprint",
        "schema_version": "1.0.0",
        "content_version": "1.0.0",
        "module": "core",
        "route": "home",
        "page_id": "home",
        "title": "Home",
        "constants": {"suffix": "members"},
        "data_sources": [
            {
                "id": "stats",
                "kind": "http",
                "request": {"url": "https://api.example.test/stats"},
                "contract": {"count": "data.count"},
            },
            {
                "id": "profile",
                "kind": "static",
                "value": {"name": "Acme", "count": 3},
                "contract": {"name": "name", "count": "count"},
            },
        ],
        "actions": [
            {"id": "refresh", "kind": "navigate", "config": {"href": "/home"}},
        ],
        "regions": [
            {"id": "header", "components": []},
            {
                "id": "main",
                "components": [
                    {
                        "id": "hero",
                        "type": "Hero",
                        "props": {"title": "Welcome"},
                        "children": [
                            {
                                "id": "hero-cta",
                                "type": "Button",
                                "props": {"label": "Refresh", "onClick": {"action": "refresh"}},
                            }
                        ],
                    },
                    {"id": "member-count", "type": "Stat", "props": {"value": {"contract": "profile.count"}}},
                    {
                        "id": "summary",
                        "type": "Text",
                        "props": {
                            "count": {"contract": "profile.count"},
                            "text": {"expression": "props.count ~ ' ' ~ const.suffix"},
                        },
                    },
                    {
                        "id": "stats-card",
                        "type": "Stat",
                        "props": {"count": {"contract": "stats.count", "fallback": 0}},
                    },
                    {"id": "admin-panel", "type": "Panel", "rbac": {"allow": ["admin"]}},
                    {"id": "guest-banner", "type": "Banner", "rbac": {"deny": "guest"}},
                ],
            },
        ],
    }


@pytest.fixture
def acme_overlay_doc() -> dict[str, Any]:
    """Tenant overlay retitling the hero for acme."""
    return _overlay(
        {"tenant": "acme"},
        [
            {
                "target": "component",
                "target_id": "hero",
                "operation": "merge",
                "payload": {"props": {"title": "Welcome, Acme"}},
            }
        ],
    )


@pytest.fixture
def remove_hero_overlay_doc() -> dict[str, Any]:
    """Role overlay removing the hero (and its child) for guests."""
    return _overlay(
        {"role": "guest"},
        [{"target": "component", "target_id": "hero", "operation": "remove"}],
    )


@pytest.fixture
def make_overlay() -> Callable[..., dict[str, Any]]:
    """Return a factory for ``core/home`` overlay documents."""
    return _overlay


@pytest.fixture
def compiler() -> Compiler:
    return Compiler()


@pytest.fixture
def compile_doc(compiler: Compiler) -> Callable[..., CompiledArtifact]:
    """Return ``compile_doc(document, base=None)`` that compiles a deep copy."""

    def _compile(document: dict[str, Any], base: CompiledArtifact | None = None) -> CompiledArtifact:
        return compiler.compile(copy.deepcopy(document), base=base.ir if base is not None else None)

    return _compile


@pytest.fixture
def blueprint(compile_doc: Callable[..., CompiledArtifact], blueprint_doc: dict[str, Any]) -> CompiledArtifact:
    return compile_doc(blueprint_doc)


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def publisher(store_root: Path) -> Publisher:
    return Publisher(store_root)
