"""Tests for strata render command."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from click.testing import CliRunner

from strata_cli.commands.render import render


def _components(model: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {c["id"]: c for region in model["regions"] for c in region["components"]}


class TestRenderCommand:
    def _render(self, cli_runner: CliRunner, config_file: Path, *args: str) -> tuple[Any, dict[str, Any]]:
        output = config_file.parent / "render.json"
        result = cli_runner.invoke(
            render,
            ["--config", str(config_file), "-m", "core", "-r", "home", "-o", str(output), *args],
        )
        model = json.loads(output.read_text(encoding="utf-8")) if output.exists() else {}
        return result, model

    def test_staff_view(self, cli_runner: CliRunner, config_file: Path, published: Path) -> None:
        result, model = self._render(cli_runner, config_file, "-t", "acme", "--role", "staff")

        assert result.exit_code == 0, result.output
        components = _components(model)
        assert "admin-panel" not in components
        assert components["hero"]["props"] == {"title": "Welcome, Acme"}
        assert components["summary"]["props"] == {"count": 3, "text": "3 members"}
        assert components["hero-cta"]["props"]["onClick"] == {
            "type": "action",
            "action_id": "refresh",
            "kind": "navigate",
        }
        assert model["actions"] == [{"id": "refresh", "kind": "navigate", "config": {"href": "/home"}}]
        assert model["issues"] == []

    def test_admin_view(self, cli_runner: CliRunner, config_file: Path, published: Path) -> None:
        result, model = self._render(cli_runner, config_file, "--role", "admin")
        assert result.exit_code == 0, result.output
        components = _components(model)
        assert "admin-panel" in components
        assert components["hero"]["props"] == {"title": "Welcome"}

    def test_unpublished_page(self, cli_runner: CliRunner, config_file: Path) -> None:
        result, _ = self._render(cli_runner, config_file, "--role", "staff")
        assert result.exit_code == 1
        assert "No blueprint published" in result.output
