"""Tests for strata publish command."""

from __future__ import annotations

from pathlib import Path

from click.testing import CliRunner

from strata_cli.commands.publish import publish
from strata_core.publisher import Publisher


class TestPublishCommand:
    def test_publishes_tree(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(publish, ["--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Published 2 layer(s)" in result.output
        publisher = Publisher(config_file.parent / "store")
        assert publisher.live_version("blueprint::global::core::home::-::-::-") == "1.0.0"
        assert publisher.live_version("overlay::acme::core::home::-::-::-") == "1.0.0"

    def test_republish_is_a_noop(self, cli_runner: CliRunner, config_file: Path, published: Path) -> None:
        result = cli_runner.invoke(publish, ["--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "Store already up to date" in result.output

    def test_new_version(self, cli_runner: CliRunner, project: Path, config_file: Path, published: Path) -> None:
        home = project / "pages" / "core" / "home.yaml"
        text = home.read_text(encoding="utf-8")
        home.write_text(text.replace("content_version: 1.0.0", "content_version: 1.1.0").replace("Home", "Start"))

        result = cli_runner.invoke(publish, ["--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Published 1 layer(s)" in result.output
        assert Publisher(published).live_version("blueprint::global::core::home::-::-::-") == "1.1.0"

    def test_version_regression(self, cli_runner: CliRunner, project: Path, config_file: Path, published: Path) -> None:
        home = project / "pages" / "core" / "home.yaml"
        home.write_text(home.read_text(encoding="utf-8").replace("content_version: 1.0.0", "content_version: 0.9.0"))

        result = cli_runner.invoke(publish, ["--config", str(config_file)])

        assert result.exit_code == 1
        assert "Nothing published" in result.output
        assert Publisher(published).live_version("blueprint::global::core::home::-::-::-") == "1.0.0"

    def test_overlay_against_live_blueprint(
        self, cli_runner: CliRunner, project: Path, config_file: Path, published: Path
    ) -> None:
        overlays = project / "overlays"
        overlays.mkdir()
        overlay = (project / "pages" / "core" / "home.acme.yaml").read_text(encoding="utf-8")
        (overlays / "home.beta.yaml").write_text(overlay.replace("tenant: acme", "tenant: beta"), encoding="utf-8")

        result = cli_runner.invoke(publish, ["--config", str(config_file), "--dir", str(overlays)])

        assert result.exit_code == 0, result.output
        assert Publisher(published).live_version("overlay::beta::core::home::-::-::-") == "1.0.0"

    def test_storage_failure(self, cli_runner: CliRunner, project: Path, config_file: Path) -> None:
        store = project / "broken-store"
        store.mkdir()
        (store / "artifacts").write_text("not a directory", encoding="utf-8")

        result = cli_runner.invoke(publish, ["--config", str(config_file), "--store", str(store)])

        assert result.exit_code == 2
        assert "Could not publish" in result.output

    def test_missing_directory(self, cli_runner: CliRunner, project: Path, config_file: Path) -> None:
        result = cli_runner.invoke(publish, ["--config", str(config_file), "--dir", str(project / "absent")])
        assert result.exit_code == 2
        assert "not found" in result.output
