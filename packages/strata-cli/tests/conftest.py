"""Shared test fixtures for strata-cli tests.

Provides CliRunner fixtures and a temporary project: ``strata.yaml``, an
authoring tree for ``core/home`` (blueprint plus an acme overlay) and an
empty store.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from strata_core.config import CONFIG_ENV_VAR, ConfigResolver

STRATA_YAML = """\
authoring_dir: pages
store_root: store
retry:
  max_attempts: 1
evaluation:
  default_timeout_seconds: 1
"""

BLUEPRINT_YAML = """\
kind: blueprint
schema_version: 1.0.0
content_version: 1.0.0
module: core
route: home
page_id: home
title: Home
constants:
  suffix: members
data_sources:
  - id: profile
    kind: static
    value:
      name: Acme
      count: 3
    contract:
      count: count
actions:
  - id: refresh
    kind: navigate
    config:
      href: /home
regions:
  - id: main
    components:
      - id: hero
        type: Hero
        props:
          title: Welcome
        children:
          - id: hero-cta
            type: Button
            props:
              label: Refresh
              onClick:
                action: refresh
      - id: summary
        type: Text
        props:
          count:
            contract: profile.count
          text:
            expression: "props.count ~ ' ' ~ const.suffix"
      - id: admin-panel
        type: Panel
        rbac:
          allow: [admin]
"""

ACME_OVERLAY_YAML = """\
kind: overlay
schema_version: 1.0.0
content_version: 1.0.0
module: core
route: home
target_page: home
scope:
  tenant: acme
patches:
  - target: component
    target_id: hero
    operation: merge
    payload:
      props:
        title: Welcome, Acme
"""


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep commands from picking up a developer's strata.yaml or logging setup."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr("strata_core.observability.configure_logging", lambda **kwargs: None)
    ConfigResolver.clear_cache()
    yield
    ConfigResolver.clear_cache()


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create a project directory and return it.

    Layout:
        strata.yaml
        pages/core/home.yaml
        pages/core/home.acme.yaml
    """
    (tmp_path / "strata.yaml").write_text(STRATA_YAML, encoding="utf-8")
    pages = tmp_path / "pages" / "core"
    pages.mkdir(parents=True)
    (pages / "home.yaml").write_text(BLUEPRINT_YAML, encoding="utf-8")
    (pages / "home.acme.yaml").write_text(ACME_OVERLAY_YAML, encoding="utf-8")
    return tmp_path


@pytest.fixture
def config_file(project: Path) -> Path:
    return project / "strata.yaml"


@pytest.fixture
def published(cli_runner: CliRunner, config_file: Path) -> Path:
    """Publish the project pages and return the store root."""
    from strata_cli.commands.publish import publish

    result = cli_runner.invoke(publish, ["--config", str(config_file)])
    assert result.exit_code == 0, result.output
    return config_file.parent / "store"
