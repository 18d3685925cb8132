"""Unit tests for JSON Schema export functions."""

from __future__ import annotations

import json
from pathlib import Path

from strata_core.export import (
    SCHEMA_MODELS,
    export_all_schemas,
    export_compiled_artifact_schema,
    export_config_schema,
    export_page_schema,
)


class TestExportPageSchema:
    def test_dialect_and_id(self) -> None:
        schema = export_page_schema()
        assert schema["$schema"] == "https://json-schema.org/draft/2020-12/schema"
        assert schema["$id"] == "https://strata.dev/schemas/page-definition.schema.json"

    def test_properties(self) -> None:
        schema = export_page_schema()
        assert schema["type"] == "object"
        for field in ("kind", "module", "route", "regions", "data_sources", "actions", "patches"):
            assert field in schema["properties"]
        assert {"kind", "schema_version", "content_version", "module", "route"} <= set(schema["required"])

    def test_extra_fields_forbidden(self) -> None:
        assert export_page_schema()["additionalProperties"] is False

    def test_descriptions_included(self) -> None:
        assert export_page_schema()["properties"]["module"]["description"] == "Application module"

    def test_writes_file(self, tmp_path: Path) -> None:
        output = tmp_path / "nested" / "page.schema.json"
        schema = export_page_schema(output)
        assert json.loads(output.read_text(encoding="utf-8")) == schema


class TestOtherSchemas:
    def test_compiled_artifact(self) -> None:
        schema = export_compiled_artifact_schema()
        assert schema["title"] == "CompiledArtifact"
        assert {"layer_key", "checksum", "ir", "alias_table"} <= set(schema["properties"])

    def test_config(self) -> None:
        schema = export_config_schema()
        assert schema["$id"].endswith("/strata-config.schema.json")
        assert {"authoring_dir", "store_root", "evaluation", "retry", "logging"} <= set(schema["properties"])


class TestExportAllSchemas:
    def test_writes_every_schema(self, tmp_path: Path) -> None:
        written = export_all_schemas(tmp_path)
        assert [path.name for path in written] == [
            "compiled-artifact.schema.json",
            "page-definition.schema.json",
            "strata-config.schema.json",
        ]
        assert len(written) == len(SCHEMA_MODELS)
        for path in written:
            assert json.loads(path.read_text(encoding="utf-8"))["$id"].endswith(path.name)
