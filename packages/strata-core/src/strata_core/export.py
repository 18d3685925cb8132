"""JSON Schema export functions for strata.

Exports JSON Schema Draft 2020-12 documents for editor support on authored
canonical pages, for validating compiled artifacts outside Python, and for
``strata.yaml``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from strata_core.compiler.models import CompiledArtifact
from strata_core.config import StrataConfig
from strata_core.schemas.page import PageDefinition

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"
SCHEMA_BASE_URI = "https://strata.dev/schemas"

# Exported schema name -> model
SCHEMA_MODELS: dict[str, type[BaseModel]] = {
    "page-definition": PageDefinition,
    "compiled-artifact": CompiledArtifact,
    "strata-config": StrataConfig,
}


def _export(model: type[BaseModel], name: str, output_path: Path | str | None) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema["$schema"] = SCHEMA_DIALECT
    schema["$id"] = f"{SCHEMA_BASE_URI}/{name}.schema.json"
    if "additionalProperties" not in schema:
        schema["additionalProperties"] = False
    if output_path is not None:
        _write_schema_file(schema, output_path)
    return schema


def export_page_schema(output_path: Path | str | None = None) -> dict[str, Any]:
    """Export the PageDefinition JSON Schema.

    Args:
        output_path: Optional path to write the schema file. Parent
            directories are created as needed.

    Returns:
        Dictionary containing the JSON Schema.

    Example:
        >>> schema = export_page_schema()
        >>> schema["$schema"]
        'https://json-schema.org/draft/2020-12/schema'
    """
    return _export(PageDefinition, "page-definition", output_path)


def export_compiled_artifact_schema(output_path: Path | str | None = None) -> dict[str, Any]:
    """Export the CompiledArtifact JSON Schema.

    Example:
        >>> export_compiled_artifact_schema()["title"]
        'CompiledArtifact'
    """
    return _export(CompiledArtifact, "compiled-artifact", output_path)


def export_config_schema(output_path: Path | str | None = None) -> dict[str, Any]:
    """Export the StrataConfig (``strata.yaml``) JSON Schema."""
    return _export(StrataConfig, "strata-config", output_path)


def export_all_schemas(output_dir: Path | str) -> list[Path]:
    """Write every schema to ``output_dir`` as ``<name>.schema.json``.

    Returns:
        Written file paths, sorted by name.
    """
    directory = Path(output_dir)
    written = []
    for name, model in sorted(SCHEMA_MODELS.items()):
        path = directory / f"{name}.schema.json"
        _export(model, name, path)
        written.append(path)
    return written


def _write_schema_file(schema: dict[str, Any], path: Path | str) -> None:
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(schema, indent=2) + "\n", encoding="utf-8")
