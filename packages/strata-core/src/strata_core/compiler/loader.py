"""Authoring directory discovery and document parsing.

Parsing is a thin ``yaml.safe_load`` (or ``json.loads`` for ``.json``
files); the resulting node tree is the Transformer's input.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml

from strata_core.compiler.checksum import sha256_hex
from strata_core.compiler.issues import ROOT_NODE, ReasonCode, ValidationIssue
from strata_core.errors import CompileError

logger = structlog.get_logger(__name__)

AUTHORING_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass(frozen=True)
class AuthoredDocument:
    """A parsed authoring file.

    Attributes:
        path: Absolute file path.
        source_path: Path relative to the authoring root (POSIX separators).
        content: Parsed node tree.
        source_hash: SHA-256 of the raw file text.
    """

    path: Path
    source_path: str
    content: Any
    source_hash: str


class AuthoringLoader:
    """Collect and parse authoring documents below a root directory.

    Example:
        >>> loader = AuthoringLoader(Path("metadata/authoring"))
        >>> for path in loader.collect():
        ...     document = loader.load_document(path)
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def collect(self) -> list[Path]:
        """Return every ``*.yaml``/``*.yml``/``*.json`` file below the root, sorted.

        Raises:
            FileNotFoundError: If the root directory does not exist.
        """
        if not self.root.is_dir():
            raise FileNotFoundError(f"Authoring directory not found: {self.root}")
        files = sorted(p for p in self.root.rglob("*") if p.is_file() and p.suffix.lower() in AUTHORING_SUFFIXES)
        logger.debug("authoring_files_collected", root=str(self.root), count=len(files))
        return files

    def relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()

    def load_document(self, path: Path | str) -> AuthoredDocument:
        """Parse one authoring file.

        Raises:
            FileNotFoundError: If the file does not exist.
            CompileError: If the file is not valid YAML/JSON or is not a mapping.
        """
        return load_document(path, source_path=self.relative(Path(path)))


def load_document(path: Path | str, source_path: str | None = None) -> AuthoredDocument:
    """Parse a YAML or JSON authoring file.

    Args:
        path: File to parse.
        source_path: Display path recorded in artifacts (defaults to ``path``).

    Raises:
        FileNotFoundError: If the file does not exist.
        CompileError: If the file cannot be parsed into a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    source_path = source_path or path.as_posix()
    text = path.read_text(encoding="utf-8")

    try:
        if path.suffix.lower() == ".json":
            content = json.loads(text)
        else:
            content = yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        issue = ValidationIssue(
            node_id=ROOT_NODE, reason=ReasonCode.MALFORMED_NODE, message=f"unparseable document: {exc}"
        )
        raise CompileError([issue], source_path=source_path) from exc

    if not isinstance(content, dict):
        issue = ValidationIssue(
            node_id=ROOT_NODE, reason=ReasonCode.MALFORMED_NODE, message="document root must be a mapping"
        )
        raise CompileError([issue], source_path=source_path)

    return AuthoredDocument(path=path, source_path=source_path, content=content, source_hash=sha256_hex(text))
