"""Runtime configuration for strata.

This module provides:
- StrataConfig: Root configuration model (strata.yaml)
- EvaluationConfig / RetryConfig / LoggingConfig: Configuration sections
- ConfigResolver: Discover and load strata.yaml with caching

Discovery order:

1. ``$STRATA_CONFIG``
2. ``./strata.yaml``
3. ``./.strata/strata.yaml``
4. ``~/.strata/strata.yaml``
5. built-in defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from strata_core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

CONFIG_ENV_VAR = "STRATA_CONFIG"
CONFIG_FILE_NAME = "strata.yaml"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _search_paths() -> tuple[Path, ...]:
    return (
        Path(CONFIG_FILE_NAME),
        Path(".strata") / CONFIG_FILE_NAME,
        Path.home() / ".strata" / CONFIG_FILE_NAME,
    )


class RetryConfig(BaseModel):
    """Retry policy for http data sources.

    Exponential backoff with jitter, applied through tenacity.

    Attributes:
        max_attempts: Maximum attempts including the first (1-10, default 3).
        initial_wait_seconds: Initial backoff wait (default 0.2s).
        max_wait_seconds: Maximum backoff cap (default 5s).
        jitter_seconds: Random jitter range (default 0.2s).

    Example:
        >>> config = RetryConfig(max_attempts=5, initial_wait_seconds=0.5)
        >>> config.max_attempts
        5
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10, description="Maximum number of attempts")
    initial_wait_seconds: float = Field(default=0.2, ge=0.0, le=30.0, description="Initial backoff wait")
    max_wait_seconds: float = Field(default=5.0, ge=0.0, le=300.0, description="Maximum backoff wait")
    jitter_seconds: float = Field(default=0.2, ge=0.0, le=10.0, description="Random jitter range")


class EvaluationConfig(BaseModel):
    """Evaluator limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="Data source timeout when the source sets none",
    )
    max_concurrency: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum data source fetches in flight per evaluation",
    )


class LoggingConfig(BaseModel):
    """structlog output settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: LogLevel = Field(default="INFO", description="Log level")
    json_format: bool = Field(default=False, description="Emit JSON log lines")


class StrataConfig(BaseModel):
    """Root configuration (``strata.yaml``).

    Attributes:
        authoring_dir: Directory holding authored page documents.
        store_root: Root of the artifact, manifest and pointer stores.
        evaluation: Evaluator limits.
        retry: Retry policy for http data sources.
        logging: Logging settings.

    Example:
        >>> config = StrataConfig.from_yaml(Path("strata.yaml"))
        >>> config.store_root
        PosixPath('.strata/store')
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    authoring_dir: Path = Field(default=Path("pages"), description="Authoring directory")
    store_root: Path = Field(default=Path(".strata/store"), description="Store root directory")
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig, description="Evaluator limits")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="HTTP retry policy")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging settings")

    @classmethod
    def from_yaml(cls, path: Path) -> StrataConfig:
        """Load and validate a configuration file.

        Relative ``authoring_dir`` and ``store_root`` are resolved against the
        directory holding the file.

        Raises:
            ConfigurationError: If the file is missing, is not valid YAML, or
                fails validation.
        """
        if not path.is_file():
            raise ConfigurationError("Configuration file not found", file_path=str(path))
        try:
            data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                "Configuration file is not valid YAML",
                file_path=str(path),
                internal_details=str(exc),
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping", file_path=str(path))

        try:
            config = cls.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            raise ConfigurationError(
                first["msg"],
                file_path=str(path),
                field_path=".".join(str(part) for part in first["loc"]),
                internal_details=str(exc),
            ) from exc
        return config.relative_to(path.parent)

    def relative_to(self, base: Path) -> StrataConfig:
        """Return a copy with relative directories anchored at ``base``."""
        return self.model_copy(
            update={
                "authoring_dir": self.authoring_dir if self.authoring_dir.is_absolute() else base / self.authoring_dir,
                "store_root": self.store_root if self.store_root.is_absolute() else base / self.store_root,
            }
        )


class ConfigResolver:
    """Discover and load ``strata.yaml``.

    Results are cached per resolved file path for the life of the process.

    Example:
        >>> config = ConfigResolver().load()
        >>> config = ConfigResolver().load(path=Path("deploy/strata.yaml"))
        >>> ConfigResolver.clear_cache()
    """

    _cache: ClassVar[dict[str, StrataConfig]] = {}

    def __init__(self, search_paths: tuple[Path, ...] | None = None) -> None:
        self.search_paths = search_paths if search_paths is not None else _search_paths()

    def find(self) -> Path | None:
        """Return the configuration file to use, or None for defaults.

        Raises:
            ConfigurationError: If ``$STRATA_CONFIG`` names a missing file.
        """
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            path = Path(env_path)
            if not path.is_file():
                raise ConfigurationError(f"{CONFIG_ENV_VAR} points at a missing file", file_path=env_path)
            return path
        return next((candidate for candidate in self.search_paths if candidate.is_file()), None)

    def load(self, path: Path | None = None, use_cache: bool = True) -> StrataConfig:
        """Load configuration from ``path`` or by discovery.

        Args:
            path: Explicit configuration file.
            use_cache: Set to False to force a reload.

        Returns:
            Validated StrataConfig (defaults when no file is found).

        Raises:
            ConfigurationError: If the file cannot be loaded.
        """
        resolved = path if path is not None else self.find()
        if resolved is None:
            logger.debug("config_defaults_used")
            return StrataConfig()

        cache_key = str(resolved.resolve())
        if use_cache and cache_key in self._cache:
            return self._cache[cache_key]

        config = StrataConfig.from_yaml(resolved)
        self._cache[cache_key] = config
        logger.info("config_loaded", path=cache_key)
        return config

    @classmethod
    def clear_cache(cls) -> None:
        cls._cache.clear()
