"""Baton configuration.

Defaults are read from environment variables. ``load_config`` overlays an
optional ``baton.config.yaml`` and explicit overrides on top of them. The
resulting ``BatonConfig`` is passed to the engine and the executor pool;
there is no process-wide configuration object.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "baton.config.yaml"

DEFAULT_AGENTS = ["claude", "codex", "gemini"]


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _bool(key: str, default: bool) -> bool:
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


def _optional_int(key: str) -> Optional[int]:
    value = os.getenv(key, "")
    return int(value) if value else None


def _cli_path(env_key: str, binary: str) -> str:
    return os.getenv(env_key) or shutil.which(binary) or binary


@dataclass
class BatonConfig:
    """Runtime settings for a baton run.

    Attributes:
        verbose: Log node banners and full node outputs
        agents: Task types a schema may use (empty list allows any registered type)
        claude_cli_path: Path to the ``claude`` binary
        codex_cli_path: Path to the ``codex`` binary
        gemini_cli_path: Path to the ``gemini`` binary
        cli_timeout: Seconds before a single CLI call is killed
        internal_retries: Transparent retries inside a task executor
        max_concurrency: Cap on nodes running at once (None means unbounded)
        recursion_limit: Superstep limit for a run (None derives it from the schema)
        runs_dir: Directory where run state is persisted
    """

    verbose: bool = field(default_factory=lambda: _bool("BATON_VERBOSE", False))
    agents: List[str] = field(default_factory=lambda: list(DEFAULT_AGENTS))
    claude_cli_path: str = field(default_factory=lambda: _cli_path("CLAUDE_CLI_PATH", "claude"))
    codex_cli_path: str = field(default_factory=lambda: _cli_path("CODEX_CLI_PATH", "codex"))
    gemini_cli_path: str = field(default_factory=lambda: _cli_path("GEMINI_CLI_PATH", "gemini"))
    cli_timeout: float = field(default_factory=lambda: _float("BATON_CLI_TIMEOUT", 600.0))
    internal_retries: int = field(default_factory=lambda: _int("BATON_INTERNAL_RETRIES", 1))
    max_concurrency: Optional[int] = field(default_factory=lambda: _optional_int("BATON_MAX_CONCURRENCY"))
    recursion_limit: Optional[int] = field(default_factory=lambda: _optional_int("BATON_RECURSION_LIMIT"))
    runs_dir: str = field(default_factory=lambda: os.getenv("BATON_RUNS_DIR", ".baton"))

    def __post_init__(self):
        """Validate configuration values."""
        if self.cli_timeout <= 0:
            raise ValueError("cli_timeout must be positive")
        if self.internal_retries < 0:
            raise ValueError("internal_retries cannot be negative")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.recursion_limit is not None and self.recursion_limit < 1:
            raise ValueError("recursion_limit must be at least 1")
        self.agents = list(self.agents or [])


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML config file. Missing or unreadable files yield an empty dict."""
    path = Path(path)
    if not path.exists():
        return {}

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: expected a mapping, got {type(data).__name__}")
        return {}
    return data


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> BatonConfig:
    """Build a ``BatonConfig`` from env defaults, a config file and overrides.

    Args:
        path: Config file path (defaults to ``./baton.config.yaml``)
        **overrides: Field values that win over the file; ``None`` values are skipped

    Returns:
        The merged configuration
    """
    config_path = Path(path) if path else Path.cwd() / CONFIG_FILENAME
    values = load_config_file(config_path)

    known = {f.name for f in fields(BatonConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in {config_path}: {unknown}")

    merged = {key: value for key, value in values.items() if key in known}
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return BatonConfig(**merged)
