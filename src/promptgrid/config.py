# Copyright (c) Syntropy Systems
"""Configuration management for promptgrid."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

PROJECT_DIR_NAME = ".promptgrid"
MISSING_PROJECT_MSG = "No .promptgrid directory found. Run 'promptgrid init' first."


@dataclass
class PromptGridConfig:
    """Configuration for promptgrid."""

    # Quiet period before a changed store is persisted (seconds)
    sync_debounce_seconds: float = 2.0

    # Per-request timeout for provider calls (seconds)
    request_timeout: float = 60.0

    # Models preselected on new prompts; empty means catalog defaults
    default_models: list[str] = field(default_factory=list)

    # Provider name -> API key
    api_keys: dict[str, str] = field(default_factory=dict)

    # Provider name -> base URL override
    base_urls: dict[str, str] = field(default_factory=dict)


def find_project_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .promptgrid directory by walking up from start_path.

    Returns None if no .promptgrid directory is found.
    """
    current = (start_path or Path.cwd()).resolve()

    for candidate in (current, *current.parents):
        project_dir = candidate / PROJECT_DIR_NAME
        if project_dir.is_dir():
            return project_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global promptgrid config directory (~/.promptgrid)."""
    return Path.home() / PROJECT_DIR_NAME


def _string_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def load_config(project_dir: Path | None = None) -> PromptGridConfig:
    """Load configuration from .promptgrid/config.yaml or defaults.

    Looks for config in:
    1. Provided project_dir
    2. Nearest .promptgrid directory walking up
    3. ~/.promptgrid/config.yaml
    4. Defaults
    """
    config = PromptGridConfig()

    if project_dir is None:
        project_dir = find_project_dir()
    config_path = (
        project_dir / "config.yaml"
        if project_dir is not None
        else get_global_config_dir() / "config.yaml"
    )

    if not config_path.exists():
        return config

    with config_path.open() as f:
        data = cast("dict[str, object]", yaml.safe_load(f) or {})

    debounce = data.get("sync_debounce_seconds")
    if isinstance(debounce, (int, float)) and debounce >= 0:
        config.sync_debounce_seconds = float(debounce)
    timeout = data.get("request_timeout")
    if isinstance(timeout, (int, float)) and timeout > 0:
        config.request_timeout = float(timeout)
    default_models = data.get("default_models")
    if isinstance(default_models, list):
        config.default_models = [str(m) for m in default_models]
    config.api_keys = _string_map(data.get("api_keys"))
    config.base_urls = _string_map(data.get("base_urls"))

    return config


def save_config(project_dir: Path, config: PromptGridConfig) -> Path:
    """Write ``config`` to ``project_dir/config.yaml``."""
    config_path = project_dir / "config.yaml"
    data: dict[str, object] = {
        "sync_debounce_seconds": config.sync_debounce_seconds,
        "request_timeout": config.request_timeout,
    }
    if config.default_models:
        data["default_models"] = list(config.default_models)
    if config.api_keys:
        data["api_keys"] = dict(config.api_keys)
    if config.base_urls:
        data["base_urls"] = dict(config.base_urls)
    with config_path.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return config_path


def require_project_dir() -> Path:
    """Get the project directory or raise an error if not found."""
    project_dir = find_project_dir()
    if project_dir is None:
        raise RuntimeError(MISSING_PROJECT_MSG)
    return project_dir


def get_db_path(project_dir: Path | None = None) -> Path:
    """Get the path to the SQLite database."""
    if project_dir is None:
        project_dir = require_project_dir()
    return project_dir / "promptgrid.db"
