"""Locate and merge the TOML configuration layers.

Layers, lowest precedence first:
- config/default.toml
- config/{STEPWISE_ENV}.toml

Both are optional; the settings models carry every default. Environment
variables are applied on top by pydantic-settings, not here.
"""

import os
import tomllib
from functools import reduce
from pathlib import Path
from typing import Any

CONFIG_DIR_ENV = "STEPWISE_CONFIG_DIR"
ENVIRONMENT_ENV = "STEPWISE_ENV"
DEFAULT_ENVIRONMENT = "development"

# Parent directories searched for config/ when no override is set
_SEARCH_DEPTH = 5


def get_config_dir() -> Path:
    """Resolve the configuration directory.

    STEPWISE_CONFIG_DIR wins and must exist. Otherwise the nearest config/
    directory from the working directory upwards is used.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        path = Path(override)
        if not path.is_dir():
            raise FileNotFoundError(f"Config directory not found: {override}")
        return path

    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents][:_SEARCH_DEPTH]:
        candidate = parent / "config"
        if candidate.is_dir():
            return candidate

    return Path("config")


def get_environment() -> str:
    """Deployment environment name, 'development' unless STEPWISE_ENV says otherwise."""
    return os.environ.get(ENVIRONMENT_ENV, "").strip().lower() or DEFAULT_ENVIRONMENT


def load_toml(file_path: Path) -> dict[str, Any]:
    """Parse one TOML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        tomllib.TOMLDecodeError: If the TOML syntax is invalid
    """
    try:
        with file_path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise FileNotFoundError(f"Configuration file not found: {file_path}") from e


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base; tables merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def config_layers(config_dir: Path, env: str) -> list[Path]:
    """Existing TOML layers in merge order."""
    candidates = [config_dir / "default.toml"]
    if env != "default":
        candidates.append(config_dir / f"{env}.toml")
    return [path for path in candidates if path.is_file()]


def load_config(config_dir: Path | None = None, env: str | None = None) -> dict[str, Any]:
    """Merge all configuration layers into one dictionary.

    Args:
        config_dir: Directory holding the TOML files (resolved if omitted)
        env: Environment name selecting the override layer (from
            STEPWISE_ENV if omitted)
    """
    layers = config_layers(config_dir or get_config_dir(), env or get_environment())
    return reduce(deep_merge, (load_toml(path) for path in layers), {})
