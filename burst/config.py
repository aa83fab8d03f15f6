"""TOML settings for burst.

Two optional files are read, the project one winning key by key:

    ~/.burst/defaults.toml   per-user defaults
    ./burst.toml             per-project overrides

Only the [aws] table is understood today.
"""

from __future__ import annotations

import tomllib
from functools import reduce
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from burst.providers.aws.config import AWS

type Settings = dict[str, Any]

USER_DEFAULTS = Path.home() / ".burst" / "defaults.toml"
PROJECT_FILE = "burst.toml"


def _deep_merge(base: Settings, override: Settings) -> Settings:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _read_toml(path: Path) -> Settings:
    try:
        return tomllib.loads(path.read_text())
    except FileNotFoundError:
        return {}


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    """Merge user defaults with the project file. `aws` is always present."""
    layers = [
        _read_toml(global_path or USER_DEFAULTS),
        _read_toml((project_dir or Path.cwd()) / PROJECT_FILE),
    ]
    return reduce(_deep_merge, layers, {"aws": {}})


def resolve_aws(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> AWS:
    from burst.providers.aws.config import AWS

    settings = load_config(project_dir=project_dir, global_path=global_path)
    return AWS.from_config(settings["aws"])
