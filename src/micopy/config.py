"""
YAML configuration loading for micopy.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .core import (
    ConfigFileError,
    FolderConfiguration,
    IgnorePatternConfiguration,
    MicopyConfiguration,
)

DEFAULT_CONFIG_NAME = "micopy.yaml"

DEFAULT_CONFIG_TEMPLATE = """\
# micopy.yaml

# Number of concurrent copies. Omit for 8, use 0 for a sequential run.
# parallelism: 8

folders:
  - source: ./documents
    destination: ~/backup/documents
    ignorePatternName: build-output

ignorePatterns:
  - name: build-output
    patterns:
      - "build/**"
      - "**/*.tmp"
"""


def _get(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _expand_path(value: Any, base_dir: Optional[Path], what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigFileError(f"'{what}' must be a non-empty string")
    path = Path(os.path.expanduser(os.path.expandvars(value.strip())))
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return str(path)


def _parse_folders(raw: Any, base_dir: Optional[Path]) -> List[FolderConfiguration]:
    if not isinstance(raw, list) or not raw:
        raise ConfigFileError("'folders' must be a non-empty list")

    folders: List[FolderConfiguration] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigFileError(f"folders[{idx}] must be a mapping")
        name = _get(entry, "ignorePatternName", "ignore_pattern_name")
        if name is not None and not isinstance(name, str):
            raise ConfigFileError(f"folders[{idx}].ignorePatternName must be a string")
        folders.append(
            FolderConfiguration(
                source=_expand_path(entry.get("source"), base_dir, f"folders[{idx}].source"),
                destination=_expand_path(
                    entry.get("destination"), base_dir, f"folders[{idx}].destination"
                ),
                ignore_pattern_name=name or None,
            )
        )
    return folders


def _parse_ignore_patterns(raw: Any) -> List[IgnorePatternConfiguration]:
    if raw is None:
        return []
    # `{name: [patterns]}` is accepted as a shorthand for the list form
    if isinstance(raw, dict):
        raw = [{"name": name, "patterns": patterns} for name, patterns in raw.items()]
    if not isinstance(raw, list):
        raise ConfigFileError("'ignorePatterns' must be a list")

    configs: List[IgnorePatternConfiguration] = []
    seen: Dict[str, str] = {}
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigFileError(f"ignorePatterns[{idx}] must be a mapping")
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigFileError(f"ignorePatterns[{idx}].name must be a non-empty string")
        name = name.strip()
        if name.casefold() in seen:
            raise ConfigFileError(
                f"Duplicate ignore pattern set '{name}' (already defined as '{seen[name.casefold()]}')"
            )
        seen[name.casefold()] = name

        patterns = entry.get("patterns") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ConfigFileError(f"ignorePatterns[{idx}].patterns must be a list of strings")
        configs.append(IgnorePatternConfiguration(name, tuple(patterns)))
    return configs


def _parse_parallelism(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ConfigFileError(f"'parallelism' must be an integer >= 0, got {raw!r}")
    return raw


def parse_config(raw: Any, base_dir: Optional[Path] = None) -> MicopyConfiguration:
    """Validate an already-decoded config document."""
    if not isinstance(raw, dict):
        raise ConfigFileError("Configuration must be a mapping")
    return MicopyConfiguration(
        folders=tuple(_parse_folders(raw.get("folders"), base_dir)),
        ignore_patterns=tuple(
            _parse_ignore_patterns(_get(raw, "ignorePatterns", "ignore_patterns"))
        ),
        parallelism=_parse_parallelism(raw.get("parallelism")),
    )


def load_config(config_path: Path) -> MicopyConfiguration:
    """Read and validate a micopy YAML file; relative paths resolve next to it."""
    if not config_path.exists():
        raise ConfigFileError(f"Config file '{config_path}' does not exist")

    if not config_path.is_file():
        raise ConfigFileError(f"'{config_path}' is not a file")

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigFileError(f"Could not read config file '{config_path}': {e}")
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Invalid YAML in '{config_path}': {e}")

    if raw is None:
        raise ConfigFileError(f"Config file '{config_path}' is empty")

    try:
        return parse_config(raw, base_dir=config_path.resolve().parent)
    except ConfigFileError as e:
        raise ConfigFileError(f"Invalid config in '{config_path}': {e}") from e
