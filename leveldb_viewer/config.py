"""
Viewer configuration: defaults, optional JSON file in the user's data directory,
then LEVELDB_VIEWER_* environment overrides. Both sources are checked against
CONFIG_SCHEMA before they are merged.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import ValidationError

from .errors import ConfigError

ENV_PREFIX = "LEVELDB_VIEWER_"

_NON_BLANK = {"type": "string", "pattern": r"\S"}

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "debounce_ms": {"type": "integer", "minimum": 0},
        "parser_command": _NON_BLANK,
        "log_level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "error_marker": _NON_BLANK,
        "tombstone_marker": _NON_BLANK,
    },
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ViewerConfig:
    debounce_ms: int = 300
    parser_command: str = "leveldb-parser-cli"
    log_level: str = "INFO"
    error_marker: str = "fail"
    tombstone_marker: str = "deleted"


def default_config_dir() -> Path:
    """Per-user data directory (created on first use)."""
    base = Path.home() / ".leveldb_viewer"
    base.mkdir(parents=True, exist_ok=True)
    return base


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


def _validate(values: Any, source: str) -> dict[str, Any]:
    """Check values against CONFIG_SCHEMA; log_level is matched case-insensitively."""
    if isinstance(values, dict) and isinstance(values.get("log_level"), str):
        values = {**values, "log_level": values["log_level"].strip().upper()}
    try:
        jsonschema.validate(values, CONFIG_SCHEMA)
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        prefix = f"{source}: {where}: " if where else f"{source}: "
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e
    return values


def _read_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    return _validate(data, str(path))


def _read_environment(environ) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for f in fields(ViewerConfig):
        key = ENV_PREFIX + f.name.upper()
        if key not in environ:
            continue
        raw = environ[key]
        if f.type in (int, "int"):
            try:
                raw = int(raw)
            except ValueError as e:
                raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
        overrides[f.name] = raw
    return _validate(overrides, "environment")


def load_config(path: Path | str | None = None, environ: dict | None = None) -> ViewerConfig:
    """Load configuration. A missing file is not an error; a malformed one is."""
    path = Path(path) if path is not None else default_config_path()
    file_values = _read_file(path) if path.is_file() else {}
    overrides = _read_environment(os.environ if environ is None else environ)
    return replace(ViewerConfig(), **{**file_values, **overrides})
