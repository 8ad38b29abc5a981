"""order_etl.config

YAML runtime configuration for the ingestion CLI and watcher.

Example (config/order_etl.yml):

    db_dsn: "postgresql://etl@localhost/orders"
    watch_dir: /app/ftp
    file_pattern: "*.csv"
    worker_count: 4
    queue_size: 100
    recent_files_limit: 5
    rejects_dir: ./artifacts/rejects
    reports_dir: ./artifacts/reports

Every key is optional.  ORDER_ETL_DB_DSN, when set, replaces db_dsn; CLI
flags are applied on top by the caller.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DSN_ENV_VAR = "ORDER_ETL_DB_DSN"

KNOWN_KEYS = frozenset({
    "db_dsn",
    "watch_dir",
    "file_pattern",
    "worker_count",
    "queue_size",
    "recent_files_limit",
    "rejects_dir",
    "reports_dir",
})

_POSITIVE_INT_KEYS = ("worker_count", "queue_size", "recent_files_limit")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a YAML config file fails validation."""


# ---------------------------------------------------------------------------
# IngestConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IngestConfig:
    db_dsn: str | None = None
    watch_dir: Path = Path("/app/ftp")
    file_pattern: str = "*.csv"
    worker_count: int = 4
    queue_size: int = 100
    recent_files_limit: int = 5
    rejects_dir: Path | None = None
    reports_dir: Path = Path("./artifacts/reports")

    def with_overrides(self, **overrides: Any) -> "IngestConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def validate_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match the config schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    unknown = set(data.keys()) - KNOWN_KEYS
    if unknown:
        raise ConfigValidationError(f"Unknown config keys: {sorted(unknown)}")

    for key in _POSITIVE_INT_KEYS:
        if key not in data:
            continue
        val = data[key]
        if isinstance(val, bool) or not isinstance(val, int):
            raise ConfigValidationError(f"'{key}' value '{val}' is not an integer.")
        if val < 1:
            raise ConfigValidationError(f"'{key}' value {val} must be >= 1.")

    pattern = data.get("file_pattern")
    if pattern is not None and (not isinstance(pattern, str) or not pattern.strip()):
        raise ConfigValidationError("'file_pattern' must be a non-empty string.")


def load_config(yaml_path: Path | None = None) -> IngestConfig:
    """Load and validate config; defaults when no path is given.

    Raises:
        ConfigValidationError: If any key is unknown or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    data: dict[str, Any] = {}
    if yaml_path is not None:
        raw = yaml_path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw) or {}
        validate_config(data)

    cfg = IngestConfig()
    values: dict[str, Any] = {}
    for key in ("db_dsn", "file_pattern", *_POSITIVE_INT_KEYS):
        if data.get(key) is not None:
            values[key] = data[key]
    for key in ("watch_dir", "rejects_dir", "reports_dir"):
        if data.get(key) is not None:
            values[key] = Path(str(data[key]))

    env_dsn = os.environ.get(DSN_ENV_VAR)
    if env_dsn:
        values["db_dsn"] = env_dsn
    return cfg.with_overrides(**values)
