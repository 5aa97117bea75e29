"""
Module: tracking_kernel.config
Responsibility: The single place that reads runtime settings (database URL,
    pool sizing, retry budget, log level) from a YAML file and the process
    environment, and returns them as one frozen ``KernelSettings`` value.
Architecture position: Kernel > Config.  May import from exceptions/logging
    only.  Services never read the environment themselves; they receive
    values from ``KernelSettings`` through their constructors.

Precedence (lowest to highest):
    1. ``KernelSettings`` defaults
    2. YAML file (``config_file`` argument or ``TRACKING_CONFIG_FILE``)
    3. Environment variables (``TRACKING_*``; ``DATABASE_URL`` as a
       fallback for the database URL)

Failure modes:
    - FileNotFoundError if an explicitly named YAML file does not exist.
    - yaml.YAMLError if the YAML file is malformed.
    - ValueError on unknown YAML keys or values of the wrong shape.

Note: the transition table is NOT configurable.  It is compiled-in policy
    (see domain/transition_policy.py).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from tracking_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_FILE_ENV = "TRACKING_CONFIG_FILE"

DEFAULT_DATABASE_URL = "sqlite:///tracking_kernel.db"


@dataclass(frozen=True)
class KernelSettings:
    """
    Runtime settings for the tracking kernel.

    Guarantees:
        - Immutable once constructed; safe to share across threads.
        - ``max_transition_attempts`` >= 1.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    sqlite_busy_timeout: float = 30.0
    max_transition_attempts: int = 3
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.max_transition_attempts < 1:
            raise ValueError(
                f"max_transition_attempts must be >= 1, got {self.max_transition_attempts}"
            )
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.sqlite_busy_timeout <= 0:
            raise ValueError(
                f"sqlite_busy_timeout must be > 0, got {self.sqlite_busy_timeout}"
            )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


# environment variable -> settings field
_ENV_FIELDS: dict[str, str] = {
    "TRACKING_DATABASE_URL": "database_url",
    "TRACKING_ECHO_SQL": "echo_sql",
    "TRACKING_POOL_SIZE": "pool_size",
    "TRACKING_MAX_OVERFLOW": "max_overflow",
    "TRACKING_POOL_TIMEOUT": "pool_timeout",
    "TRACKING_SQLITE_BUSY_TIMEOUT": "sqlite_busy_timeout",
    "TRACKING_MAX_TRANSITION_ATTEMPTS": "max_transition_attempts",
    "TRACKING_LOG_LEVEL": "log_level",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _field_types() -> dict[str, type]:
    return {f.name: type(f.default) for f in fields(KernelSettings)}


def _coerce(name: str, value: Any) -> Any:
    """Coerce a raw YAML/env value to the type of the settings field."""
    target = _field_types()[name]
    if target is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Setting '{name}' expects a boolean, got {value!r}")
    if target is int:
        if isinstance(value, bool):
            raise ValueError(f"Setting '{name}' expects an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Setting '{name}' expects an integer, got {value!r}") from exc
    if target is float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Setting '{name}' expects a number, got {value!r}") from exc
    return str(value)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML settings file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping at top level")
    return data


def load_settings(
    config_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelSettings:
    """
    Build ``KernelSettings`` from defaults, an optional YAML file and the
    environment.

    Args:
        config_file: Path to a YAML file.  Falls back to ``TRACKING_CONFIG_FILE``.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Frozen KernelSettings.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    known = set(_field_types())

    path = config_file or env.get(CONFIG_FILE_ENV)
    if path:
        raw = load_yaml_file(Path(path))
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown settings in {path}: {', '.join(unknown)}")
        for name, value in raw.items():
            overrides[name] = _coerce(name, value)

    if "TRACKING_DATABASE_URL" not in env and env.get("DATABASE_URL"):
        overrides["database_url"] = env["DATABASE_URL"]
    for env_name, field_name in _ENV_FIELDS.items():
        if env_name in env:
            overrides[field_name] = _coerce(field_name, env[env_name])

    settings = replace(KernelSettings(), **overrides)
    logger.debug(
        "settings_loaded",
        extra={
            "config_file": str(path) if path else None,
            "dialect": settings.database_url.split(":", 1)[0],
            "max_transition_attempts": settings.max_transition_attempts,
        },
    )
    return settings
