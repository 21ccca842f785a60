"""
Runtime settings (``procure_config.settings``).

Responsibility:
    Reads the process environment once into a frozen ``KernelSettings``.
    Nothing else in the system reads environment variables.

Variables:
    PROCURE_DATABASE_URL          SQLAlchemy URL (default sqlite:///procurement.db)
    PROCURE_LOG_LEVEL             logging level name (default INFO)
    PROCURE_RULES_PATH            routing-rule YAML (default: bundled rules)
    PROCURE_LOCK_TIMEOUT_SECONDS  entity lock timeout (default 30)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from procure_kernel.exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///procurement.db"
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
DEFAULT_RULES_PATH = Path(__file__).parent / "rules" / "default.yaml"


@dataclass(frozen=True)
class KernelSettings:
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    rules_path: Path = DEFAULT_RULES_PATH
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS


def load_settings(environ: Mapping[str, str] | None = None) -> KernelSettings:
    """
    Build settings from ``environ`` (defaults to ``os.environ``).

    Raises:
        ConfigurationError: a variable is present but unusable.
    """
    env = os.environ if environ is None else environ

    log_level = env.get("PROCURE_LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"PROCURE_LOG_LEVEL is not a logging level: {log_level!r}")

    raw_timeout = env.get("PROCURE_LOCK_TIMEOUT_SECONDS")
    if raw_timeout is None or raw_timeout.strip() == "":
        lock_timeout = DEFAULT_LOCK_TIMEOUT_SECONDS
    else:
        try:
            lock_timeout = float(raw_timeout)
        except ValueError:
            raise ConfigurationError(
                f"PROCURE_LOCK_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}"
            )
        if lock_timeout <= 0:
            raise ConfigurationError(
                f"PROCURE_LOCK_TIMEOUT_SECONDS must be positive, got {raw_timeout!r}"
            )

    rules_path = env.get("PROCURE_RULES_PATH")

    return KernelSettings(
        database_url=env.get("PROCURE_DATABASE_URL") or DEFAULT_DATABASE_URL,
        log_level=log_level,
        rules_path=Path(rules_path) if rules_path else DEFAULT_RULES_PATH,
        lock_timeout_seconds=lock_timeout,
    )
