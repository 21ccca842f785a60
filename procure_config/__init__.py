"""
procure_config -- single public entrypoint for routing configuration.

Responsibility:
    ``get_active_rule_set()`` is the only way services obtain routing
    rules at runtime.  It returns an immutable ``RuleSet`` snapshot; a
    changed file produces a new snapshot with a new checksum, and
    requisitions already submitted keep the steps they were given.

Architecture position:
    Configuration -- sits above ``procure_kernel`` and below
    ``procure_services``.  The kernel MUST NEVER import from here.

Failure modes:
    - ``FileNotFoundError`` -- the rule file does not exist.
    - ``InvalidRuleError`` -- the rule file fails validation.
    - ``ConfigurationError`` -- an environment variable is unusable.

Audit relevance:
    Every successful ``get_active_rule_set()`` call emits a
    ``CONFIG_TRACE`` log entry with the version, checksum and rule count.
"""

from __future__ import annotations

import logging
from pathlib import Path

from procure_config.loader import compute_checksum, load_rule_set, parse_rule_set
from procure_config.settings import KernelSettings, load_settings
from procure_kernel.domain.approval import RuleSet

_logger = logging.getLogger("procure_kernel.config")


def get_active_rule_set(path: Path | str | None = None) -> RuleSet:
    """The ONLY public rule configuration entrypoint.

    Args:
        path: Rule YAML to load.  Defaults to ``PROCURE_RULES_PATH`` or the
            bundled ``rules/default.yaml``.
    """
    rules_path = Path(path) if path is not None else load_settings().rules_path
    rule_set = load_rule_set(rules_path)

    _logger.info(
        "CONFIG_TRACE",
        extra={
            "trace_type": "CONFIG_TRACE",
            "rules_path": str(rules_path),
            "rule_set_version": rule_set.version,
            "checksum": rule_set.checksum,
            "rule_count": len(rule_set.rules),
        },
    )
    return rule_set


__all__ = [
    "KernelSettings",
    "compute_checksum",
    "get_active_rule_set",
    "load_rule_set",
    "load_settings",
    "parse_rule_set",
]
