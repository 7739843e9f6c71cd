"""
Config check use case — validate jetson-setup.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from jetson_setup.core.config.loader import ConfigError, load_config, resolve_config_path
from jetson_setup.core.models.config import SetupConfig
from jetson_setup.core.services.plan import build_plan


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: SetupConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "browser_strategy": self.config.browser.strategy if self.config else None,
            "max_attempts": self.config.retry.max_attempts if self.config else None,
            "optional_steps": len(self.config.optional_steps) if self.config else 0,
        }


def check_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate setup configuration and report issues.

    A missing config file is not an error: the built-in defaults apply.

    Args:
        config_path: Optional explicit path to jetson-setup.yml.
        env: Environment for overrides (default: os.environ).

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()
    result.config_path = resolve_config_path(config_path, env)

    try:
        config = load_config(config_path, env=env)
        result.config = config
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    if result.config_path is None:
        result.warnings.append("No jetson-setup.yml found. Using built-in defaults.")

    # Semantic checks
    if not config.locks.resources:
        result.warnings.append("No lock resources configured. apt steps will not wait for dpkg.")

    if config.retry.initial_delay == 0:
        result.warnings.append("retry.initial_delay is 0. Failed steps retry immediately.")

    labels = [o.label for o in config.optional_steps]
    dupes = {n for n in labels if labels.count(n) > 1}
    if dupes:
        result.errors.append(f"Duplicate optional step labels: {', '.join(sorted(dupes))}")

    plan = build_plan(config)
    for opt in plan.optional:
        if not opt.script.is_file():
            result.warnings.append(f"Optional step '{opt.label}' script not found: {opt.script}")

    result.valid = len(result.errors) == 0
    return result
