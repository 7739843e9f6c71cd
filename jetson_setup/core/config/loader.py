"""
Configuration loader — reads jetson-setup.yml into a SetupConfig.

The file is optional: with no file the built-in defaults describe the
standard JetPack 6 setup, helper scripts are looked up in ``scripts/`` next
to the invoking program, and the run log is written to the cwd. When a
file is used, relative paths in it (scripts_dir, log_dir) resolve against
the file's directory.

Resolution order for the config file:
    --config flag  >  JETSON_SETUP_CONFIG  >  jetson-setup.yml found upward from cwd

Environment overrides applied after loading:
    JETSON_SETUP_SCRIPTS_DIR   scripts_dir
    JETSON_SETUP_LOG_DIR       log_dir
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from jetson_setup.core.models.config import SetupConfig
from jetson_setup.core.services.browser import browser_strategies

logger = logging.getLogger(__name__)

CONFIG_FILE = "jetson-setup.yml"
ENV_CONFIG = "JETSON_SETUP_CONFIG"
ENV_SCRIPTS_DIR = "JETSON_SETUP_SCRIPTS_DIR"
ENV_LOG_DIR = "JETSON_SETUP_LOG_DIR"


class ConfigError(Exception):
    """Raised when setup configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for jetson-setup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the config file, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def resolve_config_path(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Path | None:
    """Pick the config file to load, or None for built-in defaults."""
    env = os.environ if env is None else env
    if path is not None:
        return path
    if env.get(ENV_CONFIG):
        return Path(env[ENV_CONFIG])
    return find_config_file()


def invocation_dir(argv0: str | None = None) -> Path:
    """Directory of the program that was invoked (``sys.argv[0]``)."""
    return Path(argv0 or sys.argv[0]).expanduser().resolve().parent


def parse_config(raw: str, source: str = "<string>", base_dir: Path | None = None) -> SetupConfig:
    """Parse and validate YAML configuration text.

    Raises:
        ConfigError: If the YAML is malformed or fails validation.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # Allow everything to sit under a top-level "setup" key.
    if "setup" in data and isinstance(data["setup"], dict):
        data = data["setup"]

    try:
        config = SetupConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e

    if base_dir is not None:
        config.base_dir = str(base_dir)
    return config


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    argv0: str | None = None,
) -> SetupConfig:
    """Load configuration, falling back to defaults when no file exists.

    Args:
        path: Explicit config path. Must exist if given.
        env: Environment for overrides (default: os.environ).
        argv0: Invoked program path; without a config file, helper scripts
            are found next to it (default: sys.argv[0]).

    Returns:
        Validated SetupConfig.

    Raises:
        ConfigError: If an explicit file is missing or any file is invalid.
    """
    env = os.environ if env is None else env
    config_path = resolve_config_path(path, env)

    if config_path is None:
        logger.debug("No %s found, using defaults", CONFIG_FILE)
        config = SetupConfig(base_dir=str(Path.cwd()))
        config.scripts_dir = str(invocation_dir(argv0) / config.scripts_dir)
    else:
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
        logger.debug("Loading setup config from %s", config_path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e
        config = parse_config(raw, str(config_path), base_dir=config_path.parent.resolve())
        logger.info("Loaded setup config from %s", config_path)

    if env.get(ENV_SCRIPTS_DIR):
        config.scripts_dir = env[ENV_SCRIPTS_DIR]
    if env.get(ENV_LOG_DIR):
        config.log_dir = env[ENV_LOG_DIR]

    if config.browser.strategy not in browser_strategies():
        raise ConfigError(
            f"Unknown browser strategy '{config.browser.strategy}'. "
            f"Available: {', '.join(browser_strategies())}"
        )

    return config
