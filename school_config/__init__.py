"""
school_config -- single public entrypoint for automation configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``AutomationConfig``.

Architecture position:
    Sits above ``school_kernel`` and below ``school_automation``.  The
    kernel MUST NEVER import from ``school_config``.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` / ``KeyError`` -- schema or structural validation
      failures.
    - ``yaml.YAMLError`` -- malformed YAML.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``automation_config_loaded`` log entry carrying the config_id, version
    and checksum.
"""

from __future__ import annotations

from pathlib import Path

from school_kernel.logging_config import get_logger

from school_config.loader import load_yaml_file, parse_automation_config
from school_config.schema import (
    AutomationConfig,
    DatabaseSettings,
    EngineSettings,
    JobConfig,
    SchedulerSettings,
)

_logger = get_logger("config")

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "automation.yaml"


def get_active_config(path: Path | str | None = None) -> AutomationConfig:
    """Load, validate and return the automation configuration.

    Args:
        path: Override path to a YAML file. Defaults to
            school_config/sets/automation.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
        KeyError: If a required key is missing.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_automation_config(load_yaml_file(config_path))

    _logger.info(
        "automation_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "job_count": len(config.jobs),
            "path": str(config_path),
        },
    )
    return config


__all__ = [
    "AutomationConfig",
    "DatabaseSettings",
    "DEFAULT_CONFIG_PATH",
    "EngineSettings",
    "JobConfig",
    "SchedulerSettings",
    "get_active_config",
]
