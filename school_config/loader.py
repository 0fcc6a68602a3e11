"""
Reads ``sets/automation.yaml`` (or any file with the same layout) into the
frozen dataclasses of ``school_config.schema``.

Required keys that are missing surface as ``KeyError``; bad values and
duplicate job ids as ``ValueError``.  File and YAML errors propagate from
``open`` and ``yaml.safe_load`` unchanged.  Most callers want
``school_config.get_active_config()`` instead of these functions.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from school_config.schema import (
    AutomationConfig,
    DatabaseSettings,
    EngineSettings,
    JobConfig,
    SchedulerSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parsed mapping from ``path``; an empty file yields ``{}``."""
    with open(path, encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _positive(section: str, name: str, value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{section}.{name} must be a positive number, got {value!r}")
    return value


def parse_scheduler(data: dict[str, Any]) -> SchedulerSettings:
    """Parse SchedulerSettings; omitted keys take the schema defaults."""
    defaults = SchedulerSettings()
    return SchedulerSettings(
        tick_interval_seconds=_positive(
            "scheduler", "tick_interval_seconds",
            data.get("tick_interval_seconds", defaults.tick_interval_seconds),
        ),
        max_concurrent_runs=_positive(
            "scheduler", "max_concurrent_runs",
            data.get("max_concurrent_runs", defaults.max_concurrent_runs),
        ),
        history_retention=_positive(
            "scheduler", "history_retention",
            data.get("history_retention", defaults.history_retention),
        ),
    )


def parse_engine(data: dict[str, Any]) -> EngineSettings:
    """Parse EngineSettings; omitted keys take the schema defaults."""
    defaults = EngineSettings()
    settings = EngineSettings(
        item_workers=_positive(
            "engine", "item_workers", data.get("item_workers", defaults.item_workers),
        ),
        item_timeout_seconds=_positive(
            "engine", "item_timeout_seconds",
            data.get("item_timeout_seconds", defaults.item_timeout_seconds),
        ),
        abort_after_stalls=int(_positive(
            "engine", "abort_after_stalls",
            data.get("abort_after_stalls", defaults.abort_after_stalls),
        )),
        min_year=int(data.get("min_year", defaults.min_year)),
        max_year=int(data.get("max_year", defaults.max_year)),
        early_reminder_window_days=_positive(
            "engine", "early_reminder_window_days",
            data.get("early_reminder_window_days", defaults.early_reminder_window_days),
        ),
        billing_due_day=int(data.get("billing_due_day", defaults.billing_due_day)),
        notify_on_billing=bool(data.get("notify_on_billing", defaults.notify_on_billing)),
    )
    if settings.min_year > settings.max_year:
        raise ValueError(
            f"engine.min_year ({settings.min_year}) must not exceed "
            f"engine.max_year ({settings.max_year})"
        )
    if not 1 <= settings.billing_due_day <= 31:
        raise ValueError(
            f"engine.billing_due_day must be within 1-31, got {settings.billing_due_day}"
        )
    return settings


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
    )


def parse_job(data: dict[str, Any]) -> JobConfig:
    """
    Parse a ``JobConfig`` from a dict.

    Raises:
        KeyError: if ``id``, ``name`` or ``job_type`` is missing.
        ValueError: if not exactly one of ``schedule`` / ``interval_seconds``
            is given.
    """
    job_id = data["id"]
    schedule = data.get("schedule")
    interval = data.get("interval_seconds")
    if (schedule is None) == (interval is None):
        raise ValueError(
            f"Job {job_id!r}: exactly one of 'schedule' or 'interval_seconds' is required"
        )
    return JobConfig(
        job_id=job_id,
        name=data["name"],
        job_type=data["job_type"],
        schedule=str(schedule) if schedule is not None else None,
        interval_seconds=int(interval) if interval is not None else None,
        description=data.get("description", ""),
        is_active=bool(data.get("is_active", True)),
        parameters=dict(data.get("parameters") or {}),
    )


def parse_automation_config(data: dict[str, Any]) -> AutomationConfig:
    """
    Parse the whole configuration document.

    Raises:
        KeyError: if ``config_id`` or ``version`` is missing.
        ValueError: on invalid settings or duplicate job ids.
    """
    jobs = tuple(parse_job(j) for j in data.get("jobs") or [])
    seen: set[str] = set()
    for job in jobs:
        if job.job_id in seen:
            raise ValueError(f"Duplicate job id in configuration: {job.job_id!r}")
        seen.add(job.job_id)

    return AutomationConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        engine=parse_engine(data.get("engine") or {}),
        database=parse_database(data.get("database") or {}),
        jobs=jobs,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
