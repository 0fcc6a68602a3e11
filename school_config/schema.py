"""
Automation configuration schema.

Frozen dataclasses parsed from the YAML configuration set by the loader.
Defaults here match the packaged ``sets/automation.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchedulerSettings:
    """Timer loop and run bookkeeping."""

    tick_interval_seconds: float = 5.0
    max_concurrent_runs: int = 4
    history_retention: int = 50  # Terminal runs kept per job type


@dataclass(frozen=True)
class EngineSettings:
    """Batch execution and business rules."""

    item_workers: int = 8
    item_timeout_seconds: float = 30.0
    abort_after_stalls: int = 3  # Consecutive timed-out or store-unavailable items
    min_year: int = 2020
    max_year: int = 2030
    early_reminder_window_days: int = 3
    billing_due_day: int = 15
    notify_on_billing: bool = True


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///school.db"
    echo: bool = False


@dataclass(frozen=True)
class JobConfig:
    """Static definition of one recurring job."""

    job_id: str
    name: str
    job_type: str  # JobType value, e.g. "MonthlyBilling"
    schedule: str | None = None
    interval_seconds: int | None = None
    description: str = ""
    is_active: bool = True
    parameters: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AutomationConfig:
    """Complete automation configuration set."""

    config_id: str
    version: int
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    jobs: tuple[JobConfig, ...] = ()
    checksum: str = ""

    def get_job(self, job_id: str) -> JobConfig | None:
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        return None
