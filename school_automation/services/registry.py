"""
JobRegistry -- recurring job definitions and their schedule state.

Contract:
    Holds frozen JobDefinition snapshots keyed by job id.  Mutations
    (``set_active``, ``record_triggered``) swap in a new snapshot under the
    lock; readers get immutable snapshots and never wait on a running batch.

Invariants enforced:
    AU-5 -- Active job => next_run >= now after every recompute;
            inactive job => next_run is None.
    AU-8 -- "now" comes from the injected Clock.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.exceptions import JobNotFoundError
from school_kernel.logging_config import get_logger

from school_automation.domain.schedule import compute_next_run, is_due, validate_schedule
from school_automation.domain.types import JobDefinition

logger = get_logger("automation.registry")


class JobRegistry:
    """In-memory registry of job definitions.

    ``lock`` may be shared with the RunTracker so the whole scheduling state
    is guarded by one mutex.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._lock = lock or threading.RLock()
        self._jobs: dict[str, JobDefinition] = {}

    def register(self, definition: JobDefinition) -> JobDefinition:
        """Add a definition, computing next_run if it is active.

        Raises:
            ValueError: A job with the same id is already registered.
            ScheduleError: The schedule is missing or invalid.
        """
        validate_schedule(definition)
        with self._lock:
            if definition.job_id in self._jobs:
                raise ValueError(f"Job '{definition.job_id}' is already registered")
            if definition.is_active:
                definition = replace(
                    definition,
                    next_run=compute_next_run(definition, self._clock.now()),
                )
            else:
                definition = replace(definition, next_run=None)
            self._jobs[definition.job_id] = definition

        logger.info(
            "job_registered",
            extra={
                "job_id": definition.job_id,
                "schedule": definition.schedule_label,
                "is_active": definition.is_active,
                "next_run": definition.next_run,
            },
        )
        return definition

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_all_jobs(self) -> tuple[JobDefinition, ...]:
        """Snapshot of every definition, in registration order."""
        with self._lock:
            return tuple(self._jobs.values())

    def get_job(self, job_id: str) -> JobDefinition:
        """
        Raises:
            JobNotFoundError: No job registered under ``job_id``.
        """
        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError:
                raise JobNotFoundError(job_id) from None

    def due_jobs(self, now: datetime) -> tuple[JobDefinition, ...]:
        with self._lock:
            return tuple(d for d in self._jobs.values() if is_due(d, now))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def set_active(self, job_id: str, active: bool) -> bool:
        """Activate (next_run recomputed from now) or deactivate (next_run
        cleared).  Returns False for an unknown id."""
        with self._lock:
            definition = self._jobs.get(job_id)
            if definition is None:
                return False
            next_run = (
                compute_next_run(definition, self._clock.now()) if active else None
            )
            self._jobs[job_id] = replace(
                definition, is_active=active, next_run=next_run,
            )

        logger.info(
            "job_activated" if active else "job_deactivated",
            extra={"job_id": job_id, "next_run": next_run},
        )
        return True

    def record_triggered(self, job_id: str, at: datetime) -> bool:
        """Set last_run=at and recompute next_run relative to ``at``.

        If the recompute falls behind the current time (a run that outlasted
        its next slot), next_run is recomputed from now instead.  Returns
        False for an unknown id.
        """
        with self._lock:
            definition = self._jobs.get(job_id)
            if definition is None:
                return False
            next_run = None
            if definition.is_active:
                now = self._clock.now()
                next_run = compute_next_run(definition, at)
                if next_run < now:
                    next_run = compute_next_run(definition, now)
            self._jobs[job_id] = replace(
                definition, last_run=at, next_run=next_run,
            )
        return True
