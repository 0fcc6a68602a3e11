"""
RunTracker -- in-flight and recent JobRun records.

Contract:
    The single writer of JobRun state and the single-flight guard: the
    check for an existing Running run and the insert of a new one happen
    under one lock (AU-1).  Terminal runs move into a bounded per-type
    history; the oldest are evicted once ``history_retention`` is reached.

Non-goals:
    - NOT a cross-process lock; two processes each get their own tracker.
    - No cancellation: a started run always reaches COMPLETED or FAILED.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import replace
from typing import Any
from uuid import uuid4

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.exceptions import JobAlreadyRunningError, RunNotFoundError
from school_kernel.logging_config import get_logger

from school_automation.domain.types import (
    JobResult,
    JobRun,
    JobType,
    RunStatus,
    RunTrigger,
)

logger = get_logger("automation.run_tracker")


class RunTracker:
    """Tracks JobRuns from claim to eviction."""

    def __init__(
        self,
        clock: Clock | None = None,
        history_retention: int = 50,
        lock: threading.RLock | None = None,
    ) -> None:
        if history_retention <= 0:
            raise ValueError("history_retention must be positive")
        self._clock = clock or SystemClock()
        self._retention = history_retention
        self._lock = lock or threading.RLock()
        self._active: dict[str, JobRun] = {}  # run_id -> PENDING/RUNNING run
        self._running_by_type: dict[JobType, str] = {}
        self._history: dict[JobType, deque[tuple[int, JobRun]]] = {}
        self._completed_seq = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def record_start(
        self,
        job_type: JobType,
        trigger: RunTrigger = RunTrigger.MANUAL,
        job_id: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> str:
        """Claim the run slot for ``job_type`` and return the new run id.

        Raises:
            JobAlreadyRunningError: A run of this job type is in flight.
        """
        with self._lock:
            running_id = self._running_by_type.get(job_type)
            if running_id is not None:
                raise JobAlreadyRunningError(job_type.value, running_id)

            now = self._clock.now()
            run = JobRun(
                run_id=str(uuid4()),
                job_type=job_type,
                status=RunStatus.PENDING,
                start_time=now,
                trigger=trigger,
                job_id=job_id,
                parameters=dict(parameters or {}),
            )
            run = replace(run, status=RunStatus.RUNNING)
            self._active[run.run_id] = run
            self._running_by_type[job_type] = run.run_id

        logger.info(
            "run_started",
            extra={
                "run_id": run.run_id,
                "job_type": job_type.value,
                "job_id": job_id,
                "trigger": trigger.value,
            },
        )
        return run.run_id

    def record_completion(
        self,
        run_id: str,
        result: JobResult,
        failed: bool,
        error: str | None = None,
    ) -> JobRun:
        """Move a running run to COMPLETED or FAILED and into history.

        Raises:
            RunNotFoundError: ``run_id`` is not in flight.
        """
        with self._lock:
            run = self._active.pop(run_id, None)
            if run is None:
                raise RunNotFoundError(run_id)
            self._running_by_type.pop(run.job_type, None)

            run = replace(
                run,
                status=RunStatus.FAILED if failed else RunStatus.COMPLETED,
                end_time=self._clock.now(),
                result=result,
                error=error,
            )
            history = self._history.setdefault(
                run.job_type, deque(maxlen=self._retention),
            )
            self._completed_seq += 1
            history.append((self._completed_seq, run))

        logger.info(
            "run_completed",
            extra={
                "run_id": run_id,
                "job_type": run.job_type.value,
                "status": run.status.value,
                "total_items": result.total_items,
                "successful_items": result.successful_items,
                "failed_items": result.failed_items,
                "execution_time_ms": result.execution_time_ms,
            },
        )
        return run

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_running_jobs(self) -> tuple[JobRun, ...]:
        with self._lock:
            return tuple(
                r for r in self._active.values() if r.status == RunStatus.RUNNING
            )

    def is_running(self, job_type: JobType) -> bool:
        with self._lock:
            return job_type in self._running_by_type

    def get_run(self, run_id: str) -> JobRun:
        """Look up an in-flight or retained run.

        Raises:
            RunNotFoundError: Unknown or already evicted run id.
        """
        with self._lock:
            run = self._active.get(run_id)
            if run is not None:
                return run
            for history in self._history.values():
                for _, past in history:
                    if past.run_id == run_id:
                        return past
        raise RunNotFoundError(run_id)

    def get_history(
        self, job_type: JobType | None = None, limit: int = 20,
    ) -> tuple[JobRun, ...]:
        """Most recent terminal runs first, at most ``limit`` of them."""
        if limit <= 0:
            return ()
        with self._lock:
            if job_type is not None:
                entries = list(self._history.get(job_type, ()))
            else:
                entries = [e for h in self._history.values() for e in h]
        entries.sort(key=lambda e: e[0], reverse=True)
        return tuple(run for _, run in entries[:limit])

    def clear_history(self, job_type: JobType | None = None) -> int:
        """Drop retained terminal runs; returns how many were dropped."""
        with self._lock:
            if job_type is not None:
                dropped = len(self._history.pop(job_type, ()))
            else:
                dropped = sum(len(h) for h in self._history.values())
                self._history.clear()
        logger.info("run_history_cleared", extra={"dropped": dropped})
        return dropped
