"""
Scheduler -- in-process polling scheduler for automation jobs.

Contract:
    ``tick()`` scans the JobRegistry for due jobs and triggers each one
    through ``trigger_job``'s code path; ``trigger_job()`` is also the
    manual path.  A trigger validates parameters, claims a run slot in the
    RunTracker, hands the batch to a background pool and returns at once.
    When the batch finishes (or blows up) the run is recorded terminal and
    the job's last_run/next_run are updated.

Invariants enforced:
    AU-1 -- Single flight per job type (claim via RunTracker).
    AU-4 -- A failure while evaluating or triggering one job is logged and
            the tick moves on to the next job.
    AU-7 -- Parameters validated before a run is claimed.
    AU-8 -- All timestamps from the injected Clock.

Non-goals:
    - NOT a distributed scheduler (no leader election).
    - No mid-run cancellation.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Mapping

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.exceptions import AutomationError, JobNotFoundError
from school_kernel.logging_config import LogContext, get_logger

from school_automation.domain.types import (
    ErrorInfo,
    JobDefinition,
    JobResult,
    JobRun,
    JobType,
    RunTrigger,
    TriggerOutcome,
)
from school_automation.services.engine import AutomationEngine, ResolvedJob
from school_automation.services.registry import JobRegistry
from school_automation.services.run_tracker import RunTracker

logger = get_logger("automation.scheduler")


class Scheduler:
    """Timer-driven owner of the JobRegistry and RunTracker.

    Contract:
        - ``tick()`` evaluates all active jobs, fires due ones; never raises.
        - ``trigger_job()`` returns a TriggerOutcome; never raises.
        - ``run_now()`` runs a job type synchronously (execution surface).
        - ``start()`` / ``stop()`` for background thread operation.
    """

    def __init__(
        self,
        registry: JobRegistry,
        tracker: RunTracker,
        engine: AutomationEngine,
        clock: Clock | None = None,
        tick_interval_seconds: float = 5.0,
        max_concurrent_runs: int = 4,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._engine = engine
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._max_concurrent_runs = max_concurrent_runs
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._in_flight: dict[str, Future] = {}  # job_id -> background run
        self._futures_lock = threading.Lock()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def tracker(self) -> RunTracker:
        return self._tracker

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def get_all_jobs(self) -> tuple[JobDefinition, ...]:
        return self._registry.get_all_jobs()

    def start_job(self, job_id: str) -> bool:
        return self._registry.set_active(job_id, True)

    def stop_job(self, job_id: str) -> bool:
        return self._registry.set_active(job_id, False)

    def trigger_job(self, job_id: str) -> TriggerOutcome:
        """Manually trigger a job; accepted means the run is under way."""
        logger.info("job_trigger_requested", extra={"job_id": job_id})
        return self._trigger(job_id, RunTrigger.MANUAL)

    def run_now(
        self,
        job_type: JobType | str,
        params: Mapping[str, Any] | None = None,
        trigger: RunTrigger = RunTrigger.DIRECT,
    ) -> JobRun:
        """Validate, claim, execute and record a run in the caller's thread.

        Raises:
            JobValidationError: Bad job type or parameters; no run created.
            JobAlreadyRunningError: A run of this type is in flight.
        """
        job = self._engine.resolve(job_type, params)
        run_id = self._tracker.record_start(
            job.job_type, trigger=trigger, parameters=job.parameters_dict(),
        )
        with LogContext.bind(job_type=job.job_type.value, run_id=run_id):
            return self._execute_and_record(run_id, job)

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate and fire due jobs (public for testing).

        Returns the number of jobs whose run was accepted.
        """
        try:
            due = self._registry.due_jobs(self._clock.now())
        except Exception:
            logger.exception("scheduler_tick_failed")
            return 0

        fired = 0
        for definition in due:
            try:
                if self._is_in_flight(definition.job_id):
                    continue
                if self._tracker.is_running(definition.job_type):
                    continue
                outcome = self._trigger(definition.job_id, RunTrigger.SCHEDULE)
                if outcome.accepted:
                    fired += 1
                else:
                    logger.warning(
                        "scheduled_trigger_rejected",
                        extra={
                            "job_id": definition.job_id,
                            "code": outcome.error.code if outcome.error else None,
                            "detail": outcome.error.message if outcome.error else None,
                        },
                    )
            except Exception:
                logger.exception(
                    "schedule_fire_failed", extra={"job_id": definition.job_id},
                )
        return fired

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the tick loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="automation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the tick loop and wait for in-flight runs to finish.

        Args:
            timeout: Max seconds to wait for the loop and for each pending run.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        drained = self.drain(timeout=timeout)
        logger.info("scheduler_stopped", extra={"drained": drained})

    def close(self, timeout: float = 30.0) -> None:
        """Stop and release the background run pool."""
        self.stop(timeout=timeout)
        with self._futures_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight background runs; True if none remain."""
        with self._futures_lock:
            pending = list(self._in_flight.values())
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _is_in_flight(self, job_id: str) -> bool:
        with self._futures_lock:
            return job_id in self._in_flight

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._futures_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._max_concurrent_runs,
                    thread_name_prefix="automation-run",
                )
            return self._pool

    def _trigger(self, job_id: str, trigger: RunTrigger) -> TriggerOutcome:
        try:
            definition = self._registry.get_job(job_id)
            job = self._engine.resolve(definition.job_type, definition.parameters)
            run_id = self._tracker.record_start(
                definition.job_type,
                trigger=trigger,
                job_id=job_id,
                parameters=job.parameters_dict(),
            )
        except AutomationError as exc:
            if not isinstance(exc, JobNotFoundError):
                logger.info(
                    "job_trigger_rejected",
                    extra={"job_id": job_id, "code": exc.code, "detail": str(exc)},
                )
            return TriggerOutcome(
                job_id=job_id, accepted=False, error=ErrorInfo.from_exception(exc),
            )

        try:
            future = self._get_pool().submit(
                self._run_in_background, definition, job, run_id,
            )
        except RuntimeError as exc:
            # Pool already shut down; the claimed run must still terminate.
            self._tracker.record_completion(
                run_id,
                JobResult.aborted(str(exc), timestamp=self._clock.now()),
                failed=True,
                error=str(exc),
            )
            return TriggerOutcome(
                job_id=job_id, accepted=False, run_id=run_id,
                error=ErrorInfo(code="SYSTEM_ERROR", message=str(exc)),
            )

        with self._futures_lock:
            self._in_flight[job_id] = future
        future.add_done_callback(lambda _f: self._forget(job_id, _f))

        logger.info(
            "job_triggered",
            extra={"job_id": job_id, "run_id": run_id, "trigger": trigger.value},
        )
        return TriggerOutcome(job_id=job_id, accepted=True, run_id=run_id)

    def _forget(self, job_id: str, future: Future) -> None:
        with self._futures_lock:
            if self._in_flight.get(job_id) is future:
                del self._in_flight[job_id]

    def _run_in_background(
        self, definition: JobDefinition, job: ResolvedJob, run_id: str,
    ) -> JobRun:
        with LogContext.bind(
            job_id=definition.job_id, job_type=job.job_type.value, run_id=run_id,
        ):
            started_at = self._tracker.get_run(run_id).start_time
            try:
                return self._execute_and_record(run_id, job)
            finally:
                self._registry.record_triggered(definition.job_id, started_at)

    def _execute_and_record(self, run_id: str, job: ResolvedJob) -> JobRun:
        """Run the batch and move the run to a terminal state; never raises
        for batch failures."""
        try:
            result = self._engine.run(job)
        except Exception as exc:
            logger.exception("run_aborted", extra={"run_id": run_id})
            result = JobResult.aborted(
                str(exc) or type(exc).__name__,
                timestamp=job.as_of,
                code=getattr(exc, "code", "SYSTEM_ERROR"),
            )
            return self._tracker.record_completion(
                run_id, result, failed=True, error=str(exc) or type(exc).__name__,
            )

        run_level = [e.message for e in result.errors if e.item_id is None]
        error = run_level[0] if run_level else None
        if error is None and result.failed_items:
            error = f"{result.failed_items} of {result.total_items} item(s) failed"
        return self._tracker.record_completion(
            run_id, result, failed=error is not None, error=error,
        )
