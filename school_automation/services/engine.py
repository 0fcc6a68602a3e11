"""
AutomationEngine -- executes one job type's batch against the Data Store.

Contract:
    ``execute(job_type, params)`` validates and resolves parameters FIRST
    (JobValidationError, nothing else touched), prepares items (a failure
    there aborts the run with AutomationSystemError), then processes the
    items on a bounded worker pool.  Returns a JobResult; owns no state
    between calls.

Invariants enforced:
    AU-2 -- total_items == successful_items + failed_items.
    AU-3 -- An item's exception or timeout is caught, recorded in
            ``errors`` and counted as failed; the batch continues unless
            ``abort_after_stalls`` consecutive items stall, which aborts
            the run with the remaining items counted as failed.
    AU-7 -- Parameters resolved once, before any work.
    AU-8 -- ``as_of`` comes from the injected Clock.
"""

from __future__ import annotations

import contextvars
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.exceptions import (
    AutomationSystemError,
    DataStoreUnavailableError,
    JobValidationError,
)
from school_kernel.logging_config import get_logger

from school_automation.adapters.data_store import DataStore
from school_automation.domain.types import JobItemError, JobResult, JobType
from school_automation.jobs.base import JobHandler, JobHandlerRegistry, JobItem

logger = get_logger("automation.engine")

_ITEM_TIMEOUT = "ITEM_TIMEOUT"

# Item outcomes that point at a stuck collaborator rather than bad data.
_STALL_CODES = frozenset({_ITEM_TIMEOUT, DataStoreUnavailableError.code})


@dataclass(frozen=True)
class ResolvedJob:
    """A job type with its parameters validated and defaulted."""

    job_type: JobType
    params: Any
    as_of: datetime

    def parameters_dict(self) -> dict[str, Any]:
        as_dict = getattr(self.params, "as_dict", None)
        return as_dict() if as_dict is not None else {}


def coerce_job_type(job_type: JobType | str) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        allowed = ", ".join(t.value for t in JobType)
        raise JobValidationError(
            "job_type", job_type, f"must be one of: {allowed}",
        ) from None


class AutomationEngine:
    """Stateless executor of job handlers.

    Non-goals:
        - Does NOT track runs -- the RunTracker does.
        - Does NOT retry failed items; the next scheduled run picks them up.
    """

    def __init__(
        self,
        store: DataStore,
        handlers: JobHandlerRegistry,
        clock: Clock | None = None,
        item_workers: int = 8,
        item_timeout_seconds: float = 30.0,
        abort_after_stalls: int = 3,
    ) -> None:
        if item_workers <= 0:
            raise ValueError("item_workers must be positive")
        if abort_after_stalls <= 0:
            raise ValueError("abort_after_stalls must be positive")
        self._store = store
        self._handlers = handlers
        self._clock = clock or SystemClock()
        self._item_workers = item_workers
        self._item_timeout = item_timeout_seconds
        self._abort_after_stalls = abort_after_stalls

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def resolve(
        self,
        job_type: JobType | str,
        params: Mapping[str, Any] | None = None,
    ) -> ResolvedJob:
        """Validate and default parameters without doing any work.

        Raises:
            JobValidationError: Unknown job type or bad parameters.
        """
        job_type = coerce_job_type(job_type)
        handler = self._handlers.get(job_type)
        as_of = self._clock.now()
        resolved = handler.resolve_params(params or {}, as_of)
        return ResolvedJob(job_type=job_type, params=resolved, as_of=as_of)

    def execute(
        self,
        job_type: JobType | str,
        params: Mapping[str, Any] | None = None,
    ) -> JobResult:
        """Resolve parameters and run the batch.

        Raises:
            JobValidationError: Bad input; no work was done.
            AutomationSystemError: Items could not be prepared.
        """
        return self.run(self.resolve(job_type, params))

    def run(self, job: ResolvedJob) -> JobResult:
        """Run an already-resolved job.

        A run that stalls (``abort_after_stalls`` consecutive items timing
        out or finding the Data Store unavailable) stops early: the items
        not yet collected are counted as failed and the result carries a
        run-level SYSTEM_ERROR.

        Raises:
            AutomationSystemError: Items could not be prepared.
        """
        handler = self._handlers.get(job.job_type)
        start = time.monotonic()

        logger.info(
            "job_execution_started",
            extra={"job_type": job.job_type.value, "parameters": job.parameters_dict()},
        )

        try:
            items = handler.prepare_items(job.params, self._store, job.as_of)
        except AutomationSystemError:
            raise
        except Exception as exc:
            raise AutomationSystemError(
                f"Could not prepare {job.job_type.value} items: {exc}"
            ) from exc

        succeeded, errors, abort = self._run_items(handler, job, items)
        run_errors: tuple[JobItemError, ...] = ()
        if abort is not None:
            run_errors = (JobItemError(item_id=None, message=str(abort), code=abort.code),)
            logger.error(
                "job_execution_aborted",
                extra={"job_type": job.job_type.value, "detail": str(abort)},
            )

        result = JobResult(
            total_items=len(items),
            successful_items=succeeded,
            failed_items=len(errors),
            execution_time_ms=int((time.monotonic() - start) * 1000),
            timestamp=job.as_of,
            errors=run_errors + tuple(errors),
        )

        logger.info(
            "job_execution_finished",
            extra={
                "job_type": job.job_type.value,
                "total_items": result.total_items,
                "successful_items": result.successful_items,
                "failed_items": result.failed_items,
                "execution_time_ms": result.execution_time_ms,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_items(
        self,
        handler: JobHandler,
        job: ResolvedJob,
        items: tuple[JobItem, ...],
    ) -> tuple[int, list[JobItemError], AutomationSystemError | None]:
        if not items:
            return 0, [], None

        succeeded = 0
        errors: list[JobItemError] = []
        stalls = 0
        abort: AutomationSystemError | None = None
        pool = ThreadPoolExecutor(
            max_workers=min(self._item_workers, len(items)),
            thread_name_prefix=f"{job.job_type.value}-item",
        )
        try:
            futures = [
                (
                    item,
                    pool.submit(
                        contextvars.copy_context().run,
                        handler.execute_item,
                        item,
                        job.params,
                        self._store,
                        job.as_of,
                    ),
                )
                for item in items
            ]
            # Collected in submission order so ``errors`` keeps item order.
            for position, (item, future) in enumerate(futures):
                if abort is not None:
                    future.cancel()
                    if not future.done() or future.cancelled():
                        errors.append(JobItemError(
                            item_id=item.item_key,
                            student_id=item.student_id,
                            message="Not processed: run aborted",
                            code="RUN_ABORTED",
                        ))
                        continue

                error = self._collect(item, future, job)
                if error is None:
                    succeeded += 1
                    stalls = 0
                    continue
                errors.append(error)
                if abort is not None or error.code not in _STALL_CODES:
                    stalls = 0
                    continue

                stalls += 1
                if stalls >= self._abort_after_stalls:
                    abort = self._stalled(error, stalls, len(items) - position - 1)
        finally:
            # Threads already stuck in a call cannot be interrupted; queued
            # items are dropped.
            pool.shutdown(wait=False, cancel_futures=True)

        return succeeded, errors, abort

    def _collect(
        self, item: JobItem, future: Future, job: ResolvedJob,
    ) -> JobItemError | None:
        try:
            future.result(timeout=self._item_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "item_timed_out",
                extra={"item_key": item.item_key, "job_type": job.job_type.value},
            )
            return JobItemError(
                item_id=item.item_key,
                student_id=item.student_id,
                message=f"Timed out after {self._item_timeout}s",
                code=_ITEM_TIMEOUT,
            )
        except Exception as exc:
            logger.warning(
                "item_failed",
                extra={"item_key": item.item_key, "job_type": job.job_type.value},
                exc_info=True,
            )
            return JobItemError(
                item_id=item.item_key,
                student_id=item.student_id,
                message=str(exc) or type(exc).__name__,
                code=getattr(exc, "code", "ITEM_ERROR"),
            )
        return None

    @staticmethod
    def _stalled(
        last: JobItemError, stalls: int, remaining: int,
    ) -> AutomationSystemError:
        if last.code == DataStoreUnavailableError.code:
            return DataStoreUnavailableError(
                "execute_item",
                f"{stalls} consecutive items failed; {remaining} item(s) not processed",
            )
        return AutomationSystemError(
            f"Run aborted after {stalls} consecutive item timeouts; "
            f"{remaining} item(s) not processed"
        )
