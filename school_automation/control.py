"""
AutomationControl -- never-raising control, execution and status facade.

Contract:
    Every public method returns a plain value (bool, dict, list) that the
    HTTP layer can serialize as-is.  Engine exceptions are converted into
    ``{"code", "message"}`` error payloads; unexpected exceptions are logged
    and reported as SYSTEM_ERROR.  Payload keys are camelCase as consumed
    by the dashboards.

Invariants enforced:
    AU-9 -- Nothing raises across the control/execution surface.
    AU-7 -- Invalid execution parameters create no JobRun.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.exceptions import AutomationError
from school_kernel.logging_config import get_logger

from school_automation.domain.types import (
    ErrorInfo,
    JobDefinition,
    JobResult,
    JobRun,
    JobType,
    TriggerOutcome,
)
from school_automation.services.engine import coerce_job_type
from school_automation.services.scheduler import Scheduler

logger = get_logger("automation.control")


# =============================================================================
# Payload builders
# =============================================================================


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _error_payload(error: ErrorInfo) -> dict[str, str]:
    return {"code": error.code, "message": error.message}


def job_payload(definition: JobDefinition) -> dict[str, Any]:
    return {
        "id": definition.job_id,
        "name": definition.name,
        "jobType": definition.job_type.value,
        "schedule": definition.schedule_label,
        "description": definition.description,
        "isActive": definition.is_active,
        "lastRun": _iso(definition.last_run),
        "nextRun": _iso(definition.next_run),
    }


def result_payload(result: JobResult) -> dict[str, Any]:
    """Execution payload shared by every job type.

    Run-level errors (``item_id`` None) are reported under ``error``;
    item failures under ``errors``.
    """
    item_errors = [e for e in result.errors if e.item_id is not None]
    run_errors = [e for e in result.errors if e.item_id is None]
    payload: dict[str, Any] = {
        "success": result.success,
        "totalStudents": result.total_items,
        "successfulBills": result.successful_items,
        "failedBills": result.failed_items,
        "executionTime": result.execution_time_ms,
        "timestamp": _iso(result.timestamp),
        "errors": [
            {"itemId": e.item_id, "studentId": e.student_id, "message": e.message}
            for e in item_errors
        ],
    }
    if run_errors:
        payload["error"] = {"code": run_errors[0].code, "message": run_errors[0].message}
    return payload


def run_payload(run: JobRun) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": run.run_id,
        "jobType": run.job_type.value,
        "jobId": run.job_id,
        "status": run.status.value,
        "trigger": run.trigger.value,
        "parameters": dict(run.parameters),
        "startTime": _iso(run.start_time),
        "endTime": _iso(run.end_time),
        "duration": run.duration_ms,
        "error": run.error,
    }
    if run.result is not None:
        payload["result"] = result_payload(run.result)
    return payload


# =============================================================================
# Facade
# =============================================================================


class AutomationControl:
    """Facade consumed by the thin HTTP layer and the operator CLI."""

    def __init__(self, scheduler: Scheduler, clock: Clock | None = None) -> None:
        self._scheduler = scheduler
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Job control
    # -------------------------------------------------------------------------

    def start_job(self, job_id: str) -> bool:
        try:
            return self._scheduler.start_job(job_id)
        except Exception:
            logger.exception("start_job_failed", extra={"job_id": job_id})
            return False

    def stop_job(self, job_id: str) -> bool:
        try:
            return self._scheduler.stop_job(job_id)
        except Exception:
            logger.exception("stop_job_failed", extra={"job_id": job_id})
            return False

    def trigger_job(self, job_id: str) -> bool:
        """True when the run was accepted; the batch continues in the background."""
        return self.trigger_job_detailed(job_id).accepted

    def trigger_job_detailed(self, job_id: str) -> TriggerOutcome:
        try:
            return self._scheduler.trigger_job(job_id)
        except Exception as exc:
            logger.exception("trigger_job_failed", extra={"job_id": job_id})
            return TriggerOutcome(
                job_id=job_id,
                accepted=False,
                error=ErrorInfo(code="SYSTEM_ERROR", message=str(exc) or type(exc).__name__),
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_all_jobs(self) -> list[dict[str, Any]]:
        return [job_payload(d) for d in self._scheduler.get_all_jobs()]

    def get_running_jobs(self) -> list[dict[str, Any]]:
        return [run_payload(r) for r in self._scheduler.tracker.get_running_jobs()]

    def get_history(
        self,
        job_type: JobType | str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        try:
            kind = coerce_job_type(job_type) if job_type is not None else None
        except AutomationError:
            logger.warning("history_unknown_job_type", extra={"job_type": str(job_type)})
            return []
        runs = self._scheduler.tracker.get_history(kind, limit=max(limit, 0))
        return [run_payload(r) for r in runs]

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        try:
            return run_payload(self._scheduler.tracker.get_run(run_id))
        except AutomationError:
            return None

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute_monthly_billing_job(
        self,
        month: int | None = None,
        year: int | None = None,
    ) -> dict[str, Any]:
        """Bill every active student for a period; month/year default to now."""
        params: dict[str, Any] = {}
        if month is not None:
            params["month"] = month
        if year is not None:
            params["year"] = year
        return self._execute(JobType.MONTHLY_BILLING, params)

    def execute_fee_reminder_job(self, reminder_type: str = "overdue") -> dict[str, Any]:
        """Send reminders for PENDING allocations in the reminder type's window."""
        return self._execute(JobType.FEE_REMINDER, {"reminder_type": reminder_type})

    def _execute(self, job_type: JobType, params: dict[str, Any]) -> dict[str, Any]:
        try:
            run = self._scheduler.run_now(job_type, params)
        except AutomationError as exc:
            logger.info(
                "execution_rejected",
                extra={"job_type": job_type.value, "code": exc.code, "detail": str(exc)},
            )
            return self._failure_payload(ErrorInfo.from_exception(exc))
        except Exception as exc:
            logger.exception("execution_failed", extra={"job_type": job_type.value})
            return self._failure_payload(
                ErrorInfo(code="SYSTEM_ERROR", message=str(exc) or type(exc).__name__)
            )

        if run.result is None:
            return self._failure_payload(
                ErrorInfo(code="SYSTEM_ERROR", message=run.error or "Run produced no result")
            )
        payload = result_payload(run.result)
        payload["runId"] = run.run_id
        return payload

    def _failure_payload(self, error: ErrorInfo) -> dict[str, Any]:
        return {
            "success": False,
            "totalStudents": 0,
            "successfulBills": 0,
            "failedBills": 0,
            "executionTime": 0,
            "timestamp": _iso(self._clock.now()),
            "errors": [],
            "error": _error_payload(error),
        }

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        """Dashboard payload: system status, running and scheduled jobs."""
        try:
            running = self.get_running_jobs()
            scheduled = self.get_all_jobs()
            return {
                "systemStatus": {
                    "automationEngine": "operational",
                    "scheduler": "operational" if self._scheduler.is_running else "stopped",
                    "timestamp": _iso(self._clock.now()),
                },
                "runningJobs": running,
                "scheduledJobs": scheduled,
                "summary": {
                    "totalRunningJobs": len(running),
                    "totalScheduledJobs": len(scheduled),
                    "activeScheduledJobs": sum(1 for j in scheduled if j["isActive"]),
                },
            }
        except Exception as exc:
            logger.exception("status_failed")
            return {
                "systemStatus": {
                    "automationEngine": "error",
                    "scheduler": "unknown",
                    "timestamp": _iso(self._clock.now()),
                },
                "runningJobs": [],
                "scheduledJobs": [],
                "summary": {
                    "totalRunningJobs": 0,
                    "totalScheduledJobs": 0,
                    "activeScheduledJobs": 0,
                },
                "error": {"code": "SYSTEM_ERROR", "message": str(exc) or type(exc).__name__},
            }

    def health(self) -> dict[str, Any]:
        try:
            self._scheduler.get_all_jobs()
            self._scheduler.tracker.get_running_jobs()
            return {
                "status": "healthy",
                "timestamp": _iso(self._clock.now()),
                "components": {
                    "automationEngine": "operational",
                    "scheduler": "operational" if self._scheduler.is_running else "stopped",
                },
            }
        except Exception as exc:
            logger.exception("health_check_failed")
            return {
                "status": "unhealthy",
                "timestamp": _iso(self._clock.now()),
                "components": {"automationEngine": "error", "scheduler": "unknown"},
                "error": str(exc) or type(exc).__name__,
            }
