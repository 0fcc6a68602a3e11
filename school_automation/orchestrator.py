"""
AutomationOrchestrator -- DI container for the automation engine.

Contract:
    Wires the JobHandlerRegistry with the job handlers, creates the
    AutomationEngine, JobRegistry, RunTracker and Scheduler, registers the
    configured job definitions, and exposes the AutomationControl facade.
    Single place where all automation dependencies are composed.

Invariants enforced:
    AU-8 -- Clock injection (all services receive the same Clock).
    One lock shared by the JobRegistry and the RunTracker.
"""

from __future__ import annotations

import threading

from school_config.schema import AutomationConfig, JobConfig
from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.logging_config import get_logger

from school_automation.adapters.data_store import DataStore
from school_automation.adapters.notification import (
    LoggingNotificationSender,
    NotificationSender,
)
from school_automation.control import AutomationControl
from school_automation.domain.types import JobDefinition
from school_automation.jobs.base import JobHandlerRegistry
from school_automation.jobs.billing import MonthlyBillingHandler
from school_automation.jobs.reminders import FeeReminderHandler
from school_automation.services.engine import AutomationEngine, coerce_job_type
from school_automation.services.registry import JobRegistry
from school_automation.services.run_tracker import RunTracker
from school_automation.services.scheduler import Scheduler

logger = get_logger("automation.orchestrator")


def default_handler_registry(
    config: AutomationConfig,
    sender: NotificationSender,
) -> JobHandlerRegistry:
    """Create a JobHandlerRegistry pre-loaded with every job handler."""
    engine_settings = config.engine
    handlers = JobHandlerRegistry()
    handlers.register(MonthlyBillingHandler(
        sender=sender,
        min_year=engine_settings.min_year,
        max_year=engine_settings.max_year,
        due_day=engine_settings.billing_due_day,
        notify_on_billing=engine_settings.notify_on_billing,
    ))
    handlers.register(FeeReminderHandler(
        sender=sender,
        early_window_days=engine_settings.early_reminder_window_days,
    ))
    return handlers


def job_definition_from_config(job: JobConfig) -> JobDefinition:
    """Translate a configured job into a JobDefinition.

    Raises:
        JobValidationError: Unknown job type.
    """
    return JobDefinition(
        job_id=job.job_id,
        name=job.name,
        job_type=coerce_job_type(job.job_type),
        schedule=job.schedule,
        interval_seconds=job.interval_seconds,
        description=job.description,
        is_active=job.is_active,
        parameters=dict(job.parameters),
    )


class AutomationOrchestrator:
    """DI container for the automation engine.

    Contract:
        - ``from_config()`` creates a fully wired orchestrator.
        - ``control`` is the never-raising facade for the HTTP layer.
        - ``scheduler`` / ``engine`` / ``registry`` / ``tracker`` for
          direct use by operators and tests.

    Non-goals:
        - Does NOT start the scheduler loop automatically -- caller decides.
        - Does NOT own the Data Store's connections.
    """

    def __init__(
        self,
        registry: JobRegistry,
        tracker: RunTracker,
        engine: AutomationEngine,
        scheduler: Scheduler,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._engine = engine
        self._scheduler = scheduler
        self._control = AutomationControl(scheduler, clock=clock)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: AutomationConfig,
        store: DataStore,
        sender: NotificationSender | None = None,
        clock: Clock | None = None,
        handlers: JobHandlerRegistry | None = None,
    ) -> AutomationOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            config: Loaded automation configuration.
            store: Data Store collaborator.
            sender: Notification Sender; defaults to LoggingNotificationSender.
            clock: Optional clock for deterministic testing.
            handlers: Optional pre-configured handler registry. If None,
                uses the default registry with every job handler.

        Raises:
            JobValidationError: A configured job names an unknown job type
                or carries parameters its handler rejects.
            ScheduleError: A configured job has an invalid schedule.
        """
        effective_clock = clock or SystemClock()
        effective_sender = sender or LoggingNotificationSender()
        lock = threading.RLock()

        registry = JobRegistry(clock=effective_clock, lock=lock)
        tracker = RunTracker(
            clock=effective_clock,
            history_retention=config.scheduler.history_retention,
            lock=lock,
        )
        handler_registry = (
            handlers if handlers is not None
            else default_handler_registry(config, effective_sender)
        )
        engine = AutomationEngine(
            store=store,
            handlers=handler_registry,
            clock=effective_clock,
            item_workers=config.engine.item_workers,
            item_timeout_seconds=config.engine.item_timeout_seconds,
            abort_after_stalls=config.engine.abort_after_stalls,
        )
        scheduler = Scheduler(
            registry=registry,
            tracker=tracker,
            engine=engine,
            clock=effective_clock,
            tick_interval_seconds=config.scheduler.tick_interval_seconds,
            max_concurrent_runs=config.scheduler.max_concurrent_runs,
        )

        for job in config.jobs:
            definition = job_definition_from_config(job)
            # Bad parameters fail here rather than on every tick.
            if definition.job_type in handler_registry:
                engine.resolve(definition.job_type, definition.parameters)
            registry.register(definition)

        logger.info(
            "automation_orchestrator_ready",
            extra={"config_id": config.config_id, "job_count": len(config.jobs)},
        )
        return cls(
            registry=registry,
            tracker=tracker,
            engine=engine,
            scheduler=scheduler,
            clock=effective_clock,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def control(self) -> AutomationControl:
        return self._control

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def engine(self) -> AutomationEngine:
        return self._engine

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def tracker(self) -> RunTracker:
        return self._tracker
