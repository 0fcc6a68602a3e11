"""
school_automation -- Automation & scheduling engine for recurring school jobs.

Runs recurring business jobs (monthly fee-bill generation, fee-due
reminders) on a schedule or on demand, tracks in-flight and historical
runs, and reports status to the operations dashboard.

Architecture:
    school_automation/ is a top-level package.  Nothing in school_kernel/
    or school_config/ imports from school_automation.

    domain/    pure types, schedule evaluation, parameter resolution,
               fee and reminder-window calculation (ZERO I/O)
    adapters/  Data Store and Notification Sender collaborators
    jobs/      one handler per job type (MonthlyBilling, FeeReminder)
    services/  Job Registry, Run Tracker, Automation Engine, Scheduler
    control    never-raising control/status facade for the HTTP layer
    orchestrator  wires everything from an AutomationConfig

Invariants:
    AU-1  At most one Running JobRun per job type (single-flight claim)
    AU-2  JobResult.total_items == successful_items + failed_items
    AU-3  Per-item failure isolation inside a batch
    AU-4  Per-job failure isolation inside a scheduler tick
    AU-5  Active job => next_run >= now after every recompute;
          inactive job => next_run is None
    AU-6  Monthly billing is idempotent per (student, month, year)
    AU-7  Parameters validated before any run is claimed
    AU-8  Clock injection (no datetime.now() outside SystemClock)
    AU-9  Nothing raises across the control/execution surface
"""
