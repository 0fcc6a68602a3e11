#!/usr/bin/env python3
"""
Operator command line for the automation engine.

Usage:
    python3 scripts/automation_cli.py [--config FILE] [--db-url URL] COMMAND

Commands:
    serve                     Run the scheduler loop until interrupted
    tick                      Evaluate due jobs once and wait for their runs
    status                    Print the dashboard status payload
    trigger JOB_ID            Trigger a configured job and wait for its run
    bill [--month M] [--year Y]
                              Run monthly billing for a period
    remind {early,due,overdue}
                              Send fee reminders
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from school_config import get_active_config  # noqa: E402
from school_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from school_kernel.logging_config import configure_logging  # noqa: E402

from school_automation.adapters.sql_data_store import SqlAlchemyDataStore  # noqa: E402
from school_automation.orchestrator import AutomationOrchestrator  # noqa: E402


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _build(args) -> AutomationOrchestrator:
    config = get_active_config(args.config)
    init_engine_from_url(args.db_url or config.database.url, echo=config.database.echo)
    if args.create_tables:
        create_tables()
    store = SqlAlchemyDataStore(get_session_factory())
    return AutomationOrchestrator.from_config(config, store)


def cmd_serve(orchestrator: AutomationOrchestrator, args) -> int:
    scheduler = orchestrator.scheduler
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("Stopping scheduler...", file=sys.stderr)
    finally:
        scheduler.close(timeout=args.shutdown_timeout)
    return 0


def cmd_tick(orchestrator: AutomationOrchestrator, args) -> int:
    fired = orchestrator.scheduler.tick()
    orchestrator.scheduler.drain()
    _print({
        "fired": fired,
        "history": orchestrator.control.get_history(limit=max(fired, 1)),
    })
    return 0


def cmd_status(orchestrator: AutomationOrchestrator, args) -> int:
    _print(orchestrator.control.get_status())
    return 0


def cmd_trigger(orchestrator: AutomationOrchestrator, args) -> int:
    outcome = orchestrator.control.trigger_job_detailed(args.job_id)
    if not outcome.accepted:
        _print({
            "accepted": False,
            "error": {"code": outcome.error.code, "message": outcome.error.message}
            if outcome.error else None,
        })
        return 1
    orchestrator.scheduler.drain()
    _print({"accepted": True, "run": orchestrator.control.get_run(outcome.run_id)})
    return 0


def cmd_bill(orchestrator: AutomationOrchestrator, args) -> int:
    payload = orchestrator.control.execute_monthly_billing_job(args.month, args.year)
    _print(payload)
    return 0 if payload["success"] else 1


def cmd_remind(orchestrator: AutomationOrchestrator, args) -> int:
    payload = orchestrator.control.execute_fee_reminder_job(args.reminder_type)
    _print(payload)
    return 0 if payload["success"] else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="School automation engine")
    parser.add_argument("--config", type=Path, default=None,
                        help="Automation YAML file (default: packaged set)")
    parser.add_argument("--db-url", default=None, help="Override database.url")
    parser.add_argument("--create-tables", action="store_true",
                        help="Create missing tables before running")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the scheduler loop")
    serve.add_argument("--shutdown-timeout", type=float, default=30.0)
    serve.set_defaults(func=cmd_serve)

    sub.add_parser("tick", help="Fire due jobs once").set_defaults(func=cmd_tick)
    sub.add_parser("status", help="Print status payload").set_defaults(func=cmd_status)

    trigger = sub.add_parser("trigger", help="Trigger a configured job")
    trigger.add_argument("job_id")
    trigger.set_defaults(func=cmd_trigger)

    bill = sub.add_parser("bill", help="Run monthly billing")
    bill.add_argument("--month", type=int, default=None)
    bill.add_argument("--year", type=int, default=None)
    bill.set_defaults(func=cmd_bill)

    remind = sub.add_parser("remind", help="Send fee reminders")
    remind.add_argument("reminder_type", choices=["early", "due", "overdue"])
    remind.set_defaults(func=cmd_remind)

    args = parser.parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level), stream=sys.stderr)

    orchestrator = _build(args)
    try:
        return args.func(orchestrator, args)
    finally:
        orchestrator.scheduler.close()


if __name__ == "__main__":
    sys.exit(main())
