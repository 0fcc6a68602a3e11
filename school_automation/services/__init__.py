"""
school_automation.services -- stateful services of the engine.
"""

from school_automation.services.engine import AutomationEngine, ResolvedJob
from school_automation.services.registry import JobRegistry
from school_automation.services.run_tracker import RunTracker
from school_automation.services.scheduler import Scheduler

__all__ = [
    "AutomationEngine",
    "JobRegistry",
    "ResolvedJob",
    "RunTracker",
    "Scheduler",
]
