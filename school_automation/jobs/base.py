"""
JobHandler protocol, supporting types, and JobHandlerRegistry.

Contract:
    ``JobHandler`` defines the interface every job type implements.
    ``JobHandlerRegistry`` stores handlers keyed by ``job_type``.

Architecture:
    school_automation/jobs.  Imports from school_automation.domain and the
    adapter protocols only; the engine owns threading and accounting.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, runtime_checkable

from school_kernel.exceptions import JobHandlerNotRegisteredError

from school_automation.adapters.data_store import DataStore
from school_automation.domain.types import JobType


@dataclass(frozen=True)
class JobItem:
    """One unit of batch work, created by ``JobHandler.prepare_items()``."""

    item_index: int
    item_key: str  # Business identifier (student id, allocation id)
    student_id: str | None = None
    payload: Any = None


@runtime_checkable
class JobHandler(Protocol):
    """Protocol for job type implementations.

    Contract:
        - ``job_type``: unique key registered in JobHandlerRegistry.
        - ``resolve_params()``: validates raw parameters and applies the
          defaulting rules; raises JobValidationError, touches nothing.
        - ``prepare_items()``: queries eligible records; a failure here
          aborts the whole run.
        - ``execute_item()``: processes ONE item; raising marks that item
          failed and the batch continues.

    Non-goals:
        - Does NOT count successes/failures -- the engine does (AU-2).
        - Does NOT manage threads or timeouts.
    """

    @property
    def job_type(self) -> JobType: ...

    @property
    def description(self) -> str: ...

    def resolve_params(self, raw: Mapping[str, Any], as_of: datetime) -> Any:
        ...

    def prepare_items(
        self, params: Any, store: DataStore, as_of: datetime,
    ) -> tuple[JobItem, ...]:
        ...

    def execute_item(
        self, item: JobItem, params: Any, store: DataStore, as_of: datetime,
    ) -> None:
        ...


class JobHandlerRegistry:
    """Registry mapping JobType to JobHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by job type; raises
          JobHandlerNotRegisteredError if missing.
    """

    def __init__(self) -> None:
        self._handlers: dict[JobType, JobHandler] = {}

    def register(self, handler: JobHandler) -> None:
        if handler.job_type in self._handlers:
            raise ValueError(
                f"Job type '{handler.job_type.value}' is already registered"
            )
        self._handlers[handler.job_type] = handler

    def get(self, job_type: JobType) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise JobHandlerNotRegisteredError(
                getattr(job_type, "value", str(job_type)), self.list_types(),
            ) from None

    def list_types(self) -> tuple[str, ...]:
        """Return all registered job type values, sorted."""
        return tuple(sorted(t.value for t in self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, job_type: JobType) -> bool:
        return job_type in self._handlers
