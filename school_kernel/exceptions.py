"""
Typed Exception Hierarchy for the School Kernel.

Every error has a TYPED exception class (catch by type, not message), a
``code`` class attribute (machine-readable, API-safe), and structured
attributes instead of only a message string.

    try:
        engine.execute(JobType.MONTHLY_BILLING, {"month": 13})
    except JobValidationError as e:
        api_response(code=e.code, field=e.field)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SchoolKernelError (base)
    |
    +-- AutomationError
    |   +-- JobValidationError
    |   |   +-- JobNotFoundError
    |   |   +-- JobHandlerNotRegisteredError
    |   +-- JobAlreadyRunningError
    |   +-- RunNotFoundError
    |   +-- ItemProcessingError
    |   |   +-- MissingFeeStructureError
    |   |   +-- MissingRecipientError
    |   |   +-- NotificationFailedError
    |   +-- AutomationSystemError
    |       +-- DataStoreUnavailableError
    |
    +-- ScheduleError
        +-- InvalidCronExpressionError
        +-- InvalidScheduleError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                        | When Raised
------------|-----------------------------|-----------------------------------------
Validation  | VALIDATION_ERROR            | Bad job parameters (month, year, type)
            | JOB_NOT_FOUND               | Unknown job definition id
            | JOB_HANDLER_NOT_REGISTERED  | No handler for a job type
------------|-----------------------------|-----------------------------------------
Conflict    | JOB_ALREADY_RUNNING         | A run of that job type is in flight
------------|-----------------------------|-----------------------------------------
Tracking    | RUN_NOT_FOUND               | Unknown run id
------------|-----------------------------|-----------------------------------------
Item        | ITEM_ERROR                  | One entity failed inside a batch
            | MISSING_FEE_STRUCTURE       | Subscription has no fee structure
            | MISSING_RECIPIENT           | No contact for a reminder
            | NOTIFICATION_FAILED         | Sender reported a delivery failure
------------|-----------------------------|-----------------------------------------
System      | SYSTEM_ERROR                | Whole run aborted
            | DATA_STORE_UNAVAILABLE      | Data Store unreachable
------------|-----------------------------|-----------------------------------------
Schedule    | INVALID_CRON_EXPRESSION     | Malformed cron expression
            | INVALID_SCHEDULE            | No schedule, or no next run found
"""


class SchoolKernelError(Exception):
    """
    Base exception for all school kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SCHOOL_KERNEL_ERROR"


# Automation exceptions


class AutomationError(SchoolKernelError):
    """Base exception for automation engine errors."""

    code: str = "AUTOMATION_ERROR"


class JobValidationError(AutomationError):
    """Job input rejected before any work was done."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class JobNotFoundError(JobValidationError):
    """No job definition registered under the given id."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("job_id", job_id, "no such job")


class JobHandlerNotRegisteredError(JobValidationError):
    """No handler registered for the given job type."""

    code: str = "JOB_HANDLER_NOT_REGISTERED"

    def __init__(self, job_type: str, available: tuple[str, ...]):
        self.job_type = job_type
        self.available = available
        super().__init__(
            "job_type", job_type, f"not registered (available: {list(available)})"
        )


class JobAlreadyRunningError(AutomationError):
    """A run of the same job type is already in flight."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_type: str, running_run_id: str):
        self.job_type = job_type
        self.running_run_id = running_run_id
        super().__init__(
            f"Job type {job_type} is already running (run {running_run_id})"
        )


class RunNotFoundError(AutomationError):
    """No job run tracked under the given id."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Job run not found: {run_id}")


class ItemProcessingError(AutomationError):
    """A single batch item failed; the batch continues."""

    code: str = "ITEM_ERROR"

    def __init__(self, item_id: str, message: str):
        self.item_id = item_id
        super().__init__(message)


class MissingFeeStructureError(ItemProcessingError):
    """A student's active subscription has no fee structure."""

    code: str = "MISSING_FEE_STRUCTURE"

    def __init__(self, student_id: str, subscription_id: str):
        self.student_id = student_id
        self.subscription_id = subscription_id
        super().__init__(
            student_id,
            f"Subscription {subscription_id} has no fee structure",
        )


class MissingRecipientError(ItemProcessingError):
    """No contact address on file for a reminder."""

    code: str = "MISSING_RECIPIENT"

    def __init__(self, allocation_id: str, student_id: str):
        self.student_id = student_id
        super().__init__(
            allocation_id,
            f"No contact email on file for student {student_id}",
        )


class NotificationFailedError(ItemProcessingError):
    """The Notification Sender reported a failed delivery."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, item_id: str, recipient: str, detail: str | None):
        self.recipient = recipient
        self.detail = detail
        super().__init__(
            item_id,
            f"Notification to {recipient} failed: {detail or 'unknown error'}",
        )


class AutomationSystemError(AutomationError):
    """The whole run could not proceed (collaborator unreachable, etc.)."""

    code: str = "SYSTEM_ERROR"

    def __init__(self, message: str):
        super().__init__(message)


class DataStoreUnavailableError(AutomationSystemError):
    """The Data Store could not be reached."""

    code: str = "DATA_STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Data store unavailable during {operation}: {detail}")


# Schedule exceptions


class ScheduleError(SchoolKernelError):
    """Base exception for schedule definition errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidCronExpressionError(ScheduleError):
    """Cron expression could not be parsed."""

    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class InvalidScheduleError(ScheduleError):
    """Job schedule is missing, ambiguous, or never fires."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Invalid schedule for job '{job_id}': {reason}")
