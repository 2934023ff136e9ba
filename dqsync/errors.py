"""
Error classes for dqsync reconciliation.

These error types classify infrastructure failures at action boundaries:
- TransientError: Safe to retry on the next reconciliation pass
  (store or scheduler unavailable, network issues, quota errors)
- PermanentError: Retrying the same input will not help
  (definition missing, type change on an existing id)

Domain-level invalidity (missing key column, missing query, unsupported
check type, ...) is NOT an exception. The compiler returns it as an
InvalidReason value and the synchronizer turns it into an Outcome.

Error handling contract:
- compile_check and reconcile_one return outcomes for domain conditions
- Infrastructure errors are exceptions and propagate to the caller
- reconcile_batch captures exceptions per id, never for the whole batch
"""


class DqsyncError(Exception):
    """Base exception for dqsync."""
    pass


class ConfigError(DqsyncError):
    """Configuration validation error."""
    pass


class TransientError(DqsyncError):
    """
    Transient error - safe to retry.

    Nothing retries inside a pass. When a per-id action fails, the events
    of that id are left unacknowledged and the next pass picks the
    unchanged definition up again. A failure while draining or
    acknowledging leaves the whole batch pending.
    """
    pass


class StoreFailure(TransientError):
    """The definitions store, results store or change feed failed."""
    pass


class SchedulerFailure(TransientError):
    """The job scheduler failed to create, replace or delete a job."""
    pass


class PermanentError(DqsyncError):
    """
    Permanent error - do not retry.

    Examples:
    - Definition id not found on create_or_replace
    - Attempt to change the declared type of an existing definition
    """
    pass


class NotFoundError(PermanentError):
    """A check definition id is absent from the definitions store."""

    def __init__(self, check_id: str):
        super().__init__(f"Check definition not found: {check_id}")
        self.check_id = check_id
