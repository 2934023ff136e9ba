"""
Compilation and reconciliation outcomes.

CompileOutcome is what the compiler returns: exactly one of a CompiledCheck
or an InvalidReason. Outcome is what the synchronizer and reconciler
return for one definition id.

Rule: domain invalidity is a value. Only infrastructure failures are
raised (see dqsync.errors).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .definition import CheckType
from .job import GeneratedJob, QueryParam


class InvalidReason(str, Enum):
    """Why a definition cannot be materialized."""
    MISSING_KEY_COLUMN = "MissingKeyColumn"
    MISSING_QUERY = "MissingQuery"
    UNSUPPORTED_CHECK_TYPE = "UnsupportedCheckType"
    INVALID_IDENTIFIER = "InvalidIdentifier"
    INVALID_PARAMETER = "InvalidParameter"
    UNSAFE_QUERY = "UnsafeQuery"


@dataclass(frozen=True)
class CompiledCheck:
    """Executable validation logic for one definition."""
    check_id: str
    check_type: CheckType
    job_name: str
    schedule: str
    statement: str
    parameters: tuple[QueryParam, ...] = field(default_factory=tuple)

    def to_job(self) -> GeneratedJob:
        """Package as the job handed to the scheduler."""
        return GeneratedJob(
            job_name=self.job_name,
            check_id=self.check_id,
            check_type=self.check_type,
            schedule=self.schedule,
            statement=self.statement,
            parameters=self.parameters,
        )


@dataclass(frozen=True)
class CompileOutcome:
    """
    Result of compile_check.

    Rule: exactly one of `compiled` or `reason` is set.
    """
    check_id: str
    compiled: Optional[CompiledCheck] = None
    reason: Optional[InvalidReason] = None
    message: str = ""

    def __post_init__(self):
        has_compiled = self.compiled is not None
        has_reason = self.reason is not None
        if has_compiled == has_reason:
            raise ValueError(
                "CompileOutcome must have exactly one of compiled or reason"
            )

    @property
    def is_valid(self) -> bool:
        return self.compiled is not None

    @property
    def is_unsupported(self) -> bool:
        return self.reason == InvalidReason.UNSUPPORTED_CHECK_TYPE

    @classmethod
    def valid(cls, compiled: CompiledCheck) -> "CompileOutcome":
        return cls(check_id=compiled.check_id, compiled=compiled)

    @classmethod
    def invalid(cls, check_id: str, reason: InvalidReason, message: str) -> "CompileOutcome":
        return cls(check_id=check_id, reason=reason, message=message)


class OutcomeAction(str, Enum):
    """What reconciling one id did."""
    CREATED = "created"
    REPLACED = "replaced"
    DROPPED = "dropped"
    INVALIDATED = "invalidated"
    UNSUPPORTED = "unsupported"
    DEACTIVATED = "deactivated"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """
    Per-id reconciliation result.

    Attributes:
        check_id: The reconciled definition id
        action: What happened (see OutcomeAction)
        message: Human-readable description
        reason: InvalidReason for INVALIDATED / UNSUPPORTED outcomes
        job_name: Job created, replaced or deleted, if any
        error: Exception text for FAILED outcomes
    """
    check_id: str
    action: OutcomeAction
    message: str = ""
    reason: Optional[InvalidReason] = None
    job_name: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.action == OutcomeAction.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "check_id": self.check_id,
            "action": self.action.value,
            "message": self.message,
        }
        if self.reason is not None:
            result["reason"] = self.reason.value
        if self.job_name is not None:
            result["job_name"] = self.job_name
        if self.error is not None:
            result["error"] = self.error
        return result
