"""
dqsync.schemas - Data model for check reconciliation.

CheckDefinition -> CompileOutcome -> GeneratedJob -> CheckResult

Lifecycle:
1. CheckDefinition: Declared control, one row of check_definitions
2. CompileOutcome: Compiled statement + bound params, or an InvalidReason
3. GeneratedJob: Materialized scheduler job (at most one per definition)
4. CheckResult: Row appended by the job on every scheduled execution

Change capture:
- ChangeEvent / ChangeBatch: what the change feed delivers
- Outcome: what reconciling one id did
"""

from .definition import (
    CheckDefinition,
    CheckType,
    parse_key_columns,
    parse_row_filter,
)
from .job import (
    GeneratedJob,
    QueryParam,
    job_name_for,
)
from .change import (
    ChangeAction,
    ChangeBatch,
    ChangeEvent,
)
from .outcome import (
    CompileOutcome,
    CompiledCheck,
    InvalidReason,
    Outcome,
    OutcomeAction,
)
from .result import (
    CheckResult,
    ResultStatus,
)

__all__ = [
    # Definition
    "CheckDefinition",
    "CheckType",
    "parse_key_columns",
    "parse_row_filter",
    # Job
    "GeneratedJob",
    "QueryParam",
    "job_name_for",
    # Change feed
    "ChangeAction",
    "ChangeBatch",
    "ChangeEvent",
    # Outcomes
    "CompileOutcome",
    "CompiledCheck",
    "InvalidReason",
    "Outcome",
    "OutcomeAction",
    # Results
    "CheckResult",
    "ResultStatus",
]
