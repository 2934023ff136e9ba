"""
CheckResult schema - one row of the append-only check_results table.

Results are written by the scheduled jobs themselves (and produced in
memory by the dry-run evaluator). dqsync never writes or mutates them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ResultStatus(str, Enum):
    """Outcome of one check execution."""
    OK = "OK"
    KO = "KO"
    ERROR = "ERROR"


@dataclass(frozen=True)
class CheckResult:
    """A single check execution result."""
    check_id: str
    check_name: str
    check_type: str
    result: ResultStatus
    details: dict[str, Any] = field(default_factory=dict)
    executed_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.result == ResultStatus.OK

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "check_id": self.check_id,
            "check_name": self.check_name,
            "check_type": self.check_type,
            "result": self.result.value,
            "details": self.details,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CheckResult":
        """Deserialize from a check_results row."""
        executed_at = row.get("executed_at")
        if executed_at is not None and not isinstance(executed_at, datetime):
            executed_at = datetime.fromisoformat(str(executed_at))
        return cls(
            check_id=row["check_id"],
            check_name=row.get("check_name") or row["check_id"],
            check_type=row.get("check_type") or "",
            result=ResultStatus(row["result"]),
            details=row.get("details") or {},
            executed_at=executed_at,
        )
