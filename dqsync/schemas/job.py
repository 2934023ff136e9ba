"""
GeneratedJob schema - the materialized, schedulable artifact of a definition.

A GeneratedJob holds the compiled statement and its bound parameters.
There is at most one job per CheckDefinition; its name comes from
job_name_for(check_id), but schedulers may hold jobs created under older
naming rules, so callers resolve names through the scheduler when dropping.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .definition import CheckType

JOB_NAME_PREFIX = "dq_task_"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")


def job_name_for(check_id: str) -> str:
    """
    Deterministic job name for a check id.

    Characters outside [A-Za-z0-9_] become "_". When that rewrite changed
    the id, an 8-char sha256 suffix keeps distinct ids from colliding
    (e.g. "orders-fresh" and "orders.fresh").

    Example:
        >>> job_name_for("orders_fresh")
        'dq_task_orders_fresh'
    """
    if not check_id:
        raise ValueError("check_id is required to derive a job name")
    safe = _UNSAFE_CHARS.sub("_", check_id)
    if safe != check_id:
        digest = hashlib.sha256(check_id.encode()).hexdigest()[:8]
        safe = f"{safe}_{digest}"
    return f"{JOB_NAME_PREFIX}{safe}"


@dataclass(frozen=True)
class QueryParam:
    """A single bound query parameter for BQ."""
    name: str
    type: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryParam":
        return cls(name=data["name"], type=data["type"], value=data.get("value"))


@dataclass(frozen=True)
class GeneratedJob:
    """
    A scheduled validation job.

    Attributes:
        job_name: Scheduler-side name (see job_name_for)
        check_id: Definition the job was generated from
        check_type: Resolved check type at generation time
        schedule: Scheduler expression copied from the definition
        statement: Compiled INSERT ... SELECT statement text
        parameters: Bound parameters; @run_time is supplied by the scheduler
        updated_at: When the scheduler last created or replaced the job
    """
    job_name: str
    check_id: str
    check_type: CheckType
    schedule: str
    statement: str
    parameters: tuple[QueryParam, ...] = field(default_factory=tuple)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "job_name": self.job_name,
            "check_id": self.check_id,
            "check_type": self.check_type.value,
            "schedule": self.schedule,
            "statement": self.statement,
            "parameters": [p.to_dict() for p in self.parameters],
        }
        if self.updated_at is not None:
            result["updated_at"] = self.updated_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeneratedJob":
        """Deserialize from dictionary."""
        updated_at = data.get("updated_at")
        if updated_at is not None and not isinstance(updated_at, datetime):
            updated_at = datetime.fromisoformat(updated_at)
        return cls(
            job_name=data["job_name"],
            check_id=data["check_id"],
            check_type=CheckType.parse(data.get("check_type")),
            schedule=data.get("schedule", ""),
            statement=data.get("statement", ""),
            parameters=tuple(QueryParam.from_dict(p) for p in data.get("parameters") or []),
            updated_at=updated_at,
        )
